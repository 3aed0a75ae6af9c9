"""acmevault constants."""
import logging
from typing import Any
from typing import Dict

KEY_SOURCE_LOCAL = 'local'
"""Generate the private key locally and import the full bundle."""

KEY_SOURCE_STORE = 'store'
"""Let the certificate store generate the key and merge the signed chain."""

KEY_SOURCES = (KEY_SOURCE_LOCAL, KEY_SOURCE_STORE)

CLI_DEFAULTS: Dict[str, Any] = dict(  # noqa
    config_files=['/etc/acmevault/cli.ini'],
    requests_dir='cert-requests',
    renew_days_threshold=30,
    key_source=KEY_SOURCE_LOCAL,
    challenge_timeout=120,
    finalize_timeout=90,
    propagation_seconds=60,
    no_dns_check=False,
    vault_url_template='https://{}.vault.azure.net',
    logs_dir=None,
    max_log_backups=10,
    verbose_count=0,
    quiet=False,
    debug=False,
)
"""Defaults for CLI flags and `.NamespaceConfig` attributes."""

QUIET_LOGGING_LEVEL = logging.ERROR
"""Logging level to use in quiet mode."""

DEFAULT_LOGGING_LEVEL = logging.INFO
"""Default logging level to use when not in quiet mode."""

LOG_FILE_NAME = 'acmevault.log'
"""Basename of the rotating log file."""
