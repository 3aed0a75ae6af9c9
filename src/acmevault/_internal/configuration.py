"""acmevault user-supplied configuration."""
import argparse
import copy
import logging
import os
from typing import Any

from acmevault import errors
from acmevault._internal import constants

logger = logging.getLogger(__name__)


class NamespaceConfig:
    """Configuration wrapper around :class:`argparse.Namespace`.

    Attribute reads and writes are delegated to the namespace. Paths are
    made absolute and the values checked for sanity on construction.

    :ivar namespace: Namespace typically produced by
        :meth:`argparse.ArgumentParser.parse_args`.
    :type namespace: :class:`argparse.Namespace`

    """

    def __init__(self, namespace: argparse.Namespace) -> None:
        self.namespace: argparse.Namespace
        # Avoid recursion loop because of the delegation defined in __setattr__
        object.__setattr__(self, 'namespace', namespace)

        self.namespace.requests_dir = os.path.abspath(self.namespace.requests_dir)
        if self.namespace.logs_dir:
            self.namespace.logs_dir = os.path.abspath(self.namespace.logs_dir)

        # Check command line parameters sanity, and error out in case of problem.
        _check_config_sanity(self)

    def __getattr__(self, name: str) -> Any:
        return getattr(self.namespace, name)

    def __setattr__(self, name: str, value: Any) -> None:
        setattr(self.namespace, name, value)

    @property
    def check_propagation(self) -> bool:
        """Look validation records up in DNS before answering challenges."""
        return not self.namespace.no_dns_check

    def __deepcopy__(self, _memo: Any) -> 'NamespaceConfig':
        return type(self)(copy.deepcopy(self.namespace))


def _check_config_sanity(config: NamespaceConfig) -> None:
    """Validate command line options and raise an error in case of problem.

    :raises .ConfigurationError: if an option is out of range

    """
    if config.key_source not in constants.KEY_SOURCES:
        raise errors.ConfigurationError(
            "Unknown key source {0}; expected one of {1}".format(
                config.key_source, ", ".join(constants.KEY_SOURCES)))

    if config.renew_days_threshold < 0:
        raise errors.ConfigurationError(
            "Renewal threshold must not be negative ({0})".format(config.renew_days_threshold))

    for name in ('challenge_timeout', 'finalize_timeout'):
        if getattr(config, name) <= 0:
            raise errors.ConfigurationError(
                "{0} must be positive ({1})".format(name.replace('_', ' ').capitalize(),
                                                    getattr(config, name)))

    if config.propagation_seconds < 0:
        raise errors.ConfigurationError(
            "Propagation seconds must not be negative ({0})".format(config.propagation_seconds))

    if '{}' not in config.vault_url_template:
        raise errors.ConfigurationError(
            "Vault URL template {0} has no {{}} placeholder for the vault name".format(
                config.vault_url_template))
