"""acmevault command line argument & config processing."""
import argparse
import logging
from typing import Any
from typing import List

import configargparse

from acmevault import __version__
from acmevault import errors
from acmevault._internal import constants
from acmevault._internal.configuration import NamespaceConfig

logger = logging.getLogger(__name__)

SHORT_USAGE = """
  acmevault [SUBCOMMAND] [options]

acmevault obtains certificates validated through DNS-01 challenges and keeps
them renewed in a certificate store. With no subcommand, it renews every
certificate due for renewal.

"""

VERB_HELP = {
    "renew": "Issue every certificate that is missing or due for renewal",
    "list": "Show the certificates that would be issued by renew",
    "issue": "Issue the certificate described by one request document",
}

DEFAULT_VERB = "renew"


def flag_default(name: str) -> Any:
    """Default value for CLI flag."""
    return constants.CLI_DEFAULTS[name]


class HelpfulArgumentParser:
    """Argparse wrapper picking the subcommand out of the arguments.

    Every option can also be given as an environment variable or in an INI
    config file (``-c``).

    """

    def __init__(self, args: List[str]) -> None:
        self.args = list(args)
        self.verb = DEFAULT_VERB
        self.determine_verb()

        self.parser = configargparse.ArgParser(
            prog="acmevault",
            usage=SHORT_USAGE + self._list_subcommands(),
            formatter_class=argparse.RawDescriptionHelpFormatter,
            args_for_setting_config_path=["-c", "--config"],
            default_config_files=flag_default("config_files"),
            config_arg_help_message="path to config file (default: {0})".format(
                " and ".join(flag_default("config_files"))))

    @staticmethod
    def _list_subcommands() -> str:
        longest = max(len(v) for v in VERB_HELP)
        text = "The full list of available SUBCOMMANDS is:\n\n"
        for verb, doc in sorted(VERB_HELP.items()):
            text += '  {0:<{length}}     {1}\n'.format(verb, doc, length=longest)
        return text

    def determine_verb(self) -> None:
        """Determines the verb/subcommand provided by the user.

        The first argument naming a known subcommand is the verb; it is
        removed from the arguments left for parsing.

        """
        for i, token in enumerate(self.args):
            if token in VERB_HELP:
                self.verb = token
                self.args.pop(i)
                return

    def add(self, *args: Any, **kwargs: Any) -> None:
        """Add a new command line argument."""
        self.parser.add_argument(*args, **kwargs)

    def parse_args(self) -> argparse.Namespace:
        """Parses command line arguments and returns the result.

        :raises .Error: if the subcommand arguments are inconsistent

        """
        parsed_args = self.parser.parse_args(self.args)
        parsed_args.verb = self.verb
        if self.verb == "issue" and not parsed_args.request_file:
            raise errors.Error("issue requires the path of a request document")
        if self.verb != "issue" and parsed_args.request_file:
            raise errors.Error(
                f"Unexpected argument {parsed_args.request_file} for {self.verb}")
        return parsed_args


def prepare_and_parse_args(args: List[str]) -> NamespaceConfig:
    """Returns the parsed and checked configuration.

    :param list args: command line arguments without the program name

    """
    helpful = HelpfulArgumentParser(args)

    helpful.add(
        "request_file", nargs="?", default=None, metavar="FILE",
        help="Request document to issue a certificate for (issue only)")
    helpful.add(
        "--requests-dir", dest="requests_dir", env_var="CERT_REQ_DIR",
        default=flag_default("requests_dir"),
        help="Directory holding one *.json request document per certificate. "
             "(default: %(default)s)")
    helpful.add(
        "--renew-days-threshold", dest="renew_days_threshold", type=float,
        env_var="RENEW_DAYS_THRESHOLD", default=flag_default("renew_days_threshold"),
        help="Renew certificates expiring within this many days. (default: %(default)s)")
    helpful.add(
        "--key-source", dest="key_source", choices=constants.KEY_SOURCES,
        env_var="KEY_SOURCE", default=flag_default("key_source"),
        help="Where the private key is generated: 'local' imports a full bundle "
             "into the store, 'store' lets the store generate the key and "
             "merges the signed certificate. (default: %(default)s)")
    helpful.add(
        "--challenge-timeout", dest="challenge_timeout", type=float,
        env_var="CHALLENGE_TIMEOUT", default=flag_default("challenge_timeout"),
        help="Seconds to wait for the authority to validate a challenge. "
             "(default: %(default)s)")
    helpful.add(
        "--finalize-timeout", dest="finalize_timeout", type=float,
        env_var="FINALIZE_TIMEOUT", default=flag_default("finalize_timeout"),
        help="Seconds to wait for the authority to issue the certificate. "
             "(default: %(default)s)")
    helpful.add(
        "--propagation-seconds", dest="propagation_seconds", type=float,
        env_var="DNS_PROPAGATION_SECONDS", default=flag_default("propagation_seconds"),
        help="Seconds to wait for a challenge record to become visible in DNS. "
             "(default: %(default)s)")
    helpful.add(
        "--no-dns-check", dest="no_dns_check", action="store_true",
        env_var="NO_DNS_CHECK", default=flag_default("no_dns_check"),
        help="Do not look challenge records up in DNS before answering challenges.")
    helpful.add(
        "--vault-url-template", dest="vault_url_template",
        env_var="VAULT_URL_TEMPLATE", default=flag_default("vault_url_template"),
        help="Key Vault URL, {} is replaced by the vault name. (default: %(default)s)")
    helpful.add(
        "--logs-dir", dest="logs_dir", env_var="LOGS_DIR",
        default=flag_default("logs_dir"),
        help="Directory for the rotating debug log. No log file is written "
             "unless it is set.")
    helpful.add(
        "--max-log-backups", dest="max_log_backups", type=nonnegative_int,
        default=flag_default("max_log_backups"),
        help="Number of rotated log files to keep. (default: %(default)s)")
    helpful.add(
        "-v", "--verbose", dest="verbose_count", action="count",
        default=flag_default("verbose_count"),
        help="This flag can be used multiple times to incrementally increase "
             "the verbosity of output, e.g. -vv.")
    helpful.add(
        "-q", "--quiet", dest="quiet", action="store_true",
        default=flag_default("quiet"),
        help="Silence all output except errors.")
    helpful.add(
        "--debug", action="store_true", default=flag_default("debug"),
        help="Show tracebacks in case of errors.")
    helpful.add(
        "--version", action="version", version="%(prog)s {0}".format(__version__),
        help="show program's version number and exit")

    return NamespaceConfig(helpful.parse_args())


def nonnegative_int(value: str) -> int:
    """Converts value to an int and checks that it is not negative.

    :param str value: value to convert

    :returns: value as an int
    :rtype: int

    :raises argparse.ArgumentTypeError: if value isn't a non-negative integer

    """
    try:
        int_value = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError("value must be an integer")

    if int_value < 0:
        raise argparse.ArgumentTypeError("value must be non-negative")
    return int_value

