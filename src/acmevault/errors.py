"""acmevault errors."""
from typing import List
from typing import Tuple


class Error(Exception):
    """Generic acmevault error."""


class ConfigurationError(Error):
    """Configuration sanity error."""


class ValidationError(Error):
    """Malformed certificate request or unusable authorization.

    Fatal to the single request (or authorization) it concerns.

    """


class AuthorityError(Error):
    """The certificate authority rejected a request or timed out."""


class FailedAuthorizations(AuthorityError):
    """One or more authorizations of an order failed.

    Raised only once every authorization of the order reached a terminal
    outcome and had its challenge record cleanup attempted.

    :ivar list failures: ``(domain, exception)`` pairs, one per failed
        authorization.

    """
    def __init__(self, failures: List[Tuple[str, BaseException]]) -> None:
        assert failures
        self.failures = failures
        super().__init__()

    def __str__(self) -> str:
        return "Failed authorization procedure. {0}".format(
            ", ".join(f"{domain}: {error}" for domain, error in self.failures))


class DnsOperationError(Error):
    """Failed to publish a challenge record."""


class CleanupError(Error):
    """Failed to remove a challenge record.

    Only ever logged, never propagated out of the order process.

    """


class StoreError(Error):
    """Failed to read from or write to the certificate store."""
