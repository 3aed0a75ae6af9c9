"""Functionality for deciding which certificates to renew."""
import datetime
import logging
from typing import Iterable
from typing import List
from typing import NamedTuple
from typing import Tuple

from acmevault import errors
from acmevault import interfaces
from acmevault._internal import request as request_module
from acmevault._internal.request import CertificateRequest
from acmevault._internal.store import CertificateStore

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400.0


def is_due(now: datetime.datetime, expires_on: datetime.datetime,
           threshold_days: float) -> bool:
    """Is a certificate expiring at ``expires_on`` due for renewal at ``now``?

    Fractional days count: 29.9 days left with a 30 days threshold is due.

    """
    return (expires_on - now).total_seconds() / SECONDS_PER_DAY <= threshold_days


class Selection(NamedTuple):
    """Outcome of one selection pass.

    :ivar list due: requests to issue
    :ivar list skipped: names of requests not due yet, or disabled
    :ivar list failures: ``(name, reason)`` of documents that could not be
        read or parsed, or whose certificate could not be looked up

    """
    due: List[CertificateRequest]
    skipped: List[str]
    failures: List[Tuple[str, str]]


class RenewalSelector:
    """Builds the renewal work list from the known requests."""

    def __init__(self, catalogue: interfaces.RequestCatalogue, store: CertificateStore) -> None:
        self.catalogue = catalogue
        self.store = store

    async def select(self, now: datetime.datetime, threshold_days: float) -> Selection:
        """Read every request document and keep the ones needing a certificate.

        A request is selected when its certificate does not exist yet, or
        when it is enabled and due. A disabled certificate is never
        selected, even once expired.

        A document that cannot be read or parsed, or whose metadata lookup
        fails, is reported in `Selection.failures` and does not affect the others.

        """
        selection = Selection([], [], [])
        async for name, raw in self.catalogue.list_request_documents():
            if isinstance(raw, errors.Error):
                logger.warning('Request document %s could not be read. Skipping.', name)
                selection.failures.append((name, str(raw)))
                continue
            try:
                request = request_module.from_document(raw)
            except errors.ValidationError as error:
                logger.warning('Request document %s is broken. Skipping.', name)
                logger.debug('Reason for skipping %s: %s', name, error)
                selection.failures.append((name, str(error)))
                continue

            try:
                metadata = await self.store.get_metadata(request.dns_provider)
            except errors.Error as error:
                logger.warning('Could not read certificate %s for %s: %s',
                               request.dns_provider.cert_name, name, error)
                selection.failures.append((name, str(error)))
                continue

            if metadata is None:
                logger.info('Certificate %s not found; requesting it',
                            request.dns_provider.cert_name)
                selection.due.append(request)
            elif not metadata.enabled:
                logger.info('Certificate %s is disabled; not renewing',
                            request.dns_provider.cert_name)
                selection.skipped.append(name)
            elif is_due(now, metadata.expires_on, threshold_days):
                logger.info('Certificate %s expires on %s; renewing',
                            request.dns_provider.cert_name,
                            metadata.expires_on.strftime('%Y-%m-%d'))
                selection.due.append(request)
            else:
                logger.debug('Certificate %s not due for renewal (expires on %s)',
                             request.dns_provider.cert_name,
                             metadata.expires_on.strftime('%Y-%m-%d'))
                selection.skipped.append(name)
        return selection


def report(msgs: Iterable[str], category: str) -> str:
    """Format a results report for a category of renewal outcomes"""
    lines = ("%s (%s)" % (m, category) for m in msgs)
    return "  " + "\n  ".join(lines)
