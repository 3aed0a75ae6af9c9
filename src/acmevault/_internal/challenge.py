"""DNS-01 challenge records."""
import contextlib
import logging
from typing import AsyncIterator
from typing import List

from acme import challenges
from acme import messages

from acmevault import interfaces
from acmevault._internal import error_handler
from acmevault._internal.request import DnsProviderOptions

logger = logging.getLogger(__name__)

CHALLENGE_TTL = 30
"""TTL (seconds) of the published validation record."""


def validation_record_name(zone_name: str, domain: str) -> str:
    """Name of the validation record for ``domain``, relative to ``zone_name``.

    >>> validation_record_name('example.org', 'www.example.org')
    '_acme-challenge.www'
    >>> validation_record_name('example.org', 'example.org')
    '_acme-challenge.example.org'

    """
    suffix = f'.{zone_name}'
    if domain.endswith(suffix):
        domain = domain[:-len(suffix)]
    return f'{challenges.DNS01.LABEL}.{domain}'


class ChallengeResponder:
    """Publishes and removes the TXT record proving control of one domain.

    Both operations only ever touch the single record derived from the
    authorization, so concurrent authorizations in the same zone never
    interfere with each other.

    :ivar list orphaned_records: validation records whose removal failed,
        as ``zone/record`` strings.

    """

    def __init__(self, dns: interfaces.DnsProvider, ttl: int = CHALLENGE_TTL) -> None:
        self.dns = dns
        self.ttl = ttl
        self.orphaned_records: List[str] = []

    async def present(self, zone: DnsProviderOptions, authzr: messages.AuthorizationResource,
                      validation: str) -> None:
        """Upsert the validation record; safe to call twice.

        :raises .DnsOperationError: if the record cannot be published

        """
        record_name = validation_record_name(zone.zone_name, authzr.body.identifier.value)
        logger.debug('Creating TXT record: "%s" = "%s"', record_name, validation)
        await self.dns.upsert_txt_record(zone, record_name, validation, self.ttl)

    async def cleanup(self, zone: DnsProviderOptions,
                      authzr: messages.AuthorizationResource) -> None:
        """Delete the validation record. Never raises."""
        domain = authzr.body.identifier.value
        record_name = validation_record_name(zone.zone_name, domain)
        logger.debug('Deleting TXT record "%s"', record_name)
        try:
            await self.dns.delete_txt_record(zone, record_name)
        except Exception as error:  # pylint: disable=broad-except
            logger.error('Challenge clean-up failed for %s: %s', domain, error)
            self.orphaned_records.append(f'{zone.zone_name}/{record_name}')

    @contextlib.asynccontextmanager
    async def guard(self, zone: DnsProviderOptions, authzr: messages.AuthorizationResource,
                    validation: str) -> AsyncIterator[None]:
        """Publish the validation record for the duration of the block.

        The record is removed on every exit path, including a failure of
        :meth:`present` itself.

        """
        async with error_handler.ExitHandler(self.cleanup, zone, authzr):
            await self.present(zone, authzr, validation)
            yield
