"""Single certificate issuance."""
import asyncio
import logging
from typing import Callable

from acmevault import crypto_util
from acmevault import errors
from acmevault import interfaces
from acmevault._internal import constants
from acmevault._internal.challenge import ChallengeResponder
from acmevault._internal.order import AcmeOrderProcess
from acmevault._internal.order import DEFAULT_CHALLENGE_TIMEOUT
from acmevault._internal.request import CertificateRequest
from acmevault._internal.store import CertificateBundle
from acmevault._internal.store import CertificateStore

logger = logging.getLogger(__name__)

AuthorityFactory = Callable[[CertificateRequest], interfaces.Authority]


class IssuanceWorkflow:
    """Issues one certificate and persists it to the store.

    With ``key_source`` `~.constants.KEY_SOURCE_LOCAL` the private key and
    CSR are generated here and the full bundle is imported once the order
    produced a certificate. With `~.constants.KEY_SOURCE_STORE` the store
    generates the key and CSR and the signed chain is merged back.

    Nothing is written to the store unless the order retrieved a
    certificate.

    """

    def __init__(self, authority_factory: AuthorityFactory, dns: interfaces.DnsProvider,
                 store: CertificateStore, key_source: str = constants.KEY_SOURCE_LOCAL,
                 challenge_timeout: float = DEFAULT_CHALLENGE_TIMEOUT) -> None:
        if key_source not in constants.KEY_SOURCES:
            raise errors.ConfigurationError(f'Unknown key source: {key_source}')
        self.authority_factory = authority_factory
        self.responder = ChallengeResponder(dns)
        self.store = store
        self.key_source = key_source
        self.challenge_timeout = challenge_timeout

    async def run(self, request: CertificateRequest) -> None:
        """Obtain and store a certificate for ``request``.

        :raises .Error: if issuance or persistence failed

        """
        logger.info('Requesting a certificate for %s', ', '.join(request.domains()))
        process = AcmeOrderProcess(self.authority_factory(request), self.responder,
                                   self.challenge_timeout)
        if self.key_source == constants.KEY_SOURCE_STORE:
            csr_pem = await self.store.create_pending(request)
            fullchain_pem = await process.run(request, csr_pem)
            await self.store.merge(request, fullchain_pem)
        else:
            key_pem = await asyncio.to_thread(
                crypto_util.make_key, request.cert_key.key_size)
            csr_pem = await asyncio.to_thread(
                crypto_util.make_csr, key_pem, request.domains(), request.cert_key.subject)
            fullchain_pem = await process.run(request, csr_pem)
            await self.store.import_bundle(request, CertificateBundle(key_pem, fullchain_pem))
        logger.info('Certificate %s stored in %s',
                    request.dns_provider.cert_name, request.dns_provider.store_id)
