"""Certificate persistence."""
import logging
from typing import NamedTuple
from typing import Optional

from acmevault import crypto_util
from acmevault import errors
from acmevault import interfaces
from acmevault._internal.request import CertificateRequest
from acmevault._internal.request import DnsProviderOptions

logger = logging.getLogger(__name__)


class CertificateBundle(NamedTuple):
    """Issued chain and the private key it was requested with."""
    private_key_pem: bytes
    certificate_pem: str


def encode_bundle(bundle: CertificateBundle) -> bytes:
    """Serialize ``bundle`` into the store's PEM bundle format.

    The layout is the certificate chain, one blank line, then the private key
    as an unencrypted PKCS#8 block (PKCS#1 and SEC1 keys are converted).

    """
    certificate = bundle.certificate_pem.rstrip('\r\n')
    if not certificate:
        raise errors.Error('Empty certificate chain')
    private_key = crypto_util.pkcs8_private_key(bundle.private_key_pem)
    return certificate.encode() + b'\n\n' + private_key


class CertificateStore:
    """Writes certificates to, and reads metadata from, a secret store."""

    def __init__(self, secret_store: interfaces.SecretStore) -> None:
        self.secret_store = secret_store

    async def get_metadata(self, store: DnsProviderOptions
                           ) -> Optional[interfaces.CertificateMetadata]:
        """Current version properties, or `None` if never issued.

        :raises .StoreError: on any store fault other than "not found"

        """
        return await self.secret_store.get_certificate_metadata(store)

    async def import_bundle(self, request: CertificateRequest,
                            bundle: CertificateBundle) -> None:
        """Import a locally keyed certificate as a new version."""
        store = request.dns_provider
        logger.info('Importing certificate %s into %s', store.cert_name, store.store_id)
        await self.secret_store.import_certificate(store, request, encode_bundle(bundle))

    async def create_pending(self, request: CertificateRequest) -> bytes:
        """Have the store generate the key pair.

        :returns: the pending CSR in PEM form
        :rtype: bytes

        """
        store = request.dns_provider
        logger.info('Creating pending certificate %s in %s', store.cert_name, store.store_id)
        csr = await self.secret_store.begin_create_certificate(store, request)
        if csr.lstrip().startswith(b'-----BEGIN'):
            return csr
        try:
            return crypto_util.csr_der_to_pem(csr)
        except errors.Error as error:
            raise errors.StoreError(f'Store returned an unusable CSR: {error}')

    async def merge(self, request: CertificateRequest, fullchain_pem: str) -> None:
        """Merge the signed chain into the pending certificate."""
        store = request.dns_provider
        logger.info('Merging certificate %s into %s', store.cert_name, store.store_id)
        await self.secret_store.merge_certificate(store, crypto_util.chain_to_der(fullchain_pem))
