"""acmevault collaborator interfaces.

The order process, the renewal selector and the certificate store talk to
the outside world only through the abstract classes below. Concrete
implementations live in :mod:`acmevault._internal.acme_client`,
:mod:`acmevault._internal.azure` and :mod:`acmevault._internal.catalogue`;
tests substitute in-memory fakes.

"""
from abc import ABCMeta
from abc import abstractmethod
import datetime
from typing import AsyncIterator
from typing import List
from typing import NamedTuple
from typing import Optional
from typing import Tuple
from typing import TYPE_CHECKING
from typing import Union

from acme import challenges
from acme import messages

from acmevault.errors import Error

if TYPE_CHECKING:
    from acmevault._internal.request import CertificateRequest
    from acmevault._internal.request import DnsProviderOptions


class CertificateMetadata(NamedTuple):
    """Store-side view of the current certificate version."""

    enabled: bool
    expires_on: datetime.datetime


class Authority(metaclass=ABCMeta):
    """ACME certificate authority client.

    One instance drives exactly one order and owns the freshly generated
    account key used for it.

    """

    @abstractmethod
    async def create_account(self, email: str) -> messages.RegistrationResource:
        """Register (or reuse) an account, agreeing to the terms of service.

        :raises .AuthorityError: if the authority rejects the key or contact

        """
        raise NotImplementedError()

    @abstractmethod
    async def create_order(self, csr_pem: bytes) -> messages.OrderResource:
        """Place a new order for the identifiers named in ``csr_pem``.

        :returns: the order with its authorizations filled in
        :rtype: `acme.messages.OrderResource`

        """
        raise NotImplementedError()

    @abstractmethod
    async def get_authorizations(self, orderr: messages.OrderResource
                                 ) -> List[messages.AuthorizationResource]:
        """Authorizations the order requires, one per identifier."""
        raise NotImplementedError()

    @abstractmethod
    def key_authorization(self, challb: messages.ChallengeBody
                          ) -> Tuple[challenges.ChallengeResponse, str]:
        """Compute the challenge response and the value to publish in DNS."""
        raise NotImplementedError()

    @abstractmethod
    async def verify_challenge(self, authzr: messages.AuthorizationResource,
                               challb: messages.ChallengeBody, validation: str) -> None:
        """Check that the published record is visible before asking the CA.

        :raises .DnsOperationError: if the record never became visible

        """
        raise NotImplementedError()

    @abstractmethod
    async def complete_challenge(self, challb: messages.ChallengeBody,
                                 response: challenges.ChallengeResponse) -> None:
        """Tell the authority the challenge is ready to be validated."""
        raise NotImplementedError()

    @abstractmethod
    async def wait_for_valid_status(self, authzr: messages.AuthorizationResource,
                                    timeout: float) -> messages.AuthorizationResource:
        """Poll ``authzr`` until it is valid.

        :raises .AuthorityError: if it turns invalid or ``timeout`` seconds pass

        """
        raise NotImplementedError()

    @abstractmethod
    async def finalize_order(self, orderr: messages.OrderResource) -> messages.OrderResource:
        """Submit the order's CSR and wait until the order is valid."""
        raise NotImplementedError()

    @abstractmethod
    async def get_certificate(self, orderr: messages.OrderResource) -> str:
        """Fetch the issued certificate chain in PEM form."""
        raise NotImplementedError()


class DnsProvider(metaclass=ABCMeta):
    """DNS zone holding the challenge records."""

    @abstractmethod
    async def upsert_txt_record(self, zone: 'DnsProviderOptions', record_name: str,
                                value: str, ttl: int) -> None:
        """Create or replace the TXT record set ``record_name`` with one value."""
        raise NotImplementedError()

    @abstractmethod
    async def delete_txt_record(self, zone: 'DnsProviderOptions', record_name: str) -> None:
        """Delete the TXT record set ``record_name``."""
        raise NotImplementedError()


class SecretStore(metaclass=ABCMeta):
    """Certificate store (e.g. a key vault)."""

    @abstractmethod
    async def get_certificate_metadata(self, store: 'DnsProviderOptions'
                                       ) -> Optional[CertificateMetadata]:
        """Read the current certificate properties.

        :returns: `None` if no certificate has been provisioned yet
        :raises .StoreError: on any other store fault

        """
        raise NotImplementedError()

    @abstractmethod
    async def import_certificate(self, store: 'DnsProviderOptions',
                                 request: 'CertificateRequest', bundle: bytes) -> None:
        """Import a PEM bundle (chain + PKCS#8 key) as a new, enabled version."""
        raise NotImplementedError()

    @abstractmethod
    async def begin_create_certificate(self, store: 'DnsProviderOptions',
                                       request: 'CertificateRequest') -> bytes:
        """Let the store generate a key pair and return the pending CSR (DER)."""
        raise NotImplementedError()

    @abstractmethod
    async def merge_certificate(self, store: 'DnsProviderOptions',
                                certificates: List[bytes]) -> None:
        """Merge the signed chain (DER certificates) into the pending entry."""
        raise NotImplementedError()


class RequestCatalogue(metaclass=ABCMeta):
    """Source of the known certificate request documents."""

    @abstractmethod
    def list_request_documents(self) -> AsyncIterator[Tuple[str, Union[bytes, Error]]]:
        """Yield ``(name, raw_bytes)`` for each request document.

        A document that exists but cannot be read is yielded as
        ``(name, error)`` so that it is reported rather than lost.

        """
        raise NotImplementedError()
