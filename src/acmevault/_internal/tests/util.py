"""Test utilities: request documents, ACME objects and in-memory collaborators."""
import datetime
import functools
import json
from typing import Any
from typing import Dict
from typing import List
from typing import Optional
from typing import Tuple

from acme import challenges
from acme import messages
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID
import josepy as jose

from acmevault import errors
from acmevault import interfaces
from acmevault._internal import request as request_module

TOKEN = jose.b64decode("evaGxfADs6pSRb2LAv9IZf17Dt3juxGJ-PCt92wr-oA")

NOW = datetime.datetime(2024, 5, 1, 12, 0, tzinfo=datetime.timezone.utc)


def request_document(common_name: str = 'example.org',
                     alternative_names: Optional[List[str]] = None,
                     zone_name: str = 'example.org', cert_name: str = 'example-org',
                     **cert_key: Any) -> Dict[str, Any]:
    """A request document in its provider-neutral layout."""
    doc: Dict[str, Any] = {
        'dnsProvider': {
            'providerAccountId': '00000000-0000-0000-0000-000000000000',
            'dnsZoneId': 'dns-rg',
            'zoneName': zone_name,
            'storeId': 'my-vault',
            'certName': cert_name,
        },
        'acme': {
            'contactEmail': 'admin@example.org',
            'directoryUrl': 'https://acme-staging-v02.api.letsencrypt.org/directory',
        },
        'certKey': {'commonName': common_name},
    }
    if alternative_names is not None:
        doc['certKey']['alternativeNames'] = alternative_names
    doc['certKey'].update(cert_key)
    return doc


def make_request(*args: Any, **kwargs: Any) -> request_module.CertificateRequest:
    """Parsed `.CertificateRequest` built from `request_document`."""
    return request_module.from_document(json.dumps(request_document(*args, **kwargs)))


def chall_to_challb(chall: challenges.Challenge, status: messages.Status,
                    domain: str = 'example.org') -> messages.ChallengeBody:
    """Return ChallengeBody from Challenge."""
    return messages.ChallengeBody(chall=chall, uri=f'https://ca.test/chall/{domain}/{chall.typ}',
                                  status=status)


def gen_authzr(domain: str, challs: Tuple[challenges.Challenge, ...] = (),
               status: messages.Status = messages.STATUS_PENDING
               ) -> messages.AuthorizationResource:
    """Generate an authorization resource offering ``challs`` (DNS-01 by default)."""
    if not challs:
        challs = (challenges.DNS01(token=TOKEN),)
    challbs = tuple(chall_to_challb(chall, messages.STATUS_PENDING, domain) for chall in challs)
    return messages.AuthorizationResource(
        uri=f'https://ca.test/authz/{domain}',
        body=messages.Authorization(
            identifier=messages.Identifier(typ=messages.IDENTIFIER_FQDN, value=domain),
            challenges=challbs,
            status=status))


def gen_orderr(domains: List[str], authzrs: Optional[List[messages.AuthorizationResource]] = None,
               csr_pem: bytes = b'', fullchain_pem: Optional[str] = None
               ) -> messages.OrderResource:
    """Generate an order resource for ``domains``."""
    if authzrs is None:
        authzrs = [gen_authzr(domain) for domain in domains]
    identifiers = [messages.Identifier(typ=messages.IDENTIFIER_FQDN, value=domain)
                   for domain in domains]
    return messages.OrderResource(
        uri='https://ca.test/order/1',
        body=messages.Order(identifiers=identifiers, status=messages.STATUS_PENDING,
                            authorizations=[authzr.uri for authzr in authzrs]),
        authorizations=authzrs,
        csr_pem=csr_pem,
        fullchain_pem=fullchain_pem)


@functools.lru_cache(maxsize=None)
def account_key() -> jose.JWKRSA:
    """An RSA account key, generated once per test run."""
    return jose.JWKRSA(key=rsa.generate_private_key(public_exponent=65537, key_size=2048))


@functools.lru_cache(maxsize=None)
def rsa_key() -> rsa.RSAPrivateKey:
    """An RSA key, generated once per test run."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def pkcs1_key_pem() -> bytes:
    """`rsa_key` in traditional (PKCS#1) PEM form."""
    return rsa_key().private_bytes(serialization.Encoding.PEM,
                                   serialization.PrivateFormat.TraditionalOpenSSL,
                                   serialization.NoEncryption())


def make_chain(domains: Tuple[str, ...] = ('example.org',)) -> str:
    """Leaf plus issuer certificate, in PEM form."""
    key = rsa_key()
    issuer_name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, 'Test Issuer')])
    not_before = datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc)
    issuer = (
        x509.CertificateBuilder()
        .subject_name(issuer_name)
        .issuer_name(issuer_name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_before + datetime.timedelta(days=3650))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(key, hashes.SHA256())
    )
    leaf = (
        x509.CertificateBuilder()
        .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domains[0])]))
        .issuer_name(issuer_name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_before + datetime.timedelta(days=90))
        .add_extension(x509.SubjectAlternativeName([x509.DNSName(d) for d in domains]),
                       critical=False)
        .sign(key, hashes.SHA256())
    )
    return ''.join(cert.public_bytes(serialization.Encoding.PEM).decode()
                   for cert in (leaf, issuer))


def csr_domains(csr_pem: bytes) -> List[str]:
    """DNS names of a PEM CSR's subjectAltName extension."""
    csr = x509.load_pem_x509_csr(csr_pem)
    san = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    return san.value.get_values_for_type(x509.DNSName)


class FakeAuthority(interfaces.Authority):
    """In-memory authority: every order gets one DNS-01 authorization per name.

    :ivar set fail_verify: domains whose validation record is never visible
    :ivar set reject: domains whose authorization turns invalid
    :ivar set no_dns: domains offered only an HTTP-01 challenge

    """

    def __init__(self, fail_verify: Tuple[str, ...] = (), reject: Tuple[str, ...] = (),
                 no_dns: Tuple[str, ...] = (), fail_account: bool = False) -> None:
        self.fail_verify = set(fail_verify)
        self.reject = set(reject)
        self.no_dns = set(no_dns)
        self.fail_account = fail_account
        self.calls: List[Tuple[str, str]] = []
        self.orders: List[messages.OrderResource] = []

    async def create_account(self, email: str) -> messages.RegistrationResource:
        self.calls.append(('create_account', email))
        if self.fail_account:
            raise errors.AuthorityError('Account registration failed: rejected contact')
        return messages.RegistrationResource(uri='https://ca.test/acct/1',
                                             body=messages.Registration())

    async def create_order(self, csr_pem: bytes) -> messages.OrderResource:
        domains = csr_domains(csr_pem)
        self.calls.append(('create_order', ','.join(domains)))
        authzrs = []
        for domain in domains:
            challs: Tuple[challenges.Challenge, ...] = (challenges.DNS01(token=TOKEN),)
            if domain in self.no_dns:
                challs = (challenges.HTTP01(token=TOKEN),)
            authzrs.append(gen_authzr(domain, challs))
        orderr = gen_orderr(domains, authzrs, csr_pem)
        self.orders.append(orderr)
        return orderr

    async def get_authorizations(self, orderr: messages.OrderResource
                                 ) -> List[messages.AuthorizationResource]:
        return list(orderr.authorizations)

    def key_authorization(self, challb: messages.ChallengeBody
                          ) -> Tuple[challenges.ChallengeResponse, str]:
        return challb.chall.response_and_validation(account_key())

    async def verify_challenge(self, authzr: messages.AuthorizationResource,
                               challb: messages.ChallengeBody, validation: str) -> None:
        domain = authzr.body.identifier.value
        self.calls.append(('verify_challenge', domain))
        if domain in self.fail_verify:
            raise errors.DnsOperationError(f'Validation record for {domain} not visible')

    async def complete_challenge(self, challb: messages.ChallengeBody,
                                 response: challenges.ChallengeResponse) -> None:
        self.calls.append(('complete_challenge', challb.uri))

    async def wait_for_valid_status(self, authzr: messages.AuthorizationResource,
                                    timeout: float) -> messages.AuthorizationResource:
        domain = authzr.body.identifier.value
        self.calls.append(('wait_for_valid_status', domain))
        if domain in self.reject:
            raise errors.AuthorityError(f'{domain}: urn:ietf:params:acme:error:unauthorized')
        return authzr

    async def finalize_order(self, orderr: messages.OrderResource) -> messages.OrderResource:
        self.calls.append(('finalize_order', orderr.uri))
        domains = tuple(identifier.value for identifier in orderr.body.identifiers)
        return orderr.update(fullchain_pem=make_chain(domains))

    async def get_certificate(self, orderr: messages.OrderResource) -> str:
        self.calls.append(('get_certificate', orderr.uri))
        return orderr.fullchain_pem


class FakeDns(interfaces.DnsProvider):
    """In-memory DNS zones.

    :ivar dict records: ``(zone_name, record_name) -> value``
    :ivar list calls: ``(operation, record_name)`` in call order

    """

    def __init__(self, fail_upsert: Tuple[str, ...] = (),
                 fail_delete: Tuple[str, ...] = ()) -> None:
        self.fail_upsert = set(fail_upsert)
        self.fail_delete = set(fail_delete)
        self.records: Dict[Tuple[str, str], str] = {}
        self.calls: List[Tuple[str, str]] = []

    async def upsert_txt_record(self, zone: request_module.DnsProviderOptions,
                                record_name: str, value: str, ttl: int) -> None:
        self.calls.append(('upsert', record_name))
        if record_name in self.fail_upsert:
            raise errors.DnsOperationError(f'Failed to add TXT record {record_name}')
        self.records[(zone.zone_name, record_name)] = value

    async def delete_txt_record(self, zone: request_module.DnsProviderOptions,
                                record_name: str) -> None:
        self.calls.append(('delete', record_name))
        if record_name in self.fail_delete:
            raise errors.CleanupError(f'Failed to remove TXT record {record_name}')
        self.records.pop((zone.zone_name, record_name), None)


class FakeSecretStore(interfaces.SecretStore):
    """In-memory certificate store keyed by certificate name."""

    def __init__(self, metadata: Optional[Dict[str, Any]] = None) -> None:
        self.metadata: Dict[str, Any] = dict(metadata or {})
        self.imported: Dict[str, bytes] = {}
        self.pending: Dict[str, rsa.RSAPrivateKey] = {}
        self.merged: Dict[str, List[bytes]] = {}

    async def get_certificate_metadata(self, store: request_module.DnsProviderOptions
                                       ) -> Optional[interfaces.CertificateMetadata]:
        value = self.metadata.get(store.cert_name)
        if isinstance(value, Exception):
            raise value
        return value

    async def import_certificate(self, store: request_module.DnsProviderOptions,
                                 request: request_module.CertificateRequest,
                                 bundle: bytes) -> None:
        self.imported[store.cert_name] = bundle

    async def begin_create_certificate(self, store: request_module.DnsProviderOptions,
                                       request: request_module.CertificateRequest) -> bytes:
        key = rsa_key()
        csr = (
            x509.CertificateSigningRequestBuilder()
            .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME,
                                                        request.common_name)]))
            .add_extension(x509.SubjectAlternativeName(
                [x509.DNSName(d) for d in request.domains()]), critical=False)
            .sign(key, hashes.SHA256())
        )
        self.pending[store.cert_name] = key
        return csr.public_bytes(serialization.Encoding.DER)

    async def merge_certificate(self, store: request_module.DnsProviderOptions,
                                certificates: List[bytes]) -> None:
        if store.cert_name not in self.pending:
            raise errors.StoreError(f'No pending certificate {store.cert_name}')
        self.merged[store.cert_name] = certificates


class FakeCatalogue(interfaces.RequestCatalogue):
    """Request documents held in memory, in insertion order."""

    def __init__(self, documents: Dict[str, Any]) -> None:
        self.documents = documents

    async def list_request_documents(self):
        for name, doc in self.documents.items():
            if isinstance(doc, (bytes, errors.Error)):
                yield name, doc
            else:
                yield name, json.dumps(doc).encode()
