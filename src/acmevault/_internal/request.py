"""Certificate request documents.

A certificate request describes one certificate to obtain and keep renewed::

    {
        "dnsProvider": {"providerAccountId": "...", "dnsZoneId": "...",
                        "zoneName": "example.org", "storeId": "my-vault",
                        "certName": "example-org"},
        "acme": {"contactEmail": "admin@example.org",
                 "directoryUrl": "https://acme-v02.api.letsencrypt.org/directory"},
        "certKey": {"commonName": "example.org",
                    "alternativeNames": ["www.example.org"]}
    }

Documents written for the Azure deployment (``azure`` instead of
``dnsProvider``, ``acme.acmeDirectoryUrl``, and a ``csr`` block instead of
``certKey``) are accepted as well.

"""
import json
import logging
import re
from typing import Any
from typing import Dict
from typing import List
from typing import Mapping
from typing import Optional
from typing import Tuple
from typing import Union

from cryptography import x509
from cryptography.x509.oid import NameOID
import josepy as jose

from acmevault import errors

logger = logging.getLogger(__name__)

DEFAULT_KEY_SIZE = 2048
MIN_KEY_SIZE = 2048

_LABEL_RE = re.compile(r'^(?!-)[a-z0-9-]{1,63}(?<!-)$')

_AZURE_FIELDS = {
    'subscriptionId': 'providerAccountId',
    'dnsZoneResourceGroup': 'dnsZoneId',
    'dnsZone': 'zoneName',
    'keyVaultName': 'storeId',
    'keyVaultCertName': 'certName',
}

_CSR_SUBJECT_FIELDS = (
    ('country', NameOID.COUNTRY_NAME),
    ('state', NameOID.STATE_OR_PROVINCE_NAME),
    ('locality', NameOID.LOCALITY_NAME),
    ('organization', NameOID.ORGANIZATION_NAME),
    ('organizationUnit', NameOID.ORGANIZATIONAL_UNIT_NAME),
    ('emailAddress', NameOID.EMAIL_ADDRESS),
)


def is_dns_name(name: str) -> bool:
    """Is ``name`` a syntactically valid DNS name (wildcard allowed)?"""
    if not isinstance(name, str) or not name or len(name) > 253:
        return False
    labels = name.lower().rstrip('.').split('.')
    if labels[0] == '*':
        labels = labels[1:]
    return bool(labels) and all(_LABEL_RE.match(label) for label in labels)


class DnsProviderOptions(jose.JSONObjectWithFields):
    """Where the challenge records and the certificate live.

    :ivar str provider_account_id: DNS provider account (Azure subscription).
    :ivar str dns_zone_id: Zone container (Azure resource group).
    :ivar str zone_name: DNS zone the domains belong to.
    :ivar str store_id: Certificate store (Azure Key Vault name).
    :ivar str cert_name: Certificate name inside the store.

    """
    provider_account_id: str = jose.field('providerAccountId')
    dns_zone_id: str = jose.field('dnsZoneId')
    zone_name: str = jose.field('zoneName')
    store_id: str = jose.field('storeId')
    cert_name: str = jose.field('certName')


class AcmeOptions(jose.JSONObjectWithFields):
    """ACME directory interaction settings."""
    contact_email: str = jose.field('contactEmail')
    directory_url: str = jose.field('directoryUrl')


class CertKeyOptions(jose.JSONObjectWithFields):
    """Desired certificate and key properties."""
    common_name: str = jose.field('commonName')
    subject: Optional[str] = jose.field('subject', omitempty=True)
    alternative_names: Tuple[str, ...] = jose.field('alternativeNames', omitempty=True,
                                                    default=())
    key_size: int = jose.field('keySize', omitempty=True, default=DEFAULT_KEY_SIZE)
    exportable: bool = jose.field('exportable', omitempty=True, default=False)

    @alternative_names.decoder  # type: ignore
    def alternative_names(value: List[str]) -> Tuple[str, ...]:  # pylint: disable=no-self-argument,missing-function-docstring
        if not isinstance(value, list):
            raise jose.DeserializationError('alternativeNames must be a list')
        return tuple(value)


class CertificateRequest(jose.JSONObjectWithFields):
    """One certificate's desired state.

    Immutable once parsed; use :func:`from_document` to build one from the
    raw request document.

    """
    dns_provider: DnsProviderOptions = jose.field('dnsProvider',
                                                  decoder=DnsProviderOptions.from_json)
    acme: AcmeOptions = jose.field('acme', decoder=AcmeOptions.from_json)
    cert_key: CertKeyOptions = jose.field('certKey', decoder=CertKeyOptions.from_json)

    @classmethod
    def from_json(cls, jobj: Mapping[str, Any]) -> 'CertificateRequest':
        if not isinstance(jobj, Mapping):
            raise jose.DeserializationError('Request document must be a JSON object')
        request = super().from_json(_normalize(jobj))
        request.validate()
        return request

    @property
    def common_name(self) -> str:
        """Common name of the certificate."""
        return self.cert_key.common_name

    def domains(self) -> List[str]:
        """All identifiers to order: the common name first."""
        return [self.cert_key.common_name] + list(self.cert_key.alternative_names)

    def validate(self) -> None:
        """Check the request invariants.

        :raises .ValidationError: if the request is unusable

        """
        for options in (self.dns_provider, self.acme):
            for name, value in options.fields_to_partial_json().items():
                if not isinstance(value, str) or not value:
                    raise errors.ValidationError(
                        f'"{name}" must be a non-empty string')

        cert_key = self.cert_key
        if not isinstance(cert_key.common_name, str) or not cert_key.common_name:
            raise errors.ValidationError('"commonName" must be a non-empty string')
        if (isinstance(cert_key.key_size, bool) or not isinstance(cert_key.key_size, int)
                or cert_key.key_size < MIN_KEY_SIZE):
            raise errors.ValidationError(
                f'"keySize" must be an integer of at least {MIN_KEY_SIZE}, '
                f'got {cert_key.key_size!r}')
        if not isinstance(cert_key.exportable, bool):
            raise errors.ValidationError('"exportable" must be a boolean')
        if cert_key.subject is not None:
            try:
                x509.Name.from_rfc4514_string(cert_key.subject)
            except (ValueError, TypeError, AttributeError):
                raise errors.ValidationError(f'Invalid subject "{cert_key.subject}"')

        # A wildcard and its base name validate through the same TXT record.
        for name in self.domains():
            if isinstance(name, str) and name.startswith('*'):
                raise errors.ValidationError(f'Wildcard name "{name}" is not supported')

        seen = {cert_key.common_name.lower()}
        for name in cert_key.alternative_names:
            if not is_dns_name(name):
                raise errors.ValidationError(f'"{name}" is not a valid DNS name')
            if name.lower() in seen:
                raise errors.ValidationError(
                    f'Alternative name "{name}" duplicates another requested name')
            seen.add(name.lower())


def from_document(raw: Union[str, bytes]) -> CertificateRequest:
    """Parse a raw JSON request document.

    :raises .ValidationError: if the document is malformed

    """
    try:
        jobj = json.loads(raw)
    except (ValueError, UnicodeDecodeError) as error:
        raise errors.ValidationError(f'Failed to parse request document: {error}')
    try:
        return CertificateRequest.from_json(jobj)
    except (jose.DeserializationError, TypeError, ValueError) as error:
        raise errors.ValidationError(f'Invalid request document: {error}')


def _normalize(jobj: Mapping[str, Any]) -> Dict[str, Any]:
    """Map the Azure document layout onto the provider-neutral one."""
    jobj = dict(jobj)

    if 'dnsProvider' not in jobj and isinstance(jobj.get('azure'), Mapping):
        jobj['dnsProvider'] = {_AZURE_FIELDS.get(key, key): value
                               for key, value in jobj.pop('azure').items()}

    acme = jobj.get('acme')
    if isinstance(acme, Mapping) and 'directoryUrl' not in acme and 'acmeDirectoryUrl' in acme:
        acme = dict(acme)
        acme['directoryUrl'] = acme.pop('acmeDirectoryUrl')
        jobj['acme'] = acme

    if 'certKey' not in jobj and isinstance(jobj.get('csr'), Mapping):
        jobj['certKey'] = _cert_key_from_csr_options(jobj.pop('csr'))

    return jobj


def _cert_key_from_csr_options(csr: Mapping[str, Any]) -> Dict[str, Any]:
    cert_key: Dict[str, Any] = {'commonName': csr.get('commonName')}
    if 'altNames' in csr:
        cert_key['alternativeNames'] = csr['altNames']
    if 'keySize' in csr:
        cert_key['keySize'] = csr['keySize']
    attributes = [x509.NameAttribute(oid, csr[key])
                  for key, oid in _CSR_SUBJECT_FIELDS
                  if isinstance(csr.get(key), str) and csr[key]]
    if attributes:
        cert_key['subject'] = x509.Name(attributes).rfc4514_string()
    return cert_key
