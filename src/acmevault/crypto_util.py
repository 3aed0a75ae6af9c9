"""acmevault crypto utility functions."""
import logging
from typing import List
from typing import Optional
from typing import Union

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from acmevault import errors

logger = logging.getLogger(__name__)


def make_key(bits: int = 2048, key_type: str = "rsa",
             elliptic_curve: Optional[str] = None) -> bytes:
    """Generate PEM encoded RSA|EC key.

    :param int bits: Number of bits if key_type=rsa. At least 2048 for RSA.
    :param str key_type: The type of key to generate, but be rsa or ecdsa
    :param str elliptic_curve: The elliptic curve to use.

    :returns: new RSA or ECDSA key in PKCS#8 PEM form
    :rtype: bytes

    """
    key: Union[rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey]
    if key_type == 'rsa':
        if bits < 2048:
            raise errors.Error("Unsupported RSA key length: {}".format(bits))
        key = rsa.generate_private_key(public_exponent=65537, key_size=bits)
    elif key_type == 'ecdsa':
        name = (elliptic_curve or '').upper()
        if name not in ('SECP256R1', 'SECP384R1', 'SECP521R1'):
            raise errors.Error("Unsupported elliptic curve: {}".format(elliptic_curve))
        key = ec.generate_private_key(curve=getattr(ec, name)())
    else:
        raise errors.Error("Invalid key_type specified: {}.  Use [rsa|ecdsa]".format(key_type))
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def make_csr(private_key_pem: bytes, domains: List[str], subject: Optional[str] = None) -> bytes:
    """Generate a CSR for ``domains``.

    :param bytes private_key_pem: Private key in PEM (any structure).
    :param list domains: DNS names; the first one is the common name.
    :param str subject: Optional RFC 4514 distinguished name. When it
        carries no CN, ``CN=domains[0]`` is prepended.

    :returns: PEM-encoded Certificate Signing Request.
    :rtype: bytes

    """
    if not domains:
        raise ValueError("At least one domain is required")
    private_key = serialization.load_pem_private_key(private_key_pem, password=None)
    if not isinstance(private_key, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey)):
        raise ValueError(f"Invalid private key type: {type(private_key)}")

    name = make_subject(domains[0], subject)
    builder = (
        x509.CertificateSigningRequestBuilder()
        .subject_name(name)
        .add_extension(
            x509.SubjectAlternativeName([x509.DNSName(d) for d in domains]),
            critical=False,
        )
    )
    csr = builder.sign(private_key, hashes.SHA256())
    return csr.public_bytes(serialization.Encoding.PEM)


def make_subject(common_name: str, subject: Optional[str] = None) -> x509.Name:
    """Build the subject name, making sure it carries a common name."""
    if not subject:
        return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    name = x509.Name.from_rfc4514_string(subject)
    if name.get_attributes_for_oid(NameOID.COMMON_NAME):
        return name
    return x509.Name([x509.RelativeDistinguishedName(
        [x509.NameAttribute(NameOID.COMMON_NAME, common_name)])] + list(name.rdns))


def pkcs8_private_key(private_key_pem: bytes) -> bytes:
    """Re-encode a PEM private key as an unencrypted PKCS#8 PEM block.

    Accepts traditional (PKCS#1 ``RSA PRIVATE KEY``, SEC1 ``EC PRIVATE KEY``)
    as well as PKCS#8 input.

    """
    try:
        key = serialization.load_pem_private_key(private_key_pem, password=None)
    except (ValueError, TypeError) as error:
        raise errors.Error(f"Unable to load private key: {error}")
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def csr_der_to_pem(csr_der: bytes) -> bytes:
    """Convert a DER CSR, as returned by a certificate store, to PEM."""
    try:
        csr = x509.load_der_x509_csr(csr_der)
    except ValueError as error:
        raise errors.Error(f"Invalid certificate signing request: {error}")
    return csr.public_bytes(serialization.Encoding.PEM)


def load_chain(fullchain_pem: Union[str, bytes]) -> List[x509.Certificate]:
    """Split a PEM certificate chain into certificates, leaf first."""
    if isinstance(fullchain_pem, str):
        fullchain_pem = fullchain_pem.encode()
    try:
        certs = x509.load_pem_x509_certificates(fullchain_pem)
    except ValueError as error:
        raise errors.Error(f"Invalid certificate chain: {error}")
    return certs


def chain_to_der(fullchain_pem: Union[str, bytes]) -> List[bytes]:
    """DER encode every certificate of a PEM chain, leaf first."""
    return [cert.public_bytes(serialization.Encoding.DER)
            for cert in load_chain(fullchain_pem)]
