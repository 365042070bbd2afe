"""Build and sign a leaf certificate from a CA certificate and key."""

import datetime
import ipaddress
import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass, field

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.x509 import ObjectIdentifier
from cryptography.x509.oid import NameOID

from cloudcert.errors import (
    CertificateConfigError,
    MissingCommonNameError,
    MissingKeyUsageError,
    SerialGenerationError,
)

logger = logging.getLogger(__name__)

# Serial numbers are drawn from [1, 2**63).
MAX_SERIAL = 1 << 63

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address


@dataclass(frozen=True)
class AltNames:
    """Subject alternative names for a certificate."""

    dns_names: tuple[str, ...] = ()
    ips: tuple[IPAddress, ...] = ()

    def __bool__(self) -> bool:
        return bool(self.dns_names or self.ips)

    def to_extension(self) -> x509.SubjectAlternativeName:
        names: list[x509.GeneralName] = [x509.DNSName(name) for name in self.dns_names]
        names.extend(x509.IPAddress(ip) for ip in self.ips)
        return x509.SubjectAlternativeName(names)


@dataclass(frozen=True)
class CertConfig:
    """Identity and usage of the certificate to issue."""

    common_name: str
    organization: tuple[str, ...] = ()
    usages: tuple[ObjectIdentifier, ...] = ()
    alt_names: AltNames = field(default_factory=AltNames)

    def validate(self) -> None:
        """Check the fields every issued certificate needs.

        Raises:
            MissingCommonNameError: If the common name is empty
            MissingKeyUsageError: If no extended key usage is given
        """
        if not self.common_name:
            raise MissingCommonNameError("must specify a CommonName")
        if not self.usages:
            raise MissingKeyUsageError("must specify at least one ExtKeyUsage")

    def subject(self) -> x509.Name:
        attributes = [
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, org) for org in self.organization
        ]
        attributes.append(x509.NameAttribute(NameOID.COMMON_NAME, self.common_name))
        return x509.Name(attributes)


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def random_serial(rng=None) -> int:
    """Draw a certificate serial number uniformly from [1, 2**63).

    Args:
        rng: Object with a ``randrange`` method; defaults to the OS CSPRNG

    Raises:
        SerialGenerationError: If the random source fails
    """
    rng = rng or secrets.SystemRandom()
    try:
        return rng.randrange(1, MAX_SERIAL)
    except Exception as e:
        raise SerialGenerationError(f"failed to generate serial number: {e}") from e


def _authority_key_identifier(ca_cert: x509.Certificate) -> x509.AuthorityKeyIdentifier:
    try:
        ski = ca_cert.extensions.get_extension_for_class(x509.SubjectKeyIdentifier)
    except x509.ExtensionNotFound:
        return x509.AuthorityKeyIdentifier.from_issuer_public_key(ca_cert.public_key())
    return x509.AuthorityKeyIdentifier.from_issuer_subject_key_identifier(ski.value)


def new_cert_from_ca(
    config: CertConfig,
    ca_cert: x509.Certificate,
    public_key,
    ca_key,
    validity_days: int,
    *,
    rng=None,
    now: Callable[[], datetime.datetime] | None = None,
    hash_algorithm: hashes.HashAlgorithm | None = None,
) -> bytes:
    """Create a certificate for ``public_key`` signed by the CA.

    The certificate is valid from now for ``validity_days`` whole days and
    carries KeyUsage digitalSignature and keyEncipherment together with the
    extended key usages from ``config``.

    Args:
        config: Subject, alternative names and extended key usages
        ca_cert: The issuing CA certificate
        public_key: Public key to embed in the certificate
        ca_key: The CA private key used to sign
        validity_days: Validity period in days
        rng: Random source for the serial number
        now: Clock returning the current time
        hash_algorithm: Signature hash, SHA-256 by default

    Returns:
        The DER encoded certificate

    Raises:
        CertificateConfigError: If the configuration or validity is invalid
        SerialGenerationError: If no serial number could be drawn
    """
    config.validate()
    if not isinstance(validity_days, int) or validity_days < 0:
        raise CertificateConfigError(
            f"validity must be a non-negative number of days (got {validity_days!r})"
        )

    not_before = (now or utc_now)().astimezone(datetime.timezone.utc).replace(microsecond=0)
    try:
        not_after = not_before + datetime.timedelta(days=validity_days)
    except OverflowError:
        raise CertificateConfigError(
            f"validity of {validity_days} days ends past the year 9999"
        ) from None

    serial = random_serial(rng)

    builder = (
        x509.CertificateBuilder()
        .subject_name(config.subject())
        .issuer_name(ca_cert.subject)
        .public_key(public_key)
        .serial_number(serial)
        .not_valid_before(not_before)
        .not_valid_after(not_after)
    )
    if config.alt_names:
        builder = builder.add_extension(config.alt_names.to_extension(), critical=False)

    builder = (
        builder.add_extension(
            x509.KeyUsage(
                digital_signature=True,
                key_encipherment=True,
                content_commitment=False,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=False,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(x509.ExtendedKeyUsage(list(config.usages)), critical=False)
        .add_extension(_authority_key_identifier(ca_cert), critical=False)
    )

    cert = builder.sign(ca_key, hash_algorithm or hashes.SHA256())
    logger.info("Issued certificate serial=%x cn=%s", serial, config.common_name)
    return cert.public_bytes(serialization.Encoding.DER)
