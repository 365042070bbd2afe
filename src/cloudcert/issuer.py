"""Issue the cloud core server certificate from a CA certificate and key.

The CA certificate's signature algorithm is the single source of truth for
the leaf key type, the format the CA key is parsed from and the format the
leaf key is returned in.
"""

import ipaddress
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import NamedTuple

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.x509.oid import ExtendedKeyUsageOID

from cloudcert.builder import AltNames, CertConfig, new_cert_from_ca
from cloudcert.config import DEFAULT_VALIDITY_DAYS, IssuerConfig, load_config
from cloudcert.errors import (
    CAKeyParseError,
    CAParseError,
    CertificateSigningError,
    HostResolutionError,
    UnsupportedAlgorithmError,
    UnsupportedCAAlgorithmError,
)
from cloudcert.hostinfo import host_ip_resolver
from cloudcert.keys import (
    PrivateKey,
    SignatureAlgorithm,
    generate_private_key,
    oid_name,
    strategy_for,
)

logger = logging.getLogger(__name__)

COMMON_NAME = "EdgeWize"
ORGANIZATION = ("EdgeWize",)


class IssuedCertificate(NamedTuple):
    """DER encoded leaf certificate and private key."""

    certificate: bytes
    private_key: bytes


def _public_key_der(key) -> bytes:
    return key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


@dataclass(frozen=True)
class CAMaterial:
    """A parsed CA certificate together with its private key."""

    certificate: x509.Certificate
    private_key: PrivateKey
    algorithm: SignatureAlgorithm

    @classmethod
    def from_der(cls, cert_der: bytes, key_der: bytes) -> "CAMaterial":
        """Parse CA material, reading the key in the certificate's key format.

        Args:
            cert_der: DER encoded X.509 CA certificate
            key_der: DER encoded CA private key (SEC1 or PKCS#1)

        Returns:
            The parsed CA material

        Raises:
            CAParseError: If the certificate is not valid DER
            UnsupportedCAAlgorithmError: If the CA signature algorithm is unsupported
            CAKeyParseError: If the key cannot be parsed or does not belong
                to the certificate
        """
        try:
            certificate = x509.load_der_x509_certificate(cert_der)
        except (ValueError, TypeError) as e:
            raise CAParseError(
                f"failed to parse a caCert from the given ASN.1 DER data: {e}"
            ) from e

        try:
            algorithm = SignatureAlgorithm.from_oid(certificate.signature_algorithm_oid)
        except UnsupportedAlgorithmError as e:
            raise UnsupportedCAAlgorithmError(e.name) from None

        private_key = strategy_for(algorithm).load(key_der)

        try:
            ca_public_key = certificate.public_key()
        except (ValueError, UnsupportedAlgorithm) as e:
            raise CAParseError(f"failed to read the CA public key: {e}") from e
        if _public_key_der(private_key.public_key()) != _public_key_der(ca_public_key):
            raise CAKeyParseError("CA private key does not match the CA certificate")

        return cls(certificate=certificate, private_key=private_key, algorithm=algorithm)


class Issuer:
    """Issues server certificates for the cloud core from a CA.

    Args:
        get_local_ip: Returns the IP address placed in the SAN
        rng: Random source for serial numbers (``randrange``)
        now: Clock used for the validity window
        validity_days: Certificate lifetime in days
    """

    def __init__(
        self,
        get_local_ip: Callable[[], str] | None = None,
        *,
        rng=None,
        now=None,
        validity_days: int = DEFAULT_VALIDITY_DAYS,
    ):
        self.get_local_ip = get_local_ip or host_ip_resolver()
        self.rng = rng
        self.now = now
        self.validity_days = validity_days

    @classmethod
    def from_config(cls, config: IssuerConfig, **kwargs) -> "Issuer":
        resolver = host_ip_resolver(hostname=config.hostname, override=config.pod_ip)
        return cls(resolver, validity_days=config.validity_days, **kwargs)

    def resolve_ip(self) -> ipaddress.IPv4Address | ipaddress.IPv6Address:
        """Look up the local IP address and check that it parses.

        Raises:
            HostResolutionError: If the lookup fails or returns a malformed address
        """
        try:
            address = self.get_local_ip()
        except HostResolutionError:
            raise
        except Exception as e:
            raise HostResolutionError(f"failed to get local IP address: {e}") from e

        try:
            return ipaddress.ip_address(str(address).strip())
        except ValueError:
            raise HostResolutionError(
                f"host discovery returned an invalid IP address: {address!r}"
            ) from None

    def cert_config(self, ip: ipaddress.IPv4Address | ipaddress.IPv6Address) -> CertConfig:
        return CertConfig(
            common_name=COMMON_NAME,
            organization=ORGANIZATION,
            usages=(ExtendedKeyUsageOID.SERVER_AUTH,),
            alt_names=AltNames(ips=(ip,)),
        )

    def issue(self, ca_cert_der: bytes, ca_key_der: bytes) -> IssuedCertificate:
        """Generate a leaf key and a server certificate for it signed by the CA.

        Args:
            ca_cert_der: DER encoded CA certificate
            ca_key_der: DER encoded CA private key, SEC1 for ECDSA CAs and
                PKCS#1 for RSA CAs

        Returns:
            IssuedCertificate with the DER certificate and the DER private key
            in the same format family as the CA key

        Raises:
            IssuanceError: Subclass identifying the stage that failed
        """
        ip = self.resolve_ip()
        logger.info("pod ip %s", ip)

        ca = CAMaterial.from_der(ca_cert_der, ca_key_der)
        strategy = strategy_for(ca.algorithm)
        logger.debug("CA signature algorithm %s", oid_name(ca.algorithm.value))

        leaf_key = generate_private_key(ca.algorithm)

        try:
            cert_der = new_cert_from_ca(
                self.cert_config(ip),
                ca.certificate,
                leaf_key.public_key(),
                ca.private_key,
                self.validity_days,
                rng=self.rng,
                now=self.now,
                hash_algorithm=strategy.hash_algorithm(),
            )
        except Exception as e:
            raise CertificateSigningError(
                f"failed to generate a certificate using the given CA certificate and key: {e}"
            ) from e

        key_der = strategy.encode(leaf_key)
        return IssuedCertificate(certificate=cert_der, private_key=key_der)


def sign_cloud_core_cert(ca_cert_der: bytes, ca_key_der: bytes) -> IssuedCertificate:
    """Issue the cloud core certificate using configuration from the environment."""
    return Issuer.from_config(load_config()).issue(ca_cert_der, ca_key_der)
