"""Shared CA fixtures."""

import datetime
from typing import NamedTuple

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.x509.oid import NameOID


class CA(NamedTuple):
    certificate: x509.Certificate
    private_key: object
    cert_der: bytes
    key_der: bytes


def make_ca(private_key, hash_algorithm=None, common_name: str = "Test Root CA") -> CA:
    """Build a self-signed CA certificate for ``private_key``."""
    name = x509.Name(
        [
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, "cloudcert tests"),
            x509.NameAttribute(NameOID.COMMON_NAME, common_name),
        ]
    )
    public_key = private_key.public_key()
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(public_key)
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=3650))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=False,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=True,
                crl_sign=True,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(public_key), critical=False)
        .sign(private_key, hash_algorithm or hashes.SHA256())
    )

    key_der = private_key.private_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return CA(cert, private_key, cert.public_bytes(serialization.Encoding.DER), key_der)


@pytest.fixture(scope="session")
def ec_ca() -> CA:
    """Self-signed P-256 CA signed with ECDSA-SHA256 (SEC1 key)."""
    return make_ca(ec.generate_private_key(ec.SECP256R1()))


@pytest.fixture(scope="session")
def rsa_ca() -> CA:
    """Self-signed RSA-2048 CA signed with SHA256-with-RSA (PKCS#1 key)."""
    return make_ca(rsa.generate_private_key(public_exponent=65537, key_size=2048))


@pytest.fixture(scope="session")
def ec_sha384_ca() -> CA:
    """CA whose signature algorithm is ECDSA-SHA384."""
    return make_ca(ec.generate_private_key(ec.SECP384R1()), hash_algorithm=hashes.SHA384())


@pytest.fixture
def fixed_now():
    """Clock fixed at 2024-01-01T12:00:00.123456Z."""
    moment = datetime.datetime(2024, 1, 1, 12, 0, 0, 123456, tzinfo=datetime.timezone.utc)
    return lambda: moment
