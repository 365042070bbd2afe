"""Leaf key generation and the per-algorithm key handling table.

The CA certificate's signature algorithm decides which key type the leaf
gets, which format the CA key is parsed from, and which format the leaf
key is written to. All three live in ``KEY_STRATEGIES`` so that supporting
another algorithm means adding one entry.
"""

import enum
from collections.abc import Callable
from dataclasses import dataclass

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.x509 import ObjectIdentifier
from cryptography.x509.oid import SignatureAlgorithmOID

from cloudcert.errors import (
    CAKeyParseError,
    KeyEncodingError,
    KeyGenerationError,
    UnsupportedAlgorithmError,
)

PrivateKey = ec.EllipticCurvePrivateKey | rsa.RSAPrivateKey

RSA_KEY_SIZE = 2048
RSA_PUBLIC_EXPONENT = 65537


class SignatureAlgorithm(enum.Enum):
    """Signature algorithms a CA certificate may use."""

    ECDSA_SHA256 = SignatureAlgorithmOID.ECDSA_WITH_SHA256
    SHA256_WITH_RSA = SignatureAlgorithmOID.RSA_WITH_SHA256

    @classmethod
    def from_oid(cls, oid: ObjectIdentifier) -> "SignatureAlgorithm":
        """Map a signature algorithm OID to a supported algorithm.

        Raises:
            UnsupportedAlgorithmError: If the OID is not supported
        """
        try:
            return cls(oid)
        except ValueError:
            raise UnsupportedAlgorithmError(oid_name(oid)) from None


def oid_name(oid: ObjectIdentifier) -> str:
    """Human readable name of an OID, falling back to its dotted form."""
    name = getattr(oid, "_name", None)
    if not name or name == "Unknown OID":
        return oid.dotted_string
    return name


def _generate_ec_key() -> ec.EllipticCurvePrivateKey:
    return ec.generate_private_key(ec.SECP256R1())


def _generate_rsa_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(
        public_exponent=RSA_PUBLIC_EXPONENT,
        key_size=RSA_KEY_SIZE,
    )


# DER tags of the field following the version INTEGER. SEC1 continues with
# the OCTET STRING private key, PKCS#1 with the INTEGER modulus and PKCS#8
# with the AlgorithmIdentifier SEQUENCE.
DER_INTEGER = 0x02
DER_OCTET_STRING = 0x04
DER_SEQUENCE = 0x30


def _read_der_header(data: bytes, offset: int) -> tuple[int, int, int]:
    """Return (tag, content offset, content length) of the element at offset."""
    tag = data[offset]
    length = data[offset + 1]
    offset += 2
    if length & 0x80:
        size = length & 0x7F
        if offset + size > len(data):
            raise IndexError("truncated DER length")
        length = int.from_bytes(data[offset : offset + size], "big")
        offset += size
    return tag, offset, length


def second_field_tag(data: bytes) -> int | None:
    """Tag of the field after the version in a DER private key structure."""
    try:
        tag, body, _ = _read_der_header(data, 0)
        if tag != DER_SEQUENCE:
            return None
        tag, content, length = _read_der_header(data, body)
        if tag != DER_INTEGER:
            return None
        return data[content + length]
    except IndexError:
        return None


@dataclass(frozen=True)
class KeyStrategy:
    """How keys are generated, parsed and encoded for one algorithm."""

    key_type: type
    key_format: str
    field_tag: int
    generate: Callable[[], PrivateKey]
    hash_algorithm: Callable[[], hashes.HashAlgorithm]

    def load(self, data: bytes) -> PrivateKey:
        """Parse an unencrypted DER private key of this strategy's type.

        Raises:
            CAKeyParseError: If the bytes are not a key of the expected type
                or are wrapped in another format such as PKCS#8
        """
        try:
            key = serialization.load_der_private_key(data, password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise CAKeyParseError(f"failed to parse {self.key_format} private key: {e}") from e

        if not isinstance(key, self.key_type):
            raise CAKeyParseError(
                f"failed to parse {self.key_format} private key: "
                f"got {type(key).__name__}"
            )
        if second_field_tag(data) != self.field_tag:
            raise CAKeyParseError(
                f"failed to parse {self.key_format} private key: "
                f"key is not in {self.key_format} form"
            )
        return key

    def encode(self, key: PrivateKey) -> bytes:
        """Encode a private key as unencrypted DER in this strategy's format.

        Raises:
            KeyEncodingError: If the key is of the wrong type or cannot be encoded
        """
        if not isinstance(key, self.key_type):
            raise KeyEncodingError(
                f"cannot encode {type(key).__name__} as a {self.key_format} private key"
            )
        try:
            return key.private_bytes(
                encoding=serialization.Encoding.DER,
                format=serialization.PrivateFormat.TraditionalOpenSSL,
                encryption_algorithm=serialization.NoEncryption(),
            )
        except (ValueError, TypeError) as e:
            raise KeyEncodingError(
                f"failed to convert a private key to {self.key_format} DER form: {e}"
            ) from e


KEY_STRATEGIES: dict[SignatureAlgorithm, KeyStrategy] = {
    SignatureAlgorithm.ECDSA_SHA256: KeyStrategy(
        key_type=ec.EllipticCurvePrivateKey,
        key_format="SEC1",
        field_tag=DER_OCTET_STRING,
        generate=_generate_ec_key,
        hash_algorithm=hashes.SHA256,
    ),
    SignatureAlgorithm.SHA256_WITH_RSA: KeyStrategy(
        key_type=rsa.RSAPrivateKey,
        key_format="PKCS#1",
        field_tag=DER_INTEGER,
        generate=_generate_rsa_key,
        hash_algorithm=hashes.SHA256,
    ),
}


def strategy_for(algorithm: SignatureAlgorithm) -> KeyStrategy:
    """Look up the key strategy for an algorithm.

    Raises:
        UnsupportedAlgorithmError: If no strategy is registered for it
    """
    try:
        return KEY_STRATEGIES[algorithm]
    except (KeyError, TypeError):
        name = getattr(algorithm, "name", None) or str(algorithm)
        raise UnsupportedAlgorithmError(name) from None


def generate_private_key(algorithm: SignatureAlgorithm) -> PrivateKey:
    """Generate a fresh private key matching a signature algorithm.

    ECDSA-SHA256 yields a P-256 key, SHA256-with-RSA a 2048-bit RSA key.

    Args:
        algorithm: The CA signature algorithm the leaf key must match

    Returns:
        The generated private key

    Raises:
        UnsupportedAlgorithmError: If the algorithm is not supported
        KeyGenerationError: If the backend fails to generate the key
    """
    strategy = strategy_for(algorithm)
    try:
        return strategy.generate()
    except Exception as e:
        raise KeyGenerationError(f"failed to generate a private key: {e}") from e


def load_private_key(algorithm: SignatureAlgorithm, data: bytes) -> PrivateKey:
    """Parse a DER private key in the format implied by ``algorithm``."""
    return strategy_for(algorithm).load(data)


def encode_private_key(algorithm: SignatureAlgorithm, key: PrivateKey) -> bytes:
    """DER encode ``key`` as SEC1 or PKCS#1 depending on ``algorithm``."""
    return strategy_for(algorithm).encode(key)
