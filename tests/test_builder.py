"""Tests for building certificates signed by a CA."""

import datetime
import ipaddress
import random

import pytest
from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from cloudcert.builder import (
    MAX_SERIAL,
    AltNames,
    CertConfig,
    new_cert_from_ca,
    random_serial,
)
from cloudcert.errors import (
    CertificateConfigError,
    MissingCommonNameError,
    MissingKeyUsageError,
    SerialGenerationError,
)


class ExplodingRandom:
    """Random source that fails on every draw."""

    def __init__(self):
        self.calls = 0

    def randrange(self, *args):
        self.calls += 1
        raise OSError("random source unavailable")


def server_config(**overrides) -> CertConfig:
    values = {
        "common_name": "server.example",
        "organization": ("Example",),
        "usages": (ExtendedKeyUsageOID.SERVER_AUTH,),
        "alt_names": AltNames(
            dns_names=("server.example",),
            ips=(ipaddress.ip_address("192.0.2.10"),),
        ),
    }
    values.update(overrides)
    return CertConfig(**values)


def build(ca, config=None, validity_days=30, **kwargs) -> x509.Certificate:
    leaf_key = ec.generate_private_key(ec.SECP256R1())
    der = new_cert_from_ca(
        config or server_config(),
        ca.certificate,
        leaf_key.public_key(),
        ca.private_key,
        validity_days,
        **kwargs,
    )
    return x509.load_der_x509_certificate(der)


class TestCertConfigValidation:
    """Tests for the checks made before any randomness is used."""

    def test_missing_common_name(self, ec_ca):
        """An empty common name raises MissingCommonNameError."""
        rng = ExplodingRandom()
        with pytest.raises(MissingCommonNameError):
            build(ec_ca, server_config(common_name=""), rng=rng)
        assert rng.calls == 0  # nosec B101

    def test_missing_key_usage(self, ec_ca):
        """An empty extended key usage set raises MissingKeyUsageError."""
        rng = ExplodingRandom()
        with pytest.raises(MissingKeyUsageError):
            build(ec_ca, server_config(usages=()), rng=rng)
        assert rng.calls == 0  # nosec B101

    def test_negative_validity(self, ec_ca):
        """Validity must be a non-negative day count."""
        with pytest.raises(CertificateConfigError):
            build(ec_ca, validity_days=-1)

    def test_duration_is_not_a_day_count(self, ec_ca):
        """A timedelta is rejected instead of being read as days."""
        with pytest.raises(CertificateConfigError):
            build(ec_ca, validity_days=datetime.timedelta(days=30))

    def test_validity_past_year_9999(self, ec_ca):
        """A window ending after year 9999 is rejected before a serial is drawn."""
        rng = ExplodingRandom()
        with pytest.raises(CertificateConfigError) as exc_info:
            build(ec_ca, validity_days=99999999, rng=rng)
        assert "9999" in str(exc_info.value)  # nosec B101
        assert rng.calls == 0  # nosec B101


class TestRandomSerial:
    """Tests for serial number generation."""

    def test_serial_in_range(self):
        """Serials fall in [1, 2**63)."""
        for _ in range(100):
            serial = random_serial()
            assert 1 <= serial < MAX_SERIAL  # nosec B101

    def test_seeded_source_is_deterministic(self):
        """An injected source controls the serial."""
        assert random_serial(random.Random(7)) == random_serial(random.Random(7))  # nosec B101

    def test_source_failure(self):
        """A failing random source raises SerialGenerationError."""
        with pytest.raises(SerialGenerationError) as exc_info:
            random_serial(ExplodingRandom())
        assert isinstance(exc_info.value.__cause__, OSError)  # nosec B101


class TestNewCertFromCa:
    """Tests for new_cert_from_ca."""

    def test_subject_and_issuer(self, ec_ca):
        """Subject comes from the config, issuer from the CA."""
        cert = build(ec_ca)
        cn = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
        org = cert.subject.get_attributes_for_oid(NameOID.ORGANIZATION_NAME)
        assert [attr.value for attr in cn] == ["server.example"]  # nosec B101
        assert [attr.value for attr in org] == ["Example"]  # nosec B101
        assert cert.issuer == ec_ca.certificate.subject  # nosec B101

    def test_alt_names(self, ec_ca):
        """DNS names and IP addresses are both placed in the SAN."""
        cert = build(ec_ca)
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
        assert san.get_values_for_type(x509.DNSName) == ["server.example"]  # nosec B101
        assert san.get_values_for_type(x509.IPAddress) == [  # nosec B101
            ipaddress.ip_address("192.0.2.10")
        ]

    def test_no_alt_names(self, ec_ca):
        """The SAN extension is left out when there are no names."""
        cert = build(ec_ca, server_config(alt_names=AltNames()))
        with pytest.raises(x509.ExtensionNotFound):
            cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)

    def test_key_usage(self, ec_ca):
        """KeyUsage is digitalSignature and keyEncipherment only, marked critical."""
        cert = build(ec_ca)
        ext = cert.extensions.get_extension_for_class(x509.KeyUsage)
        assert ext.critical  # nosec B101
        assert ext.value.digital_signature  # nosec B101
        assert ext.value.key_encipherment  # nosec B101
        assert not ext.value.key_cert_sign  # nosec B101
        assert not ext.value.crl_sign  # nosec B101

    def test_extended_key_usage(self, ec_ca):
        """Extended key usages are copied from the config."""
        config = server_config(
            usages=(ExtendedKeyUsageOID.SERVER_AUTH, ExtendedKeyUsageOID.CLIENT_AUTH)
        )
        cert = build(ec_ca, config)
        eku = cert.extensions.get_extension_for_class(x509.ExtendedKeyUsage).value
        assert list(eku) == [  # nosec B101
            ExtendedKeyUsageOID.SERVER_AUTH,
            ExtendedKeyUsageOID.CLIENT_AUTH,
        ]

    def test_authority_key_identifier(self, ec_ca):
        """The AKI matches the CA's subject key identifier."""
        cert = build(ec_ca)
        aki = cert.extensions.get_extension_for_class(x509.AuthorityKeyIdentifier).value
        ski = ec_ca.certificate.extensions.get_extension_for_class(x509.SubjectKeyIdentifier)
        assert aki.key_identifier == ski.value.digest  # nosec B101

    def test_validity_window(self, ec_ca, fixed_now):
        """NotBefore is now truncated to seconds; NotAfter adds whole days."""
        cert = build(ec_ca, validity_days=36500, now=fixed_now)
        expected = datetime.datetime(2024, 1, 1, 12, 0, 0, tzinfo=datetime.timezone.utc)
        assert cert.not_valid_before_utc == expected  # nosec B101
        assert cert.not_valid_after_utc - cert.not_valid_before_utc == datetime.timedelta(  # nosec B101
            days=36500
        )

    def test_serial_from_injected_source(self, ec_ca):
        """The serial number is drawn from the injected source."""
        cert = build(ec_ca, rng=random.Random(42))
        assert cert.serial_number == random.Random(42).randrange(1, MAX_SERIAL)  # nosec B101

    def test_signed_by_ca(self, ec_ca, rsa_ca):
        """The certificate verifies against the issuing CA."""
        for ca in (ec_ca, rsa_ca):
            build(ca).verify_directly_issued_by(ca.certificate)
