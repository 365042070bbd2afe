"""Exceptions raised while issuing a cloud core certificate."""


class IssuanceError(Exception):
    """Base class for every certificate issuance failure."""

    pass


class HostResolutionError(IssuanceError):
    """Raised when the local host IP cannot be determined."""

    pass


class CAParseError(IssuanceError):
    """Raised when the CA certificate is not valid DER."""

    pass


class UnsupportedAlgorithmError(IssuanceError):
    """Raised for a signature algorithm outside the supported set."""

    def __init__(self, name: str, message: str | None = None):
        self.name = name
        super().__init__(message or f"unsupported signature algorithm: {name}")


class UnsupportedCAAlgorithmError(UnsupportedAlgorithmError):
    """Raised when the CA certificate was signed with an unsupported algorithm."""

    def __init__(self, name: str):
        super().__init__(name, f"unsupported CA signature algorithm: {name}")


class CAKeyParseError(IssuanceError):
    """Raised when the CA private key does not match the CA certificate."""

    pass


class KeyGenerationError(IssuanceError):
    """Raised when a leaf private key cannot be generated."""

    pass


class CertificateConfigError(IssuanceError):
    """Raised when a certificate configuration is incomplete."""

    pass


class MissingCommonNameError(CertificateConfigError):
    pass


class MissingKeyUsageError(CertificateConfigError):
    pass


class SerialGenerationError(IssuanceError):
    """Raised when the random source fails to produce a serial number."""

    pass


class CertificateSigningError(IssuanceError):
    """Raised when the leaf certificate cannot be built or signed."""

    pass


class KeyEncodingError(IssuanceError):
    """Raised when the leaf private key cannot be DER encoded."""

    pass
