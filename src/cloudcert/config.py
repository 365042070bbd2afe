"""Configuration loading and validation for cloudcert."""

import datetime
import ipaddress
import os
import re
from dataclasses import dataclass

from dotenv import find_dotenv, load_dotenv

from cloudcert.hostinfo import get_hostname

DEFAULT_VALIDITY_DAYS = 36500
LAST_VALID_DATE = datetime.date(9999, 12, 30)

# RFC 1123 hostname, labels separated by dots
_HOSTNAME_RE = re.compile(
    r"^[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?(\.[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?)*$"
)


class ConfigurationError(Exception):
    """Raised when environment configuration is invalid."""

    pass


def validate_hostname(value: str | None) -> str:
    """Validate CLOUDCERT_HOSTNAME.

    Args:
        value: The hostname from environment (or None for the local hostname)

    Returns:
        The lower-cased hostname

    Raises:
        ConfigurationError: If the hostname is not a valid DNS name
    """
    if value is None or not value.strip():
        return get_hostname()

    value = value.strip().lower()

    if len(value) > 253:
        raise ConfigurationError(
            f"CLOUDCERT_HOSTNAME must be at most 253 characters (got {len(value)})"
        )
    if not _HOSTNAME_RE.match(value):
        raise ConfigurationError(f"CLOUDCERT_HOSTNAME is not a valid hostname (got '{value}')")

    return value


def validate_pod_ip(value: str | None) -> str | None:
    """Validate CLOUDCERT_POD_IP.

    Args:
        value: The IP address from environment, if set

    Returns:
        The normalized IP address, or None when unset

    Raises:
        ConfigurationError: If the value is not an IP address
    """
    if value is None:
        return None

    value = value.strip()

    if not value:
        return None

    try:
        return str(ipaddress.ip_address(value))
    except ValueError:
        raise ConfigurationError(f"CLOUDCERT_POD_IP must be an IP address (got '{value}')")


def max_validity_days() -> int:
    """Longest validity, in days, that keeps NotAfter within year 9999."""
    today = datetime.datetime.now(datetime.timezone.utc).date()
    return (LAST_VALID_DATE - today).days


def validate_validity_days(value: str | None) -> int:
    """Validate CLOUDCERT_VALIDITY_DAYS.

    Args:
        value: The day count from environment (or None for the default)

    Returns:
        The validity period in whole days

    Raises:
        ConfigurationError: If the value is not a positive integer or is too large
    """
    if value is None or not value.strip():
        return DEFAULT_VALIDITY_DAYS

    value = value.strip()

    if not (value.isascii() and value.isdigit()):
        raise ConfigurationError(
            f"CLOUDCERT_VALIDITY_DAYS must be a whole number of days (got '{value}')"
        )

    days = int(value)
    if days == 0:
        raise ConfigurationError("CLOUDCERT_VALIDITY_DAYS must be greater than zero")

    max_days = max_validity_days()
    if days > max_days:
        raise ConfigurationError(
            f"CLOUDCERT_VALIDITY_DAYS must be at most {max_days} so the certificate "
            f"expires before year 10000 (got {days})"
        )

    return days


@dataclass
class IssuerConfig:
    """Issuer configuration loaded from environment variables."""

    hostname: str
    pod_ip: str | None
    validity_days: int


def load_config() -> IssuerConfig:
    """Load and validate all configuration from environment variables.

    A ``.env`` file found from the working directory is read first when
    CLOUDCERT_ENV is ``development``.

    Returns:
        IssuerConfig object with validated configuration

    Raises:
        ConfigurationError: If any config value is invalid
    """
    if os.getenv("CLOUDCERT_ENV") == "development":
        load_dotenv(find_dotenv(usecwd=True))

    hostname = validate_hostname(os.getenv("CLOUDCERT_HOSTNAME"))
    pod_ip = validate_pod_ip(os.getenv("CLOUDCERT_POD_IP"))
    validity_days = validate_validity_days(os.getenv("CLOUDCERT_VALIDITY_DAYS"))

    return IssuerConfig(
        hostname=hostname,
        pod_ip=pod_ip,
        validity_days=validity_days,
    )
