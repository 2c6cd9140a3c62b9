"""Account provisioning helpers: generated email, temporary password, avatar."""

import logging
import re
from urllib.parse import quote

logger = logging.getLogger(__name__)

EMAIL_DOMAIN = "soyelmejor.com"
MIN_PASSWORD_LENGTH = 6

_NON_LETTERS = re.compile(r"[^a-zA-ZÀ-ÿ]")


class ProvisioningError(ValueError):
    pass


def name_prefix(name: str) -> str:
    return _NON_LETTERS.sub("", name or "").lower()[:3]


def generate_email(name: str, domain: str = EMAIL_DOMAIN) -> str:
    prefix = name_prefix(name)
    if not prefix:
        raise ProvisioningError("Name must contain letters to generate an email")
    return f"{prefix}@{domain}"


def generate_temp_password(name: str, cedula: str) -> str:
    """First three letters of the name followed by the national id number."""
    if not cedula or not cedula.strip():
        raise ProvisioningError("Cedula is required to generate password")

    prefix = name_prefix(name)
    if len(prefix) < 3:
        raise ProvisioningError("Name must contain at least 3 letters to generate password")

    password = prefix + cedula.strip()
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ProvisioningError(
            f"Generated password is too short, name and cedula must give at least "
            f"{MIN_PASSWORD_LENGTH} characters"
        )
    logger.info("Generated password for user: %s (%d chars)", mask(password), len(password))
    return password


def mask(password: str) -> str:
    return password[:3] + "******"


def avatar_url(name: str) -> str:
    return f"https://picsum.photos/seed/{quote(name.strip())}/100"
