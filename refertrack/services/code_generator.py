"""
Referral code generation.

Codes are 8-10 characters over digits + uppercase letters. Two policies:
- random: every character random
- branded: first 3 characters from the contractor's name, rest random

Uniqueness is the caller's job. issue_unique_code wraps the generator in a
bounded retry; the database unique constraint stays the source of truth.
"""
import logging
import re
import secrets
import string
from typing import Awaitable, Callable, Iterator, Optional

from refertrack.errors import CodeGenerationExhausted

logger = logging.getLogger(__name__)

REFERRAL_CODE_ALPHABET = string.digits + string.ascii_uppercase
MIN_CODE_LENGTH = 8
MAX_CODE_LENGTH = 10
DEFAULT_CODE_LENGTH = 8
DEFAULT_MAX_ATTEMPTS = 3

BRAND_PREFIX_LENGTH = 3
BRAND_PADDING = "REF"

_CODE_PATTERN = re.compile(rf"^[0-9A-Z]{{{MIN_CODE_LENGTH},{MAX_CODE_LENGTH}}}$")
_NON_ALNUM = re.compile(r"[^A-Z0-9]")


def _random_chars(count: int) -> str:
    return "".join(secrets.choice(REFERRAL_CODE_ALPHABET) for _ in range(count))


def brand_prefix(contractor_name: Optional[str]) -> str:
    """
    First 3 alphanumerics of the contractor name, uppercased.
    Short names are padded from "REF": "AB Roofing" -> "ABR", "" -> "REF".
    """
    cleaned = _NON_ALNUM.sub("", (contractor_name or "").upper())
    return (cleaned + BRAND_PADDING)[:BRAND_PREFIX_LENGTH]


def generate_referral_code(
    length: int = DEFAULT_CODE_LENGTH,
    contractor_name: Optional[str] = None,
) -> str:
    """Generate one candidate code. Branded when contractor_name is given."""
    if not MIN_CODE_LENGTH <= length <= MAX_CODE_LENGTH:
        raise ValueError(
            f"Referral code length must be {MIN_CODE_LENGTH}-{MAX_CODE_LENGTH}, got {length}"
        )
    if contractor_name is None:
        return _random_chars(length)
    prefix = brand_prefix(contractor_name)
    return prefix + _random_chars(length - len(prefix))


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


def is_valid_code(code: str) -> bool:
    return bool(_CODE_PATTERN.match(code or ""))


def candidate_codes(
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    length: int = DEFAULT_CODE_LENGTH,
    contractor_name: Optional[str] = None,
) -> Iterator[str]:
    """Yield at most max_attempts fresh candidates."""
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")
    for _ in range(max_attempts):
        yield generate_referral_code(length, contractor_name)


async def issue_unique_code(
    is_taken: Callable[[str], Awaitable[bool]],
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    length: int = DEFAULT_CODE_LENGTH,
    contractor_name: Optional[str] = None,
) -> str:
    """
    Return the first candidate for which is_taken() is False.
    Raises CodeGenerationExhausted after max_attempts collisions.
    """
    for attempt, code in enumerate(candidate_codes(max_attempts, length, contractor_name), start=1):
        if not await is_taken(code):
            return code
        logger.info("Referral code collision on attempt %d/%d", attempt, max_attempts)
    raise CodeGenerationExhausted(
        f"Failed to generate a unique referral code after {max_attempts} attempts"
    )
