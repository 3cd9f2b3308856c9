"""
Short code generation for bins.

A short code is 6 characters from a 31-symbol alphabet without look-alike
characters (no 0/O, 1/I/L), so it can be typed from a printed label.
31^6 ≈ 887M combinations.

Codes are not unique by themselves. Callers insert under the unique
constraint and retry with a fresh candidate on conflict, at most
MAX_SHORT_CODE_ATTEMPTS times.
"""
import re
import secrets
from typing import Iterator, Optional

SHORT_CODE_ALPHABET = "23456789ABCDEFGHJKMNPQRSTUVWXYZ"
SHORT_CODE_LENGTH = 6
MAX_SHORT_CODE_ATTEMPTS = 10

_SHORT_CODE_RE = re.compile(f"^[{SHORT_CODE_ALPHABET}]{{{SHORT_CODE_LENGTH}}}$")


def generate_short_code() -> str:
    """
    Generate a random short code.

    Returns:
        6-character code drawn from SHORT_CODE_ALPHABET
    """
    return "".join(secrets.choice(SHORT_CODE_ALPHABET) for _ in range(SHORT_CODE_LENGTH))


def normalize_short_code(code: Optional[str]) -> Optional[str]:
    """
    Upper-case and validate a user supplied code.

    Returns:
        The normalized code, or None if it is outside the code space
    """
    if not code:
        return None
    normalized = code.strip().upper()
    if not _SHORT_CODE_RE.match(normalized):
        return None
    return normalized


def candidate_codes(preferred: Optional[str] = None) -> Iterator[str]:
    """
    Yield short code candidates for one insert.

    A valid preferred code (e.g. from a backup, already printed on a label)
    is tried first; the remaining attempts use random codes.
    """
    first = normalize_short_code(preferred)
    attempts = 0
    if first is not None:
        attempts += 1
        yield first
    while attempts < MAX_SHORT_CODE_ATTEMPTS:
        attempts += 1
        yield generate_short_code()
