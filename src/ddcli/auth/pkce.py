"""PKCE verifier/challenge and CSRF state generation (:rfc:`7636`).

All randomness comes from :mod:`secrets`. Nothing produced here is ever
persisted: a :class:`~ddcli.models.PKCEChallenge` and its state live only
for one login attempt.
"""

from __future__ import annotations

import base64
import hashlib
import secrets
import string

from ddcli.exceptions import InvalidArgumentError
from ddcli.models import PKCEChallenge

MIN_VERIFIER_LENGTH = 43
MAX_VERIFIER_LENGTH = 128
DEFAULT_VERIFIER_LENGTH = 64

# RFC 7636 section 4.1 allows "-._~" as well; we stay within the
# base64url alphabet.
_VERIFIER_ALPHABET = string.ascii_letters + string.digits + "-_"


def generate_code_verifier(length: int = DEFAULT_VERIFIER_LENGTH) -> str:
    """Return a random code verifier of exactly *length* characters.

    Raises:
        InvalidArgumentError: If *length* is outside ``[43, 128]``.
    """
    if length < MIN_VERIFIER_LENGTH or length > MAX_VERIFIER_LENGTH:
        raise InvalidArgumentError(
            f"Code verifier length must be between {MIN_VERIFIER_LENGTH} and "
            f"{MAX_VERIFIER_LENGTH} characters, got {length}."
        )
    return "".join(secrets.choice(_VERIFIER_ALPHABET) for _ in range(length))


def generate_code_challenge(code_verifier: str) -> str:
    """base64url(SHA-256(verifier)) without padding."""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def generate_pkce_challenge(length: int = DEFAULT_VERIFIER_LENGTH) -> PKCEChallenge:
    """Generate a verifier and its ``S256`` challenge."""
    verifier = generate_code_verifier(length)
    return PKCEChallenge(
        code_verifier=verifier,
        code_challenge=generate_code_challenge(verifier),
        code_challenge_method="S256",
    )


def generate_state() -> str:
    """Return 256 random bits as 64 lowercase hex characters."""
    return secrets.token_hex(32)
