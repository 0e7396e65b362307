"""Security utilities for accounts.

Provides:
- Password hashing with Argon2id (OWASP recommended)
- JWT access tokens for the session established at signup
- Confirmation secrets and timing-safe secret comparison
"""

import secrets
from datetime import UTC, datetime, timedelta
from typing import Any

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerifyMismatchError
from jose import JWTError, jwt

from enrolkey.config.settings import get_settings


# Argon2id configuration (OWASP recommended parameters)
_password_hasher = PasswordHasher(
    time_cost=2,
    memory_cost=19456,  # 19 MiB
    parallelism=1,
    hash_len=32,
    salt_len=16,
)

# Length of the confirmation secret sent by email
CONFIRM_SECRET_LENGTH = 15
_SECRET_ALPHABET = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"


def hash_password(password: str) -> str:
    """Hash a password using Argon2id.

    Example:
        >>> hash_password("my-secure-password").startswith("$argon2id$")
        True
    """
    return _password_hasher.hash(password)


def verify_password(password: str, password_hash: str) -> tuple[bool, str | None]:
    """Verify a password against its hash.

    Returns:
        Tuple of (is_valid, new_hash); new_hash is set when the stored hash
        uses outdated parameters and should be replaced.
    """
    try:
        _password_hasher.verify(password_hash, password)
    except (VerifyMismatchError, InvalidHashError):
        return False, None

    if _password_hasher.check_needs_rehash(password_hash):
        return True, hash_password(password)
    return True, None


def generate_confirm_secret(length: int = CONFIRM_SECRET_LENGTH) -> str:
    """Generate the per-account confirmation secret."""
    return "".join(secrets.choice(_SECRET_ALPHABET) for _ in range(length))


def secrets_match(provided: str, stored: str) -> bool:
    """Exact, timing-safe string equality."""
    return secrets.compare_digest(provided.encode(), stored.encode())


def create_access_token(
    data: dict[str, Any],
    expires_delta: timedelta | None = None,
) -> str:
    """Create a JWT access token.

    Args:
        data: Payload (typically {"sub": account_id, "username": ..., "auth": ...})
        expires_delta: Token lifetime (default from settings)

    Returns:
        Encoded JWT carrying ``exp``, ``iat`` and ``type="access"``.
    """
    settings = get_settings()

    to_encode = data.copy()
    now = datetime.now(UTC)
    to_encode.update(
        {
            "exp": now
            + (
                expires_delta
                or timedelta(minutes=settings.auth_access_token_expire_minutes)
            ),
            "iat": now,
            "type": "access",
        }
    )

    return jwt.encode(
        to_encode,
        settings.auth_secret_key,
        algorithm=settings.auth_algorithm,
    )


def decode_access_token(token: str) -> dict[str, Any]:
    """Decode and validate an access token.

    Raises:
        JWTError: If token is invalid, expired, or not an access token
    """
    settings = get_settings()

    payload = jwt.decode(
        token,
        settings.auth_secret_key,
        algorithms=[settings.auth_algorithm],
    )

    if payload.get("type") != "access":
        msg = "Invalid token type: expected 'access'"
        raise JWTError(msg)

    return payload
