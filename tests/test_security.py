"""Tests for auth security functions."""

from datetime import timedelta
from uuid import uuid4

import pytest
from jose import JWTError

from enrolkey.auth.security import (
    CONFIRM_SECRET_LENGTH,
    create_access_token,
    decode_access_token,
    generate_confirm_secret,
    hash_password,
    secrets_match,
    verify_password,
)


class TestPasswordHashing:
    """Tests for password hashing functions."""

    def test_hash_password_creates_argon2_hash(self) -> None:
        hashed = hash_password("SecureP@ssword123")
        assert hashed != "SecureP@ssword123"
        assert hashed.startswith("$argon2")

    def test_hash_password_unique_hashes(self) -> None:
        """Same password should produce different hashes (due to salt)."""
        assert hash_password("pw") != hash_password("pw")

    def test_verify_password_correct(self) -> None:
        hashed = hash_password("SecureP@ssword123")
        is_valid, new_hash = verify_password("SecureP@ssword123", hashed)
        assert is_valid is True
        assert new_hash is None

    def test_verify_password_incorrect(self) -> None:
        hashed = hash_password("SecureP@ssword123")
        assert verify_password("WrongP@ssword456", hashed) == (False, None)

    def test_verify_password_invalid_hash(self) -> None:
        assert verify_password("pw", "not-a-hash") == (False, None)


class TestConfirmSecret:
    """Confirmation secrets."""

    def test_default_length(self) -> None:
        assert len(generate_confirm_secret()) == CONFIRM_SECRET_LENGTH

    def test_alphanumeric(self) -> None:
        assert generate_confirm_secret(64).isalnum()

    def test_secrets_differ(self) -> None:
        assert generate_confirm_secret() != generate_confirm_secret()

    def test_secrets_match_exact(self) -> None:
        assert secrets_match("AbC", "AbC") is True
        assert secrets_match("abc", "AbC") is False
        assert secrets_match("AbC ", "AbC") is False


class TestAccessToken:
    """Tests for access token creation and decoding."""

    def test_decode_access_token(self) -> None:
        account_id = uuid4()
        token = create_access_token({"sub": str(account_id), "username": "learner"})
        payload = decode_access_token(token)

        assert payload["sub"] == str(account_id)
        assert payload["username"] == "learner"
        assert payload["type"] == "access"
        assert "exp" in payload
        assert "iat" in payload

    def test_decode_access_token_expired(self) -> None:
        token = create_access_token(
            {"sub": str(uuid4())}, expires_delta=timedelta(seconds=-1)
        )
        with pytest.raises(JWTError):
            decode_access_token(token)

    def test_decode_access_token_invalid(self) -> None:
        with pytest.raises(JWTError):
            decode_access_token("invalid.token.here")
