"""
tests/test_passwords.py -- Unit tests for auth/passwords.py.

Coverage:
  - hash() output is a salted bcrypt hash at the configured cost
  - verify() accepts the right secret and rejects a wrong one
  - malformed stored hashes raise CorruptHashError instead of returning False
  - secrets longer than bcrypt's 72-byte window are accepted
"""

from __future__ import annotations

import pytest

from auth.errors import CorruptHashError
from auth.passwords import PasswordHasher
from core.config import BCRYPT_ROUNDS


class TestHash:
    def test_hash_is_bcrypt_at_requested_cost(self, hasher: PasswordHasher) -> None:
        hashed = hasher.hash("secret1")
        assert hashed.startswith("$2b$04$")
        assert len(hashed) == 60

    def test_hash_is_salted(self, hasher: PasswordHasher) -> None:
        assert hasher.hash("secret1") != hasher.hash("secret1")

    def test_hash_never_contains_plaintext(self, hasher: PasswordHasher) -> None:
        assert "secret1" not in hasher.hash("secret1")

    def test_empty_secret_rejected(self, hasher: PasswordHasher) -> None:
        with pytest.raises(ValueError):
            hasher.hash("")

    def test_default_cost_is_production_constant(self) -> None:
        assert BCRYPT_ROUNDS == 12


class TestVerify:
    def test_correct_secret(self, hasher: PasswordHasher) -> None:
        assert hasher.verify("secret1", hasher.hash("secret1")) is True

    def test_wrong_secret(self, hasher: PasswordHasher) -> None:
        assert hasher.verify("secret2", hasher.hash("secret1")) is False

    def test_empty_candidate_is_a_mismatch(self, hasher: PasswordHasher) -> None:
        assert hasher.verify("", hasher.hash("secret1")) is False

    def test_long_secret_round_trips(self, hasher: PasswordHasher) -> None:
        secret = "x" * 100 + "1!"
        assert hasher.verify(secret, hasher.hash(secret)) is True

    @pytest.mark.parametrize("stored", ["", "plaintext", "$2b$04$short", "$1$" + "a" * 57])
    def test_malformed_hash_raises(self, hasher: PasswordHasher, stored: str) -> None:
        with pytest.raises(CorruptHashError):
            hasher.verify("secret1", stored)

    def test_verify_dummy_does_not_raise(self, hasher: PasswordHasher) -> None:
        assert hasher.verify_dummy("anything") is None
