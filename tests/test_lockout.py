"""
tests/test_lockout.py -- Unit tests for auth/lockout.py.

The decision functions are pure, so most cases run without a database.
TestLockoutPolicy exercises the compare-and-set apply step against a real
in-memory store.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from auth.errors import AccountLockedError
from auth.lockout import LockoutPolicy, LockoutState, decide_failure, decide_success, is_locked
from auth.models import PrincipalKind
from auth.service import AuthService
from auth.store import CredentialStore
from core.config import AuthConfig

NOW = datetime(2025, 1, 15, 9, 0, 0, tzinfo=timezone.utc)
CONFIG = AuthConfig(secret_key="k" * 32)


class TestIsLocked:
    def test_no_lock(self) -> None:
        assert is_locked(LockoutState(attempts=3), NOW) is False

    def test_future_lock(self) -> None:
        assert is_locked(LockoutState(5, NOW + timedelta(seconds=1)), NOW) is True

    def test_lock_ending_now_is_expired(self) -> None:
        assert is_locked(LockoutState(5, NOW), NOW) is False


class TestDecideFailure:
    def test_increments(self) -> None:
        assert decide_failure(LockoutState(attempts=2), NOW, CONFIG) == LockoutState(3, None)

    def test_locks_at_threshold(self) -> None:
        new = decide_failure(LockoutState(attempts=4), NOW, CONFIG)
        assert new.attempts == 5
        assert new.lock_until == NOW + timedelta(minutes=30)

    def test_active_lock_not_extended(self) -> None:
        until = NOW + timedelta(minutes=10)
        new = decide_failure(LockoutState(5, until), NOW, CONFIG)
        assert new.lock_until == until
        assert new.attempts == 6

    def test_expired_lock_restarts_count(self) -> None:
        new = decide_failure(LockoutState(5, NOW - timedelta(seconds=1)), NOW, CONFIG)
        assert new == LockoutState(1, None)

    def test_threshold_follows_config(self) -> None:
        strict = AuthConfig(secret_key="k" * 32, max_login_attempts=2, lockout_duration=timedelta(minutes=1))
        new = decide_failure(LockoutState(attempts=1), NOW, strict)
        assert new.lock_until == NOW + timedelta(minutes=1)


class TestDecideSuccess:
    def test_clears_counter_and_lock(self) -> None:
        assert decide_success(LockoutState(4, NOW + timedelta(minutes=5))) == LockoutState(0, None)


class TestLockoutPolicy:
    """Apply step against a real store."""

    def _institution_pk(self, service: AuthService, make_institution) -> int:
        return service.register_institution(make_institution()).account.id

    def test_record_failure_persists(self, service, store: CredentialStore, config, clock, make_institution) -> None:
        pk = self._institution_pk(service, make_institution)
        policy = LockoutPolicy(store, config, clock=clock)
        policy.record_failure(PrincipalKind.INSTITUTION, pk)
        policy.record_failure(PrincipalKind.INSTITUTION, pk)
        assert store.get_lockout_state(PrincipalKind.INSTITUTION, pk) == LockoutState(2, None)

    def test_fifth_failure_locks(self, service, store: CredentialStore, config, clock, make_institution) -> None:
        pk = self._institution_pk(service, make_institution)
        policy = LockoutPolicy(store, config, clock=clock)
        for _ in range(5):
            state = policy.record_failure(PrincipalKind.INSTITUTION, pk)
        assert state.lock_until == clock.now + timedelta(minutes=30)
        assert policy.is_locked(store.find_institution_by_id(pk)) is True

    def test_stale_swap_is_rejected(self, service, store: CredentialStore, make_institution) -> None:
        pk = self._institution_pk(service, make_institution)
        stale = store.get_lockout_state(PrincipalKind.INSTITUTION, pk)
        assert store.swap_lockout_state(PrincipalKind.INSTITUTION, pk, stale, LockoutState(1, None)) is True
        # A second writer still holding the old read must not overwrite.
        assert store.swap_lockout_state(PrincipalKind.INSTITUTION, pk, stale, LockoutState(1, None)) is False
        assert store.get_lockout_state(PrincipalKind.INSTITUTION, pk).attempts == 1

    def test_record_success_resets_and_stamps_last_login(
        self, service, store: CredentialStore, config, clock, make_institution
    ) -> None:
        pk = self._institution_pk(service, make_institution)
        policy = LockoutPolicy(store, config, clock=clock)
        for _ in range(3):
            policy.record_failure(PrincipalKind.INSTITUTION, pk)
        policy.record_success(store.find_institution_by_id(pk))
        inst = store.find_institution_by_id(pk)
        assert (inst.login_attempts, inst.lock_until) == (0, None)
        assert inst.last_login == clock.now

    def test_record_success_refuses_lock_committed_after_read(
        self, service, store: CredentialStore, config, clock, make_institution
    ) -> None:
        pk = self._institution_pk(service, make_institution)
        policy = LockoutPolicy(store, config, clock=clock)
        stale = store.find_institution_by_id(pk)
        for _ in range(5):
            policy.record_failure(PrincipalKind.INSTITUTION, pk)
        locked = store.get_lockout_state(PrincipalKind.INSTITUTION, pk)
        with pytest.raises(AccountLockedError):
            policy.record_success(stale)
        assert store.get_lockout_state(PrincipalKind.INSTITUTION, pk) == locked
        assert store.find_institution_by_id(pk).last_login is None

    def test_success_write_is_compare_and_set(self, service, store: CredentialStore, make_institution) -> None:
        pk = self._institution_pk(service, make_institution)
        stale = store.get_lockout_state(PrincipalKind.INSTITUTION, pk)
        store.swap_lockout_state(PrincipalKind.INSTITUTION, pk, stale, LockoutState(2, None))
        written = store.record_login_success(
            PrincipalKind.INSTITUTION, pk, expected=stale, new=LockoutState(0, None), at=NOW
        )
        assert written is False
        assert store.get_lockout_state(PrincipalKind.INSTITUTION, pk).attempts == 2
