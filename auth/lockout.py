"""
auth/lockout.py -- Brute-force lockout policy.

State machine per account:

    Unlocked(attempts: 0..max-1) --failure, attempts+1 == max--> Locked(until)
    Locked(until), until passed  --failure-->                    Unlocked(attempts=1)
    Unlocked, or lock passed     --success-->                    Unlocked(attempts=0)
    Locked(until), until ahead   --success-->                    rejected, row untouched

The module is split in two on purpose:

  Pure decisions: is_locked(), decide_failure(), decide_success(). They take
      a LockoutState and a timestamp and return a new LockoutState. No I/O,
      no clock reads -- unit tests drive them directly.

  Apply step: LockoutPolicy reads the current state from the store, asks the
      pure functions what to do, and writes the result with a compare-and-set
      update. If another request changed the row in between, the swap
      matches zero rows and the loop re-reads and decides again. Concurrent
      failed logins therefore cannot race past the threshold or resurrect a
      lock that a successful login just cleared, and a successful login
      cannot clear a lock that a concurrent failure committed after the
      account was read.

is_locked() is evaluated fresh on every call against the injected clock.
Nothing here caches lock state across requests.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from auth.errors import AccountLockedError
from core.config import AuthConfig

if TYPE_CHECKING:
    from auth.models import Account, PrincipalKind
    from auth.store import CredentialStore

logger = logging.getLogger("safeed.auth.lockout")

Clock = Callable[[], datetime]

# Upper bound on compare-and-set retries. Each retry means another request
# committed a change to the same row; a handful is plenty in practice.
_MAX_SWAP_ATTEMPTS = 10


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class LockoutState:
    attempts: int = 0
    lock_until: datetime | None = None


# ---------------------------------------------------------------------------
# Pure decisions
# ---------------------------------------------------------------------------


def is_locked(state: LockoutState, now: datetime) -> bool:
    """True iff lock_until is set and still in the future."""
    return state.lock_until is not None and state.lock_until > now


def decide_failure(state: LockoutState, now: datetime, config: AuthConfig) -> LockoutState:
    """Return the state after one more failed verification.

    An expired lock restarts the count at 1. An active lock is never
    extended; the attempt is counted but lock_until stays as it was.
    """
    if state.lock_until is not None and state.lock_until <= now:
        return LockoutState(attempts=1, lock_until=None)

    attempts = state.attempts + 1
    if state.lock_until is None and attempts >= config.max_login_attempts:
        return LockoutState(attempts=attempts, lock_until=now + config.lockout_duration)
    return LockoutState(attempts=attempts, lock_until=state.lock_until)


def decide_success(state: LockoutState) -> LockoutState:
    """Return the state after a successful verification: counter and lock cleared."""
    return LockoutState(attempts=0, lock_until=None)


# ---------------------------------------------------------------------------
# Apply step
# ---------------------------------------------------------------------------


class LockoutPolicy:
    """Applies lockout decisions to accounts held in a CredentialStore."""

    def __init__(self, store: CredentialStore, config: AuthConfig, clock: Clock = utc_now) -> None:
        self._store = store
        self._config = config
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    def is_locked(self, account: Account) -> bool:
        return is_locked(LockoutState(account.login_attempts, account.lock_until), self._clock())

    def record_failure(self, kind: PrincipalKind, account_id: int) -> LockoutState:
        """Count a failed verification and lock the account at the threshold.

        Returns the state that was committed.
        """
        for _ in range(_MAX_SWAP_ATTEMPTS):
            current = self._store.get_lockout_state(kind, account_id)
            new = decide_failure(current, self._clock(), self._config)
            if self._store.swap_lockout_state(kind, account_id, expected=current, new=new):
                if new.lock_until is not None and current.lock_until is None:
                    logger.warning(
                        "%s account id=%s locked until %s after %d failed attempts",
                        kind.value,
                        account_id,
                        new.lock_until.isoformat(),
                        new.attempts,
                    )
                return new
        raise RuntimeError(f"lockout update for {kind.value} id={account_id} lost too many races")

    def record_success(self, account: Account) -> LockoutState:
        """Clear the counter and stamp last_login, as one compare-and-set update.

        The lock is re-read from the store rather than trusted from `account`:
        a failure committed by a concurrent request after `account` was loaded
        may have locked the row. Raises AccountLockedError in that case and
        leaves the row untouched.
        """
        for _ in range(_MAX_SWAP_ATTEMPTS):
            current = self._store.get_lockout_state(account.kind, account.id)
            now = self._clock()
            if is_locked(current, now):
                raise AccountLockedError(current.lock_until)
            new = decide_success(current)
            if self._store.record_login_success(account.kind, account.id, expected=current, new=new, at=now):
                return new
        raise RuntimeError(f"lockout update for {account.kind.value} id={account.id} lost too many races")
