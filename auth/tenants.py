"""
auth/tenants.py -- Maps a human-readable institution code to its record.

Students are always scoped to a tenant (an Institution). Every student
registration and every tenant-scoped student login goes through resolve()
first, so an unknown or deactivated institution is rejected before the
student table is read or written.
"""

from __future__ import annotations

from auth.errors import NotFoundError, TenantInactiveError, TenantNotFoundError
from auth.models import Institution
from auth.store import CredentialStore


def normalize_institution_code(code: str) -> str:
    return (code or "").strip().upper()


class TenantResolver:
    def __init__(self, store: CredentialStore) -> None:
        self._store = store

    def resolve(self, code: str) -> Institution:
        """Return the active Institution for `code` (case-insensitive).

        Raises TenantNotFoundError or TenantInactiveError, both of which are
        InvalidTenantError.
        """
        normalized = normalize_institution_code(code)
        if not normalized:
            raise TenantNotFoundError()
        try:
            institution = self._store.find_institution_by_code(normalized)
        except NotFoundError as exc:
            raise TenantNotFoundError() from exc
        if not institution.is_active:
            raise TenantInactiveError()
        return institution

    def ensure_active(self, institution_pk: int) -> Institution:
        """Same check as resolve(), keyed by the internal id a Student row carries."""
        try:
            institution = self._store.find_institution_by_id(institution_pk)
        except NotFoundError as exc:
            raise TenantNotFoundError() from exc
        if not institution.is_active:
            raise TenantInactiveError()
        return institution
