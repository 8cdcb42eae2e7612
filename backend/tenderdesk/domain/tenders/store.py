"""
Tender persistence interface.

The service talks to a `TenderStore` instance handed to it at construction
time; there is no module-level store. `InMemoryTenderStore` backs local
development and tests, `repositories.tenders_repo.DynamoTenderStore` backs
deployed environments.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterator

from .errors import ConflictError, ConversionInProgressError, NotFoundError, ValidationError
from .models import Tender, TenderFilter


class TenderStore(ABC):
    """Authoritative keyed collection of tenders."""

    @abstractmethod
    def get(self, tender_id: str) -> Tender:
        """Return the current tender or raise NotFoundError."""

    @abstractmethod
    def add(self, tender: Tender) -> Tender:
        """Insert a new tender; tender numbers are unique per organization."""

    @abstractmethod
    def save(self, tender: Tender, expected_version: int) -> Tender:
        """
        Compare-and-swap write.

        Succeeds only if the stored version still equals `expected_version`;
        the stored copy gets `expected_version + 1`. Otherwise ConflictError.
        """

    @abstractmethod
    def list(self, filters: TenderFilter | None = None) -> list[Tender]:
        """Tenders matching `filters`, newest first."""

    @abstractmethod
    def find_by_number(self, *, organization_id: str | None, tender_number: str) -> Tender | None:
        pass

    @abstractmethod
    def next_sequence(self, scope: str) -> int:
        """Monotonic counter per scope (used for tender numbering)."""

    @abstractmethod
    def conversion_lock(self, tender_id: str, *, wait_seconds: float | None = None):
        """
        Context manager granting exclusive conversion rights for one tender.

        Raises ConversionInProgressError when the lock is still held after
        `wait_seconds`; NotFoundError for a blank id.
        """


def _number_key(organization_id: str | None, tender_number: str) -> tuple[str, str]:
    return (str(organization_id or "").strip(), str(tender_number or "").strip().upper())


def _duplicate_number(tender: Tender) -> ValidationError:
    return ValidationError(
        message=f"Tender number {tender.tenderNumber} already exists",
        tender_id=tender.id,
        field="tenderNumber",
        reason="already exists",
    )


class _LockSlot:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


class InMemoryTenderStore(TenderStore):
    def __init__(self, tenders: list[Tender] | None = None):
        self._lock = threading.Lock()
        self._items: dict[str, Tender] = {}
        self._numbers: dict[tuple[str, str], str] = {}
        self._sequences: dict[str, int] = {}
        self._conversion_locks: dict[str, _LockSlot] = {}
        for t in tenders or []:
            self.add(t)

    def get(self, tender_id: str) -> Tender:
        tid = str(tender_id or "").strip()
        with self._lock:
            cur = self._items.get(tid)
            if cur is None:
                raise NotFoundError(message="Tender not found", tender_id=tid or None, missing_id=tid)
            return cur.model_copy(deep=True)

    def add(self, tender: Tender) -> Tender:
        nk = _number_key(tender.organizationId, tender.tenderNumber)
        with self._lock:
            if tender.id in self._items:
                raise ConflictError(message="Tender already exists", tender_id=tender.id)
            if nk in self._numbers:
                raise _duplicate_number(tender)
            stored = tender.model_copy(deep=True)
            self._items[stored.id] = stored
            self._numbers[nk] = stored.id
            return stored.model_copy(deep=True)

    def save(self, tender: Tender, expected_version: int) -> Tender:
        with self._lock:
            cur = self._items.get(tender.id)
            if cur is None:
                raise NotFoundError(message="Tender not found", tender_id=tender.id, missing_id=tender.id)
            if cur.version != int(expected_version):
                raise ConflictError(
                    message="Tender was modified by another request; reload and retry",
                    tender_id=tender.id,
                    expected_version=int(expected_version),
                    actual_version=cur.version,
                )
            stored = tender.model_copy(update={"version": cur.version + 1}, deep=True)
            self._items[stored.id] = stored
            return stored.model_copy(deep=True)

    def list(self, filters: TenderFilter | None = None) -> list[Tender]:
        f = filters or TenderFilter()
        with self._lock:
            out = [t.model_copy(deep=True) for t in self._items.values() if f.matches(t)]
        return sorted(out, key=lambda t: (t.createdAt, t.id), reverse=True)

    def find_by_number(self, *, organization_id: str | None, tender_number: str) -> Tender | None:
        with self._lock:
            tid = self._numbers.get(_number_key(organization_id, tender_number))
            cur = self._items.get(tid) if tid else None
            return cur.model_copy(deep=True) if cur else None

    def next_sequence(self, scope: str) -> int:
        with self._lock:
            nxt = self._sequences.get(scope, 0) + 1
            self._sequences[scope] = nxt
            return nxt

    @contextmanager
    def conversion_lock(self, tender_id: str, *, wait_seconds: float | None = None) -> Iterator[None]:
        # Entries are refcounted by holders plus waiters and dropped at zero.
        with self._lock:
            slot = self._conversion_locks.setdefault(tender_id, _LockSlot())
            slot.users += 1
        try:
            timeout = -1 if wait_seconds is None else max(0.0, float(wait_seconds))
            if not slot.lock.acquire(timeout=timeout):
                raise ConversionInProgressError(
                    message="Conversion already in progress for this tender", tender_id=tender_id
                )
            try:
                yield
            finally:
                slot.lock.release()
        finally:
            with self._lock:
                slot.users -= 1
                if slot.users <= 0 and self._conversion_locks.get(tender_id) is slot:
                    del self._conversion_locks[tender_id]
