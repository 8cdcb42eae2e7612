from __future__ import annotations

import time
import uuid
from contextlib import contextmanager
from decimal import Decimal
from typing import Any, Callable, Iterator

from boto3.dynamodb.conditions import Key

from ..db.dynamodb.errors import DdbConflict
from ..db.dynamodb.retry import RetryPolicy, backoff_delay
from ..db.dynamodb.table import DynamoTable, get_main_table
from ..domain.tenders.errors import ConflictError, ConversionInProgressError, NotFoundError, ValidationError
from ..domain.tenders.models import Tender, TenderFilter
from ..domain.tenders.store import TenderStore
from ..observability.logging import get_logger

log = get_logger("tenders_repo")

_INTERNAL_KEYS = ("pk", "sk", "gsi1pk", "gsi1sk", "entityType")
_LOCK_POLL = RetryPolicy(max_attempts=0, base_delay_s=0.05, max_delay_s=0.5)


def tender_key(tender_id: str) -> dict[str, str]:
    tid = str(tender_id or "").strip()
    if not tid:
        raise ValueError("tender_id is required")
    return {"pk": f"TENDER#{tid}", "sk": "PROFILE"}


def tender_number_key(organization_id: str | None, tender_number: str) -> dict[str, str]:
    org = str(organization_id or "").strip() or "-"
    num = str(tender_number or "").strip().upper()
    if not num:
        raise ValueError("tender_number is required")
    return {"pk": f"TENDER_NUMBER#{org}#{num}", "sk": "PROFILE"}


def conversion_lock_key(tender_id: str) -> dict[str, str]:
    return {**tender_key(tender_id), "sk": "LOCK#CONVERSION"}


def sequence_key(scope: str) -> dict[str, str]:
    return {"pk": f"TENDER_SEQ#{scope}", "sk": "COUNTER"}


def tender_to_item(tender: Tender) -> dict[str, Any]:
    body = tender.model_dump(mode="json")
    # DynamoDB numbers must be Decimal; keep amounts exact.
    body["tenderAmount"] = Decimal(str(tender.tenderAmount))
    body["emdAmount"] = Decimal(str(tender.emdAmount))
    body["version"] = int(tender.version)
    created = body.get("createdAt") or ""
    return {
        **tender_key(tender.id),
        "entityType": "Tender",
        "gsi1pk": "TYPE#TENDER",
        "gsi1sk": f"{created}#{tender.id}",
        **body,
    }


def item_to_tender(item: dict[str, Any] | None) -> Tender | None:
    if not item:
        return None
    obj = {k: v for k, v in item.items() if k not in _INTERNAL_KEYS}
    return Tender.model_validate(obj)


def _missing(tender_id: str) -> NotFoundError:
    return NotFoundError(message="Tender not found", tender_id=tender_id or None, missing_id=tender_id)


class DynamoTenderStore(TenderStore):
    """Tender records in the single main table (pk/sk + GSI1 type index)."""

    def __init__(
        self,
        *,
        table: DynamoTable | None = None,
        lock_ttl_seconds: int = 60,
        lock_wait_seconds: float = 15.0,
        now: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._table = table or get_main_table()
        self._lock_ttl = max(1, int(lock_ttl_seconds))
        self._lock_wait = max(0.0, float(lock_wait_seconds))
        self._now = now
        self._sleep = sleep

    def _get_item(self, tender_id: str) -> dict[str, Any] | None:
        return self._table.get_item(key=tender_key(tender_id))

    def get(self, tender_id: str) -> Tender:
        tid = str(tender_id or "").strip()
        tender = item_to_tender(self._get_item(tid)) if tid else None
        if tender is None:
            raise _missing(tid)
        return tender

    def add(self, tender: Tender) -> Tender:
        t = self._table
        number_item = {
            **tender_number_key(tender.organizationId, tender.tenderNumber),
            "entityType": "TenderNumber",
            "tenderId": tender.id,
            "tenderNumber": tender.tenderNumber,
        }
        try:
            t.transact_write(
                puts=[
                    t.tx_put(item=tender_to_item(tender), condition_expression="attribute_not_exists(pk)"),
                    t.tx_put(item=number_item, condition_expression="attribute_not_exists(pk)"),
                ]
            )
        except DdbConflict as e:
            codes = e.cancellation_codes or []
            if len(codes) > 1 and codes[1] == "ConditionalCheckFailed":
                raise ValidationError(
                    message=f"Tender number {tender.tenderNumber} already exists",
                    tender_id=tender.id,
                    field="tenderNumber",
                    reason="already exists",
                ) from e
            raise ConflictError(message="Tender already exists", tender_id=tender.id) from e
        return tender

    def save(self, tender: Tender, expected_version: int) -> Tender:
        if not str(tender.id or "").strip():
            raise _missing("")
        expected = int(expected_version)
        stored = tender.model_copy(update={"version": expected + 1})
        try:
            self._table.put_item(
                item=tender_to_item(stored),
                condition_expression="attribute_exists(pk) AND version = :v",
                expression_attribute_values={":v": expected},
            )
        except DdbConflict as e:
            latest = self._get_item(tender.id)
            if not latest:
                raise _missing(tender.id) from e
            raise ConflictError(
                message="Tender was modified by another request; reload and retry",
                tender_id=tender.id,
                expected_version=expected,
                actual_version=int(latest.get("version") or 0),
            ) from e
        return stored

    def list(self, filters: TenderFilter | None = None) -> list[Tender]:
        f = filters or TenderFilter()
        out: list[Tender] = []
        start_key: dict[str, Any] | None = None
        while True:
            pg = self._table.query_page(
                index_name="GSI1",
                key_condition_expression=Key("gsi1pk").eq("TYPE#TENDER"),
                scan_index_forward=False,
                limit=500,
                exclusive_start_key=start_key,
            )
            for it in pg.items or []:
                tender = item_to_tender(it)
                if tender is not None and f.matches(tender):
                    out.append(tender)
            start_key = pg.last_key
            if not start_key:
                return out

    def find_by_number(self, *, organization_id: str | None, tender_number: str) -> Tender | None:
        num = str(tender_number or "").strip()
        if not num:
            return None
        ref = self._table.get_item(key=tender_number_key(organization_id, num))
        tid = str((ref or {}).get("tenderId") or "").strip()
        return item_to_tender(self._get_item(tid)) if tid else None

    def next_sequence(self, scope: str) -> int:
        attrs = self._table.update_item(
            key=sequence_key(scope),
            update_expression="ADD #seq :one",
            expression_attribute_names={"#seq": "seq"},
            expression_attribute_values={":one": 1},
        )
        return int((attrs or {}).get("seq") or 0)

    # --- conversion lease ---

    def _try_acquire(self, tender_id: str, owner: str) -> bool:
        now = int(self._now())
        try:
            self._table.put_item(
                item={
                    **conversion_lock_key(tender_id),
                    "entityType": "TenderConversionLock",
                    "ownerToken": owner,
                    "expiresAt": now + self._lock_ttl,
                },
                condition_expression="attribute_not_exists(pk) OR expiresAt < :now",
                expression_attribute_values={":now": now},
            )
        except DdbConflict:
            return False
        return True

    def _release(self, tender_id: str, owner: str) -> None:
        try:
            self._table.delete_item(
                key=conversion_lock_key(tender_id),
                condition_expression="ownerToken = :o",
                expression_attribute_values={":o": owner},
            )
        except DdbConflict:
            # Lease expired and was taken over; the new holder owns it now.
            log.warning("tender_conversion_lock_lost", tender_id=tender_id)

    @contextmanager
    def conversion_lock(self, tender_id: str, *, wait_seconds: float | None = None) -> Iterator[None]:
        tid = str(tender_id or "").strip()
        if not tid:
            raise _missing(tid)
        owner = uuid.uuid4().hex
        wait = self._lock_wait if wait_seconds is None else max(0.0, float(wait_seconds))
        deadline = self._now() + wait
        attempt = 0
        while not self._try_acquire(tid, owner):
            attempt += 1
            if self._now() >= deadline:
                raise ConversionInProgressError(
                    message="Conversion already in progress for this tender", tender_id=tid
                )
            self._sleep(backoff_delay(_LOCK_POLL, attempt))
        try:
            yield
        finally:
            self._release(tid, owner)
