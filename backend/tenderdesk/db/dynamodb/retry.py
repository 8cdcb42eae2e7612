from __future__ import annotations

import random
import time
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

from botocore.exceptions import BotoCoreError, ClientError

from .errors import (
    DdbConflict,
    DdbError,
    DdbInternal,
    DdbThrottled,
    DdbUnavailable,
    DdbValidation,
)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_attempts: int = 6
    base_delay_s: float = 0.05
    max_delay_s: float = 1.5


_RETRYABLE_CODES = {
    "ProvisionedThroughputExceededException",
    "ThrottlingException",
    "RequestLimitExceeded",
    "InternalServerError",
    "ServiceUnavailable",
    # Can be returned directly by TransactWriteItems under contention.
    "TransactionConflictException",
}


def backoff_delay(policy: RetryPolicy, attempt: int) -> float:
    # Full jitter exponential backoff.
    exp = min(policy.max_delay_s, policy.base_delay_s * (2 ** max(0, attempt - 1)))
    return random.random() * exp


def _client_error_field(e: ClientError, *path: str) -> Any:
    cur: Any = e.response or {}
    for p in path:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(p)
    return cur


def _cancellation_codes(e: ClientError) -> list[str]:
    reasons = (e.response or {}).get("CancellationReasons") or []
    return [str((r or {}).get("Code") or "None") for r in reasons]


def _map_botocore_error(
    *,
    operation: str,
    table_name: str | None,
    key: dict[str, Any] | None,
    exc: Exception,
) -> DdbError:
    if isinstance(exc, DdbError):
        return exc

    ctx: dict[str, Any] = {"operation": operation, "table_name": table_name, "key": key, "cause": exc}

    if isinstance(exc, ClientError):
        code = str(_client_error_field(exc, "Error", "Code") or "")
        ctx["aws_request_id"] = _client_error_field(exc, "ResponseMetadata", "RequestId")

        if code == "ConditionalCheckFailedException":
            return DdbConflict(message="DynamoDB conditional check failed", **ctx)

        if code == "TransactionCanceledException":
            codes = _cancellation_codes(exc)
            if "TransactionConflict" in codes:
                return DdbThrottled(message="DynamoDB transaction conflict", retryable=True, **ctx)
            if "ConditionalCheckFailed" in codes:
                return DdbConflict(
                    message="DynamoDB transaction condition failed",
                    cancellation_codes=codes,
                    **ctx,
                )

        if code in ("ValidationException", "ParamValidationError"):
            return DdbValidation(message="DynamoDB request validation failed", **ctx)

        if code in ("AccessDeniedException", "UnrecognizedClientException", "ResourceNotFoundException"):
            return DdbUnavailable(message="DynamoDB access denied or table missing", **ctx)

        if code in _RETRYABLE_CODES:
            return DdbThrottled(message="DynamoDB request throttled or unavailable", retryable=True, **ctx)

        return DdbInternal(message=f"DynamoDB request failed ({code or 'ClientError'})", **ctx)

    if isinstance(exc, BotoCoreError):
        return DdbUnavailable(message="DynamoDB client error", retryable=True, **ctx)

    return DdbInternal(message="Unexpected DynamoDB error", **ctx)


def ddb_call(
    operation: str,
    fn: Callable[[], T],
    *,
    table_name: str | None = None,
    key: dict[str, Any] | None = None,
    retry_policy: RetryPolicy | None = None,
) -> T:
    policy = retry_policy or RetryPolicy()
    attempts = max(1, int(policy.max_attempts))

    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except Exception as e:  # noqa: BLE001
            mapped = _map_botocore_error(operation=operation, table_name=table_name, key=key, exc=e)

            # Never retry validation/conflict errors.
            if not mapped.retryable or attempt >= attempts:
                if mapped is e:
                    raise
                raise mapped from e

            time.sleep(backoff_delay(policy, attempt))

    raise DdbInternal(message="DynamoDB request failed", operation=operation, table_name=table_name, key=key)
