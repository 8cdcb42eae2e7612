from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(slots=True)
class DdbError(Exception):
    """
    A DynamoDB call made on behalf of a tender operation failed.

    `DynamoTenderStore` turns the domain-level cases into tender errors (a
    failed `version = :v` condition becomes ConflictError, a taken number ref
    becomes ValidationError). Whatever is left reaches the HTTP layer as
    problem+json, with `operation`, `table_name` and `aws_request_id` as
    extension members for support tickets.
    """

    message: str
    operation: str | None = None
    table_name: str | None = None
    # Primary key of the tender row, number ref, counter or lease involved.
    key: dict[str, Any] | None = None
    aws_request_id: str | None = None
    retryable: bool = False
    cause: Exception | None = None

    def __str__(self) -> str:
        return self.message


@dataclass(slots=True)
class DdbConflict(DdbError):
    """A condition failed: stale tender version, duplicate number or a held lease."""

    # One code per TransactItems entry: [tender row, number ref] on creation.
    cancellation_codes: list[str] | None = None


@dataclass(slots=True)
class DdbValidation(DdbError):
    """Malformed request, e.g. a bad expression. Never retried."""


@dataclass(slots=True)
class DdbThrottled(DdbError):
    pass


@dataclass(slots=True)
class DdbUnavailable(DdbError):
    pass


@dataclass(slots=True)
class DdbInternal(DdbError):
    """Misconfiguration or an unclassified AWS failure."""
