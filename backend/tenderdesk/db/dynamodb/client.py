from __future__ import annotations

from functools import lru_cache

import boto3
from botocore.config import Config

from ...settings import get_settings

# Tender writes are small conditional puts; fail fast and let `ddb_call`
# decide what is worth another attempt.
_BOTOCORE_CONFIG = Config(
    retries={"max_attempts": 10, "mode": "adaptive"},
    connect_timeout=2,
    read_timeout=10,
)


@lru_cache(maxsize=1)
def _session() -> boto3.session.Session:
    return boto3.session.Session(region_name=get_settings().aws_region)


@lru_cache(maxsize=1)
def dynamodb_resource():
    """Resource API: tender rows, number refs, counters and conversion leases."""
    return _session().resource("dynamodb", config=_BOTOCORE_CONFIG)


@lru_cache(maxsize=1)
def dynamodb_client():
    """Low-level API, only needed for TransactWriteItems on tender creation."""
    return _session().client("dynamodb", config=_BOTOCORE_CONFIG)


def table_resource(table_name: str):
    return dynamodb_resource().Table(table_name)
