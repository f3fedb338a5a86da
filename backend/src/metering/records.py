"""JSON codec for store records.

Store values carry no schema enforcement. Every read validates the shape
and treats anything unexpected as an absent record, so a corrupted value
never takes a metered feature down.
"""
import json
import math
from numbers import Real
from typing import Any, Optional, Type, TypeVar

import structlog
from pydantic import ValidationError

from metering import metrics
from metering.errors import InvalidAmount, MalformedRecord
from metering.keystore import KeyStore
from metering.schemas.usage import StoredRecord

logger = structlog.get_logger(__name__)

RecordT = TypeVar("RecordT", bound=StoredRecord)


def decode_record(key: str, raw: Optional[bytes], model: Type[RecordT]) -> Optional[RecordT]:
    """
    Parse a stored value.

    Args:
        key: Store key, used in error reports
        raw: Stored bytes or None
        model: Record schema

    Returns:
        Parsed record, or None for an absent key or JSON ``null``

    Raises:
        MalformedRecord: If the value is not valid JSON or fails validation
    """
    if raw is None:
        return None

    try:
        payload = json.loads(raw)
    except (ValueError, UnicodeDecodeError) as e:
        raise MalformedRecord(key, f"invalid JSON: {e}") from e

    if payload is None:
        return None
    if not isinstance(payload, dict):
        raise MalformedRecord(key, f"expected object, got {type(payload).__name__}")

    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise MalformedRecord(key, str(e)) from e


def encode_record(record: StoredRecord) -> bytes:
    return record.model_dump_json(by_alias=True).encode("utf-8")


async def load_record(store: KeyStore, key: str, model: Type[RecordT]) -> Optional[RecordT]:
    """Read and parse a record, treating malformed values as absent."""
    raw = await store.get(key)
    try:
        return decode_record(key, raw, model)
    except MalformedRecord as e:
        namespace = key.split(":", 1)[0]
        metrics.malformed_records_total.labels(namespace=namespace).inc()
        logger.warning("malformed_record_ignored", key=key, reason=e.reason)
        return None


async def save_record(store: KeyStore, key: str, record: StoredRecord, ttl_seconds: Optional[int] = None) -> None:
    await store.put(key, encode_record(record), ttl_seconds)


def validate_tenths(value: Any) -> int:
    """
    Validate an amount in tenths before any store access.

    Amounts are whole tenths; integral floats such as ``10.0`` are accepted.

    Raises:
        InvalidAmount: If the value is not a finite, positive, integral number
    """
    if isinstance(value, bool) or not isinstance(value, Real):
        raise InvalidAmount(value)
    if isinstance(value, float) and not math.isfinite(value):
        raise InvalidAmount(value)

    tenths = int(value)
    if tenths != value or tenths <= 0:
        raise InvalidAmount(value)
    return tenths
