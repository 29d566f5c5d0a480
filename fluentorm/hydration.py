# File: fluentorm/hydration.py
"""
FluentORM - Relation Hydration
==============================
Decodes eager-loaded relation columns into nested records.

Each included relation arrives as one extra ``jsonb`` column.  The driver
may hand it over already decoded (``dict``/``list``) or as text.  Decoding
is lenient: malformed JSON or a payload that does not fit the
target record yields ``None`` ("relation not loaded") instead of failing
the whole query.  An empty list still means "no related rows".
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("fluentorm.hydration")

ModelT = TypeVar("ModelT", bound=BaseModel)


def decode_json(value: Any) -> Any:
    """Return the decoded payload, or ``None`` when it isn't valid JSON."""
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray, memoryview)):
        value = bytes(value).decode("utf-8", errors="replace")
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            logger.debug("Relation column is not valid JSON; treating as absent.")
            return None
    return value


def decode_one(model: Type[ModelT], value: Any) -> Optional[ModelT]:
    """Decode a single related record, ``None`` on any failure."""
    payload: Any = decode_json(value)
    if not isinstance(payload, dict):
        return None
    try:
        return model.model_validate(payload)
    except ValidationError:
        logger.debug("Relation payload does not fit %s; treating as absent.", model.__name__)
        return None


def decode_many(model: Type[ModelT], value: Any) -> Optional[List[ModelT]]:
    """Decode a list of related records; any bad element makes the whole relation ``None``."""
    payload: Any = decode_json(value)
    if not isinstance(payload, list):
        return None
    records: List[ModelT] = []
    for item in payload:
        record: Optional[ModelT] = decode_one(model, item)
        if record is None:
            return None
        records.append(record)
    return records


def base_values(model: Type[BaseModel], row: Mapping[str, Any]) -> Dict[str, Any]:
    """Pick the columns of *model* out of a result row."""
    return {name: row[name] for name in model.model_fields if name in row}


__all__: List[str] = [
    "decode_json",
    "decode_one",
    "decode_many",
    "base_values",
]

logger.debug("fluentorm.hydration loaded — %d public symbols.", len(__all__))
