"""Two-tier store calls that retry once with a minimal field set."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.exc import DBAPIError

from matchchat.services.errors import SchemaError, StoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# 42703 undefined_column, 42P01 undefined_table
_SCHEMA_SQLSTATES = {"42703", "42P01"}
_SCHEMA_MESSAGE_PATTERN = re.compile(
    r"no such column|has no column named|no such table"
    r"|column .+ does not exist|relation .+ does not exist"
    r"|undefinedcolumn|undefinedtable",
    re.IGNORECASE,
)


def is_schema_mismatch(exc: BaseException) -> bool:
    """Return whether a driver error means a column or table is missing."""

    if not isinstance(exc, DBAPIError):
        return False
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in _SCHEMA_SQLSTATES:
        return True
    return bool(_SCHEMA_MESSAGE_PATTERN.search(str(orig)))


def translate_store_error(exc: DBAPIError) -> StoreError:
    """Map a SQLAlchemy driver error to the delivery error taxonomy."""

    if is_schema_mismatch(exc):
        return SchemaError(str(exc.orig))
    return StoreError(str(exc.orig))


def call_with_schema_fallback(
    full: Callable[[], T],
    minimal: Callable[[], T] | None,
    *,
    operation: str,
) -> T:
    """Run ``full``; on ``SchemaError`` only, retry once with ``minimal``.

    Any other error propagates untouched, as does a ``SchemaError`` from the
    minimal tier.
    """

    try:
        return full()
    except SchemaError as exc:
        if minimal is None:
            raise
        logger.warning("store.schema_fallback operation=%s reason=%s", operation, exc)
    return minimal()
