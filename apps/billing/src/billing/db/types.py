"""Column types that behave the same on PostgreSQL and SQLite."""

from __future__ import annotations

import datetime as dt
import uuid
from enum import StrEnum
from typing import Any

import orjson
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.engine import Dialect
from sqlalchemy.sql.type_api import TypeEngine
from sqlalchemy.types import CHAR, JSON, DateTime, Enum, TypeDecorator

JSONValue = dict[str, Any] | list[Any]


class GUID(TypeDecorator[uuid.UUID]):
    """Native UUID on PostgreSQL, CHAR(36) elsewhere."""

    impl = CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect: Dialect) -> TypeEngine[Any]:
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(CHAR(36))

    def process_bind_param(self, value: uuid.UUID | None, dialect: Dialect) -> Any:
        if value is None:
            return value
        if not isinstance(value, uuid.UUID):
            raise TypeError("GUID values must be UUID instances")
        if dialect.name == "postgresql":
            return value
        return str(value)

    def process_result_value(self, value: Any, dialect: Dialect) -> uuid.UUID | None:
        if value is None or isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


class JSONType(TypeDecorator[JSONValue]):
    """JSONB on PostgreSQL, plain JSON elsewhere.

    Values are round-tripped through ``orjson`` on bind so that datetimes,
    UUIDs and other non-native values coming from provider payloads are stored
    as their JSON representation instead of failing at flush time.
    """

    impl = JSONB
    cache_ok = True

    def load_dialect_impl(self, dialect: Dialect) -> TypeEngine[Any]:
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(JSON())

    def process_bind_param(self, value: JSONValue | None, dialect: Dialect) -> Any:
        if value is None:
            return value
        if not isinstance(value, (dict, list)):
            raise TypeError("JSONType values must be dicts or lists")
        return orjson.loads(orjson.dumps(value, default=str))

    def process_result_value(self, value: Any, dialect: Dialect) -> JSONValue | None:
        if value is None or isinstance(value, (dict, list)):
            return value
        decoded = orjson.loads(value)
        if isinstance(decoded, (dict, list)):
            return decoded
        raise TypeError("JSON deserialisation returned unexpected type")


def _as_utc(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.UTC)
    return value.astimezone(dt.UTC)


class UTCDateTime(TypeDecorator[dt.datetime]):
    """Timezone-aware datetime that always comes back in UTC.

    SQLite drops the offset on storage, so naive values read back are assumed
    to be UTC.
    """

    impl = DateTime
    cache_ok = True

    def load_dialect_impl(self, dialect: Dialect) -> TypeEngine[Any]:
        return dialect.type_descriptor(DateTime(timezone=True))

    def process_bind_param(self, value: dt.datetime | None, dialect: Dialect) -> Any:
        if value is None:
            return value
        if not isinstance(value, dt.datetime):
            raise TypeError("UTCDateTime values must be datetime instances")
        if value.tzinfo is None:
            raise ValueError("UTCDateTime requires timezone-aware datetime")
        return value.astimezone(dt.UTC)

    def process_result_value(self, value: Any, dialect: Dialect) -> dt.datetime | None:
        if value is None:
            return value
        if isinstance(value, dt.datetime):
            return _as_utc(value)
        if isinstance(value, str):
            return _as_utc(dt.datetime.fromisoformat(value))
        raise TypeError(f"Expected datetime, got {type(value)}")


def _enum_values(enum_cls: type[StrEnum]) -> list[str]:
    return [member.value for member in enum_cls]


def enum_type(enum_cls: type[StrEnum], name: str) -> Enum:
    """String-backed enum column that stores member values, not names."""

    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        values_callable=_enum_values,
        validate_strings=True,
        length=32,
    )
