"""Vendor adapters that turn system views into vendor-neutral snapshots."""

from __future__ import annotations

from dbtop.contracts.error import PolicyError

from .base import DbmsType, SnapshotAdapter, WaitTotal
from .connection import (
    ConnectionFactory,
    close_quietly,
    get_connection_factory,
    is_connection_lost,
)
from .oracle import OracleAdapter
from .tibero import TiberoAdapter

_ADAPTERS: dict[DbmsType, type[SnapshotAdapter]] = {
    DbmsType.ORACLE: OracleAdapter,
    DbmsType.TIBERO: TiberoAdapter,
}


def get_adapter_class(vendor: str | DbmsType) -> type[SnapshotAdapter]:
    dbms = vendor if isinstance(vendor, DbmsType) else DbmsType.parse(vendor)
    try:
        return _ADAPTERS[dbms]
    except KeyError:
        supported = ", ".join(sorted(member.value for member in _ADAPTERS))
        raise PolicyError(
            f"{dbms.value} is recognised but not supported yet",
            hint=f"Supported engines: {supported}",
        ) from None


__all__ = [
    "ConnectionFactory",
    "DbmsType",
    "OracleAdapter",
    "SnapshotAdapter",
    "TiberoAdapter",
    "WaitTotal",
    "close_quietly",
    "get_adapter_class",
    "get_connection_factory",
    "is_connection_lost",
]
