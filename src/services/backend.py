"""Remote backend interface.

The sync coordinator only needs three operations from the remote store:
idempotent batch upsert on a conflict key, filtered select, and filtered
delete.  Implementations wrap their transport errors in
``TransientIOError`` so the coordinator can treat every failure the same way.
"""

from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import Any, Sequence

# Comparison operators accepted in filters (PostgREST spelling).
FILTER_OPERATORS: dict[str, str] = {
    "eq": "=",
    "gte": ">=",
    "lte": "<=",
    "gt": ">",
    "lt": "<",
}


@dataclass(frozen=True)
class Filter:
    """A single ``column <op> value`` condition.

    Attributes:
        column: Column name.
        op:     One of FILTER_OPERATORS.
        value:  Comparison value.
    """

    column: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in FILTER_OPERATORS:
            raise ValueError(
                f"Unsupported filter operator '{self.op}'. "
                f"Available: {list(FILTER_OPERATORS)}"
            )


class RemoteBackend(abc.ABC):
    """Abstract remote store used by the sync coordinator."""

    KIND: str = ""

    async def connect(self) -> None:
        """Open pools or clients.  Optional."""

    async def close(self) -> None:
        """Release pools or clients.  Optional."""

    @abc.abstractmethod
    async def upsert(
        self, table: str, rows: Sequence[dict[str, Any]], on_conflict: Sequence[str]
    ) -> int:
        """Insert rows, updating existing ones that collide on ``on_conflict``.

        Returns:
            Number of rows sent.

        Raises:
            TransientIOError: On any transport or server failure.
        """

    @abc.abstractmethod
    async def select(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        order_by: str | None = None,
        descending: bool = False,
    ) -> list[dict[str, Any]]:
        """Return rows matching every filter.

        Raises:
            TransientIOError: On any transport or server failure.
        """

    @abc.abstractmethod
    async def delete(self, table: str, filters: Sequence[Filter]) -> None:
        """Delete rows matching every filter.

        Raises:
            TransientIOError: On any transport or server failure.
        """


def get_backend(kind: str) -> type[RemoteBackend]:
    """Return the backend class registered for ``kind``.

    Args:
        kind: 'postgrest' or 'postgres'.

    Raises:
        KeyError: If no backend is registered for ``kind``.
    """
    from src.services.postgres import PostgresBackend
    from src.services.postgrest import PostgrestBackend

    registry: dict[str, type[RemoteBackend]] = {
        PostgrestBackend.KIND: PostgrestBackend,
        PostgresBackend.KIND: PostgresBackend,
    }
    if kind not in registry:
        raise KeyError(
            f"No remote backend registered for '{kind}'. Available: {list(registry)}"
        )
    return registry[kind]
