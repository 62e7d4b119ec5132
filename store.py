"""Backend-neutral storage interface for users, categories and charges.

Two implementations exist: ``sql_store.SqlSummaryStore`` (one database
transaction per unit of work) and ``mongo_store.MongoSummaryStore`` (no
cross-collection transaction; every step is idempotent instead). Callers must
read ``consistency`` rather than assume ``unit_of_work()`` is atomic.
"""

from __future__ import annotations

from contextlib import AbstractContextManager
from enum import Enum
from typing import Hashable, Optional, Protocol

from config import Settings, get_settings
from schemas import (
    CategoryIn,
    CategoryOut,
    ChargeIn,
    ChargeOut,
    Summary,
    UserIn,
    UserOut,
)


class Consistency(str, Enum):
    transactional = "transactional"
    best_effort = "best_effort"


class SummaryUnit(Protocol):
    """The recompute steps, bound to one unit of work."""

    def lock_user(self, user_id: Hashable) -> None:
        ...

    def charge_totals(self, user_id: Hashable) -> dict[Hashable, int]:
        """Sum charge amounts per category; categories without charges are absent."""

    def reconcile_categories(
        self, user_id: Hashable, totals: dict[Hashable, int]
    ) -> int:
        """Write ``totals`` into the user's categories, zeroing the rest."""

    def recalculate_user_total(self, user_id: Hashable) -> int:
        ...

    def read_summary(self, user_id: Hashable) -> Summary:
        ...


class SummaryStore(Protocol):
    consistency: Consistency

    def parse_id(self, raw: str) -> Hashable:
        """Convert a client-supplied id to a store key or raise ``InvalidId``."""

    def unit_of_work(self) -> AbstractContextManager[SummaryUnit]:
        ...

    def list_user_ids(self) -> list[str]:
        ...

    def create_user(self, data: UserIn) -> UserOut:
        ...

    def create_category(self, user_id: Hashable, data: CategoryIn) -> CategoryOut:
        ...

    def update_category(
        self, user_id: Hashable, category_id: Hashable, data: CategoryIn
    ) -> CategoryOut:
        ...

    def delete_category(self, user_id: Hashable, category_id: Hashable) -> None:
        ...

    def create_charge(self, user_id: Hashable, data: ChargeIn) -> ChargeOut:
        ...

    def update_charge(
        self, user_id: Hashable, charge_id: Hashable, data: ChargeIn
    ) -> ChargeOut:
        ...

    def delete_charge(self, user_id: Hashable, charge_id: Hashable) -> None:
        ...


def build_store(settings: Optional[Settings] = None) -> SummaryStore:
    settings = settings or get_settings()
    if settings.backend == "sql":
        from database import get_session_factory
        from sql_store import SqlSummaryStore

        return SqlSummaryStore(get_session_factory())
    if settings.backend == "mongo":
        from mongo_store import MongoSummaryStore, connect_mongo

        return MongoSummaryStore(connect_mongo(settings), settings)
    raise ValueError(f"Unknown storage backend: {settings.backend}")
