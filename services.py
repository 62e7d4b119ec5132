from __future__ import annotations

import logging
from enum import Enum
from threading import Event
from typing import Optional

from errors import NotFound, RecomputeCancelled
from schemas import (
    CategoryIn,
    CategoryOut,
    ChargeIn,
    ChargeOut,
    Summary,
    UserIn,
    UserOut,
)
from store import SummaryStore

logger = logging.getLogger(__name__)


class RecomputeState(str, Enum):
    start = "start"
    aggregated = "aggregated"
    reconciled = "reconciled"
    recalculated = "recalculated"
    assembled = "assembled"
    done = "done"
    failed = "failed"


class SummaryService:
    """Recompute a user's cached spending totals and return the summary.

    The steps run in a fixed order inside one ``store.unit_of_work()``:

    1. sum charge amounts per category,
    2. write those sums into the categories (zero where no charges exist),
    3. sum the category amounts into the user's total,
    4. read back user, categories and charges.

    On a transactional store a failure anywhere rolls back every write. On a
    best-effort store the completed steps stay applied; running the recompute
    again converges because every step only overwrites derived values.
    """

    def __init__(self, store: SummaryStore) -> None:
        self.store = store

    def recompute_summary(
        self, user_id: str, *, cancel: Optional[Event] = None
    ) -> Summary:
        # Malformed ids are rejected before any store access.
        key = self.store.parse_id(user_id)
        state = RecomputeState.start
        logger.info(
            f"summary_recompute: user_id={user_id} "
            f"consistency={self.store.consistency.value} state={state.value}"
        )
        try:
            with self.store.unit_of_work() as unit:
                unit.lock_user(key)

                self._checkpoint(cancel, state, user_id)
                totals = unit.charge_totals(key)
                state = RecomputeState.aggregated

                self._checkpoint(cancel, state, user_id)
                written = unit.reconcile_categories(key, totals)
                state = RecomputeState.reconciled

                self._checkpoint(cancel, state, user_id)
                total = unit.recalculate_user_total(key)
                state = RecomputeState.recalculated

                self._checkpoint(cancel, state, user_id)
                summary = unit.read_summary(key)
                state = RecomputeState.assembled
                logger.debug(
                    f"summary_recompute: user_id={user_id} state={state.value}"
                )
        except Exception as exc:
            if getattr(exc, "state", "") is None:
                exc.state = state.value
            level = (
                logging.WARNING
                if isinstance(exc, (NotFound, RecomputeCancelled))
                else logging.ERROR
            )
            logger.log(
                level,
                f"summary_recompute: user_id={user_id} "
                f"state={RecomputeState.failed.value} at={state.value} "
                f"reason={type(exc).__name__}: {exc}",
            )
            raise

        logger.info(
            f"summary_recompute: user_id={user_id} state={RecomputeState.done.value} "
            f"categories_written={written} total_amount_cents={total}"
        )
        return summary

    @staticmethod
    def _checkpoint(
        cancel: Optional[Event], state: RecomputeState, user_id: str
    ) -> None:
        logger.debug(f"summary_recompute: user_id={user_id} state={state.value}")
        if cancel is not None and cancel.is_set():
            raise RecomputeCancelled(state=state.value)


class UserService:
    def __init__(self, store: SummaryStore) -> None:
        self.store = store

    def create(self, data: UserIn) -> UserOut:
        user = self.store.create_user(data)
        logger.info(f"user_created: user_id={user.id}")
        return user


class CategoryService:
    def __init__(self, store: SummaryStore, user_id: str) -> None:
        self.store = store
        self.user_id = store.parse_id(user_id)

    def create(self, data: CategoryIn) -> CategoryOut:
        return self.store.create_category(self.user_id, data)

    def update(self, category_id: str, data: CategoryIn) -> CategoryOut:
        return self.store.update_category(
            self.user_id, self.store.parse_id(category_id), data
        )

    def delete(self, category_id: str) -> None:
        self.store.delete_category(self.user_id, self.store.parse_id(category_id))
        logger.info(
            f"category_deleted: user_id={self.user_id} category_id={category_id}"
        )


class ChargeService:
    def __init__(self, store: SummaryStore, user_id: str) -> None:
        self.store = store
        self.user_id = store.parse_id(user_id)

    def create(self, data: ChargeIn) -> ChargeOut:
        return self.store.create_charge(self.user_id, data)

    def update(self, charge_id: str, data: ChargeIn) -> ChargeOut:
        return self.store.update_charge(
            self.user_id, self.store.parse_id(charge_id), data
        )

    def delete(self, charge_id: str) -> None:
        self.store.delete_charge(self.user_id, self.store.parse_id(charge_id))
