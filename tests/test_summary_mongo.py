from datetime import date
from threading import Event

import pytest
from bson import ObjectId
from pymongo.errors import PyMongoError

from errors import (
    InvalidId,
    NotFound,
    PartialReconciliation,
    RecomputeCancelled,
    StoreError,
)
from schemas import CategoryIn, ChargeIn, UserIn
from services import SummaryService
from store import Consistency


class DeadCharges:
    def __init__(self, inner) -> None:
        self.inner = inner

    def __getattr__(self, name):
        return getattr(self.inner, name)

    def aggregate(self, pipeline):
        raise PyMongoError("connection reset")


def _seed_food_and_gas(store) -> tuple[str, str, str]:
    user = store.create_user(UserIn(name="Uma", total_allotment_cents=55_000))
    key = store.parse_id(user.id)
    food = store.create_category(key, CategoryIn(title="Food", allotment_cents=40_000))
    gas = store.create_category(key, CategoryIn(title="Gas", allotment_cents=15_000))
    for cents in (3_000, 2_000):
        store.create_charge(
            key,
            ChargeIn(
                category_id=food.id,
                description="Groceries",
                amount_cents=cents,
                date=date(2025, 1, 10),
            ),
        )
    return user.id, food.id, gas.id


def test_store_reports_best_effort_consistency(mongo_store) -> None:
    assert mongo_store.consistency == Consistency.best_effort


def test_recompute_sums_charges_and_zeroes_empty_categories(mongo_store) -> None:
    user_id, food_id, gas_id = _seed_food_and_gas(mongo_store)

    summary = SummaryService(mongo_store).recompute_summary(user_id)

    by_id = {c.id: c for c in summary.categories}
    assert by_id[food_id].amount_cents == 5_000
    assert by_id[gas_id].amount_cents == 0
    assert summary.user.total_amount_cents == 5_000
    assert [c.date for c in summary.charges] == [date(2025, 1, 10)] * 2

    stored = mongo_store.users.find_one({"_id": ObjectId(user_id)})
    assert stored["total_amount_cents"] == 5_000


def test_recompute_user_without_categories(mongo_store) -> None:
    user = mongo_store.create_user(UserIn(name="Empty"))

    summary = SummaryService(mongo_store).recompute_summary(user.id)

    assert summary.user.total_amount_cents == 0
    assert summary.categories == []
    assert summary.charges == []


def test_recompute_is_idempotent(mongo_store) -> None:
    user_id, _, _ = _seed_food_and_gas(mongo_store)
    service = SummaryService(mongo_store)

    first = service.recompute_summary(user_id)
    second = service.recompute_summary(user_id)

    assert first.model_dump_json() == second.model_dump_json()


def test_recompute_unknown_user_raises_not_found(mongo_store) -> None:
    with pytest.raises(NotFound):
        SummaryService(mongo_store).recompute_summary(str(ObjectId()))


def test_malformed_id_is_rejected(mongo_store) -> None:
    with pytest.raises(InvalidId):
        SummaryService(mongo_store).recompute_summary("not-an-id")


def test_other_users_categories_are_untouched(mongo_store) -> None:
    user_id, _, _ = _seed_food_and_gas(mongo_store)
    other = mongo_store.create_user(UserIn(name="Otto"))
    rent = mongo_store.create_category(
        mongo_store.parse_id(other.id), CategoryIn(title="Rent")
    )
    mongo_store.categories.update_one(
        {"_id": ObjectId(rent.id)}, {"$set": {"amount_cents": 12_345}}
    )
    mongo_store.charges.insert_one(
        {
            "user_id": ObjectId(user_id),
            "category_id": ObjectId(rent.id),
            "description": "Misfiled",
            "amount_cents": 999,
            "date": mongo_store.charges.find_one()["date"],
        }
    )

    summary = SummaryService(mongo_store).recompute_summary(user_id)

    assert summary.user.total_amount_cents == 5_000
    stored = mongo_store.categories.find_one({"_id": ObjectId(rent.id)})
    assert stored["amount_cents"] == 12_345


def test_partial_bulk_write_raises_and_next_run_self_heals(
    mongo_store, flaky_categories
) -> None:
    user_id, food_id, gas_id = _seed_food_and_gas(mongo_store)
    mongo_store.categories.update_many({}, {"$set": {"amount_cents": 777}})
    healthy = mongo_store.categories
    mongo_store.categories = flaky_categories(healthy)

    with pytest.raises(PartialReconciliation) as excinfo:
        SummaryService(mongo_store).recompute_summary(user_id)

    assert excinfo.value.applied == 1
    assert excinfo.value.attempted == 2
    assert excinfo.value.state == "aggregated"
    amounts = {
        str(doc["_id"]): doc["amount_cents"] for doc in healthy.find({})
    }
    assert amounts == {food_id: 5_000, gas_id: 777}

    mongo_store.categories = healthy
    summary = SummaryService(mongo_store).recompute_summary(user_id)

    assert {c.id: c.amount_cents for c in summary.categories} == {
        food_id: 5_000,
        gas_id: 0,
    }
    assert summary.user.total_amount_cents == 5_000


def test_store_failure_is_wrapped(mongo_store) -> None:
    user_id, _, _ = _seed_food_and_gas(mongo_store)
    mongo_store.charges = DeadCharges(mongo_store.charges)

    with pytest.raises(StoreError) as excinfo:
        SummaryService(mongo_store).recompute_summary(user_id)

    assert not isinstance(excinfo.value, PartialReconciliation)
    assert excinfo.value.state == "start"


def test_cancellation_stops_before_next_step(mongo_store) -> None:
    user_id, _, _ = _seed_food_and_gas(mongo_store)
    cancel = Event()
    cancel.set()

    with pytest.raises(RecomputeCancelled) as excinfo:
        SummaryService(mongo_store).recompute_summary(user_id, cancel=cancel)

    assert excinfo.value.state == "start"
    assert {doc["amount_cents"] for doc in mongo_store.categories.find({})} == {0}


def test_deleting_category_removes_only_its_charges(mongo_store) -> None:
    user_id, food_id, gas_id = _seed_food_and_gas(mongo_store)
    key = mongo_store.parse_id(user_id)
    mongo_store.create_charge(
        key,
        ChargeIn(
            category_id=gas_id,
            description="Fuel",
            amount_cents=4_000,
            date=date(2025, 1, 11),
        ),
    )

    mongo_store.delete_category(key, mongo_store.parse_id(food_id))
    summary = SummaryService(mongo_store).recompute_summary(user_id)

    assert [c.id for c in summary.categories] == [gas_id]
    assert [c.amount_cents for c in summary.charges] == [4_000]
    assert summary.user.total_amount_cents == 4_000


def test_crud_on_missing_ids_raises_not_found(mongo_store) -> None:
    user_id, food_id, _ = _seed_food_and_gas(mongo_store)
    key = mongo_store.parse_id(user_id)
    missing = ObjectId()
    charge = ChargeIn(category_id=food_id, amount_cents=100, date=date(2025, 1, 12))

    with pytest.raises(NotFound):
        mongo_store.update_category(key, missing, CategoryIn(title="Ghost"))
    with pytest.raises(NotFound):
        mongo_store.delete_category(key, missing)
    with pytest.raises(NotFound):
        mongo_store.update_charge(key, missing, charge)
    with pytest.raises(NotFound):
        mongo_store.delete_charge(key, missing)
    with pytest.raises(NotFound):
        mongo_store.create_charge(
            key, charge.model_copy(update={"category_id": str(missing)})
        )


def test_malformed_stored_document_is_a_store_error(mongo_store) -> None:
    broken = mongo_store.users.insert_one(
        {"name": 42, "total_amount_cents": 0, "total_allotment_cents": 0}
    ).inserted_id

    with pytest.raises(StoreError) as excinfo:
        SummaryService(mongo_store).recompute_summary(str(broken))

    assert excinfo.value.state == "recalculated"
