from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date, datetime
from functools import wraps
from typing import Iterator

from bson import ObjectId
from pydantic import ValidationError
from pymongo import ASCENDING, MongoClient, UpdateOne
from pymongo.errors import BulkWriteError, PyMongoError

from config import Settings, get_settings
from errors import InvalidId, NotFound, PartialReconciliation, StoreError
from schemas import (
    CategoryIn,
    CategoryOut,
    ChargeIn,
    ChargeOut,
    Summary,
    UserIn,
    UserOut,
)
from store import Consistency

logger = logging.getLogger(__name__)


def connect_mongo(settings: Settings | None = None) -> MongoClient:
    settings = settings or get_settings()
    # Summary reads must observe the writes made earlier in the same recompute.
    return MongoClient(settings.mongo_url, readPreference="primary", tz_aware=False)


def _store_errors(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except PyMongoError as exc:
            raise StoreError(f"{fn.__name__} failed: {exc}") from exc
        except (ValidationError, KeyError, TypeError) as exc:
            # A stored document that no longer decodes into its output model.
            raise StoreError(
                f"{fn.__name__} read a malformed document: {exc}"
            ) from exc

    return wrapper


def _to_datetime(value: date) -> datetime:
    return datetime(value.year, value.month, value.day)


def _to_date(value: object) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value  # type: ignore[return-value]


def user_out(doc: dict) -> UserOut:
    return UserOut(
        id=str(doc["_id"]),
        credential_ref=doc.get("credential_ref"),
        name=doc["name"],
        total_amount_cents=int(doc.get("total_amount_cents", 0)),
        total_allotment_cents=int(doc.get("total_allotment_cents", 0)),
    )


def category_out(doc: dict) -> CategoryOut:
    return CategoryOut(
        id=str(doc["_id"]),
        user_id=str(doc["user_id"]),
        title=doc["title"],
        allotment_cents=int(doc.get("allotment_cents", 0)),
        amount_cents=int(doc.get("amount_cents", 0)),
    )


def charge_out(doc: dict) -> ChargeOut:
    return ChargeOut(
        id=str(doc["_id"]),
        user_id=str(doc["user_id"]),
        category_id=str(doc["category_id"]),
        description=doc.get("description", ""),
        amount_cents=int(doc["amount_cents"]),
        date=_to_date(doc["date"]),
    )


class MongoSummaryUnit:
    """Recompute steps against the collections, applied one write at a time.

    Nothing here is transactional. Each step overwrites derived fields with
    values computed from the charges, so replaying the whole sequence always
    converges on the correct amounts.
    """

    def __init__(self, users, categories, charges) -> None:
        self.users = users
        self.categories = categories
        self.charges = charges

    def lock_user(self, user_id: ObjectId) -> None:
        return None

    @_store_errors
    def charge_totals(self, user_id: ObjectId) -> dict[ObjectId, int]:
        rows = self.charges.aggregate(
            [
                {"$match": {"user_id": user_id}},
                {"$group": {"_id": "$category_id", "total": {"$sum": "$amount_cents"}}},
            ]
        )
        return {row["_id"]: int(row["total"]) for row in rows}

    @_store_errors
    def reconcile_categories(
        self, user_id: ObjectId, totals: dict[ObjectId, int]
    ) -> int:
        owned = [
            doc["_id"]
            for doc in self.categories.find({"user_id": user_id}, {"_id": 1}).sort(
                "_id", ASCENDING
            )
        ]
        if not owned:
            return 0
        ops = [
            UpdateOne(
                {"_id": category_id, "user_id": user_id},
                {"$set": {"amount_cents": totals.get(category_id, 0)}},
            )
            for category_id in owned
        ]
        try:
            result = self.categories.bulk_write(ops, ordered=True)
        except BulkWriteError as exc:
            applied = int(exc.details.get("nMatched", 0) or 0)
            if applied:
                logger.error(
                    f"category_reconcile_partial: user_id={user_id} "
                    f"applied={applied} attempted={len(ops)}"
                )
                raise PartialReconciliation(
                    "Category amounts were only partially reconciled",
                    applied=applied,
                    attempted=len(ops),
                ) from exc
            raise StoreError(f"reconcile_categories failed: {exc}") from exc
        return result.matched_count

    @_store_errors
    def recalculate_user_total(self, user_id: ObjectId) -> int:
        rows = list(
            self.categories.aggregate(
                [
                    {"$match": {"user_id": user_id}},
                    {"$group": {"_id": None, "total": {"$sum": "$amount_cents"}}},
                ]
            )
        )
        total = int(rows[0]["total"]) if rows else 0
        self.users.update_one({"_id": user_id}, {"$set": {"total_amount_cents": total}})
        return total

    @_store_errors
    def read_summary(self, user_id: ObjectId) -> Summary:
        user = self.users.find_one({"_id": user_id})
        if not user:
            raise NotFound("User not found")
        categories = self.categories.find({"user_id": user_id}).sort(
            [("title", ASCENDING), ("_id", ASCENDING)]
        )
        charges = self.charges.find({"user_id": user_id}).sort(
            [("date", ASCENDING), ("_id", ASCENDING)]
        )
        return Summary(
            user=user_out(user),
            categories=[category_out(doc) for doc in categories],
            charges=[charge_out(doc) for doc in charges],
        )


class MongoSummaryStore:
    consistency = Consistency.best_effort

    def __init__(self, client, settings: Settings | None = None) -> None:
        settings = settings or get_settings()
        db = client[settings.mongo_db]
        self.users = db[settings.users_collection]
        self.categories = db[settings.categories_collection]
        self.charges = db[settings.charges_collection]

    def parse_id(self, raw: str) -> ObjectId:
        if isinstance(raw, ObjectId):
            return raw
        if not isinstance(raw, str) or not ObjectId.is_valid(raw):
            raise InvalidId(raw)
        return ObjectId(raw)

    @contextmanager
    def unit_of_work(self) -> Iterator[MongoSummaryUnit]:
        # No multi-document transaction: steps are applied as they run.
        yield MongoSummaryUnit(self.users, self.categories, self.charges)

    @_store_errors
    def list_user_ids(self) -> list[str]:
        return [
            str(doc["_id"]) for doc in self.users.find({}, {"_id": 1}).sort("_id", 1)
        ]

    def _owned_category(self, user_id: ObjectId, category_id: ObjectId) -> dict:
        category = self.categories.find_one({"_id": category_id, "user_id": user_id})
        if not category:
            raise NotFound("Category not found")
        return category

    @_store_errors
    def create_user(self, data: UserIn) -> UserOut:
        doc = {
            "credential_ref": data.credential_ref,
            "name": data.name.strip(),
            "total_amount_cents": 0,
            "total_allotment_cents": data.total_allotment_cents,
        }
        doc["_id"] = self.users.insert_one(doc).inserted_id
        return user_out(doc)

    @_store_errors
    def create_category(self, user_id: ObjectId, data: CategoryIn) -> CategoryOut:
        if not self.users.find_one({"_id": user_id}, {"_id": 1}):
            raise NotFound("User not found")
        doc = {
            "user_id": user_id,
            "title": data.title.strip(),
            "allotment_cents": data.allotment_cents,
            "amount_cents": 0,
        }
        doc["_id"] = self.categories.insert_one(doc).inserted_id
        return category_out(doc)

    @_store_errors
    def update_category(
        self, user_id: ObjectId, category_id: ObjectId, data: CategoryIn
    ) -> CategoryOut:
        result = self.categories.update_one(
            {"_id": category_id, "user_id": user_id},
            {
                "$set": {
                    "title": data.title.strip(),
                    "allotment_cents": data.allotment_cents,
                }
            },
        )
        if not result.matched_count:
            raise NotFound("Category not found")
        return category_out(self._owned_category(user_id, category_id))

    @_store_errors
    def delete_category(self, user_id: ObjectId, category_id: ObjectId) -> None:
        self._owned_category(user_id, category_id)
        self.charges.delete_many({"category_id": category_id, "user_id": user_id})
        self.categories.delete_one({"_id": category_id, "user_id": user_id})

    @_store_errors
    def create_charge(self, user_id: ObjectId, data: ChargeIn) -> ChargeOut:
        category_id = self.parse_id(data.category_id)
        self._owned_category(user_id, category_id)
        doc = {
            "user_id": user_id,
            "category_id": category_id,
            "description": data.description,
            "amount_cents": data.amount_cents,
            "date": _to_datetime(data.date),
        }
        doc["_id"] = self.charges.insert_one(doc).inserted_id
        return charge_out(doc)

    @_store_errors
    def update_charge(
        self, user_id: ObjectId, charge_id: ObjectId, data: ChargeIn
    ) -> ChargeOut:
        category_id = self.parse_id(data.category_id)
        self._owned_category(user_id, category_id)
        result = self.charges.update_one(
            {"_id": charge_id, "user_id": user_id},
            {
                "$set": {
                    "category_id": category_id,
                    "description": data.description,
                    "amount_cents": data.amount_cents,
                    "date": _to_datetime(data.date),
                }
            },
        )
        if not result.matched_count:
            raise NotFound("Charge not found")
        return charge_out(self.charges.find_one({"_id": charge_id}))

    @_store_errors
    def delete_charge(self, user_id: ObjectId, charge_id: ObjectId) -> None:
        result = self.charges.delete_one({"_id": charge_id, "user_id": user_id})
        if not result.deleted_count:
            raise NotFound("Charge not found")
