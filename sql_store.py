from __future__ import annotations

import uuid
from contextlib import contextmanager
from functools import wraps
from typing import Iterator

from sqlalchemy import bindparam, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from database import session_scope
from errors import InvalidId, NotFound, StoreError
from models import Category, Charge, User
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


def _store_errors(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except SQLAlchemyError as exc:
            raise StoreError(f"{fn.__name__} failed: {exc}") from exc

    return wrapper


def user_out(user: User) -> UserOut:
    return UserOut(
        id=str(user.id),
        credential_ref=user.credential_ref,
        name=user.name,
        total_amount_cents=user.total_amount_cents,
        total_allotment_cents=user.total_allotment_cents,
    )


def category_out(category: Category) -> CategoryOut:
    return CategoryOut(
        id=str(category.id),
        user_id=str(category.user_id),
        title=category.title,
        allotment_cents=category.allotment_cents,
        amount_cents=category.amount_cents,
    )


def charge_out(charge: Charge) -> ChargeOut:
    return ChargeOut(
        id=str(charge.id),
        user_id=str(charge.user_id),
        category_id=str(charge.category_id),
        description=charge.description,
        amount_cents=charge.amount_cents,
        date=charge.date,
    )


class SqlSummaryUnit:
    def __init__(self, session: Session) -> None:
        self.session = session

    @_store_errors
    def lock_user(self, user_id: uuid.UUID) -> None:
        # Row lock on PostgreSQL; SQLite already holds the database write
        # lock from BEGIN IMMEDIATE.
        self.session.execute(
            select(User.id).where(User.id == user_id).with_for_update()
        )

    @_store_errors
    def charge_totals(self, user_id: uuid.UUID) -> dict[uuid.UUID, int]:
        stmt = (
            select(
                Charge.category_id,
                func.coalesce(func.sum(Charge.amount_cents), 0).label("total"),
            )
            .where(Charge.user_id == user_id)
            .group_by(Charge.category_id)
        )
        return {
            row.category_id: int(row.total or 0) for row in self.session.execute(stmt)
        }

    @_store_errors
    def reconcile_categories(
        self, user_id: uuid.UUID, totals: dict[uuid.UUID, int]
    ) -> int:
        written = 0
        table = Category.__table__
        if totals:
            stmt = (
                update(table)
                .where(table.c.id == bindparam("b_id"), table.c.user_id == user_id)
                .values(amount_cents=bindparam("b_amount"))
            )
            result = self.session.connection().execute(
                stmt,
                [
                    {"b_id": category_id, "b_amount": amount}
                    for category_id, amount in totals.items()
                ],
            )
            written += max(result.rowcount, 0)

        zero = (
            update(Category)
            .where(Category.user_id == user_id)
            .values(amount_cents=0)
        )
        if totals:
            zero = zero.where(Category.id.not_in(list(totals)))
        result = self.session.execute(
            zero, execution_options={"synchronize_session": False}
        )
        written += max(result.rowcount, 0)
        return written

    @_store_errors
    def recalculate_user_total(self, user_id: uuid.UUID) -> int:
        total = int(
            self.session.execute(
                select(func.coalesce(func.sum(Category.amount_cents), 0)).where(
                    Category.user_id == user_id
                )
            ).scalar_one()
            or 0
        )
        self.session.execute(
            update(User).where(User.id == user_id).values(total_amount_cents=total),
            execution_options={"synchronize_session": False},
        )
        return total

    @_store_errors
    def read_summary(self, user_id: uuid.UUID) -> Summary:
        user = self.session.scalar(
            select(User)
            .where(User.id == user_id)
            .execution_options(populate_existing=True)
        )
        if not user:
            raise NotFound("User not found")
        categories = self.session.scalars(
            select(Category)
            .where(Category.user_id == user_id)
            .order_by(Category.title, Category.id)
            .execution_options(populate_existing=True)
        ).all()
        charges = self.session.scalars(
            select(Charge)
            .where(Charge.user_id == user_id)
            .order_by(Charge.date, Charge.id)
            .execution_options(populate_existing=True)
        ).all()
        return Summary(
            user=user_out(user),
            categories=[category_out(c) for c in categories],
            charges=[charge_out(c) for c in charges],
        )


class SqlSummaryStore:
    consistency = Consistency.transactional

    def __init__(self, session_factory: sessionmaker) -> None:
        self.session_factory = session_factory

    def parse_id(self, raw: str) -> uuid.UUID:
        try:
            return uuid.UUID(str(raw))
        except (TypeError, ValueError) as exc:
            raise InvalidId(raw) from exc

    @contextmanager
    def unit_of_work(self) -> Iterator[SqlSummaryUnit]:
        try:
            with session_scope(self.session_factory) as session:
                yield SqlSummaryUnit(session)
        except SQLAlchemyError as exc:
            raise StoreError(f"transaction failed: {exc}") from exc

    @_store_errors
    def list_user_ids(self) -> list[str]:
        with session_scope(self.session_factory) as session:
            ids = session.scalars(select(User.id).order_by(User.id)).all()
        return [str(user_id) for user_id in ids]

    def _owned_category(
        self, session: Session, user_id: uuid.UUID, category_id: uuid.UUID
    ) -> Category:
        category = session.get(Category, category_id)
        if not category or category.user_id != user_id:
            raise NotFound("Category not found")
        return category

    def _owned_charge(
        self, session: Session, user_id: uuid.UUID, charge_id: uuid.UUID
    ) -> Charge:
        charge = session.get(Charge, charge_id)
        if not charge or charge.user_id != user_id:
            raise NotFound("Charge not found")
        return charge

    @_store_errors
    def create_user(self, data: UserIn) -> UserOut:
        with session_scope(self.session_factory) as session:
            user = User(
                name=data.name.strip(),
                credential_ref=data.credential_ref,
                total_amount_cents=0,
                total_allotment_cents=data.total_allotment_cents,
            )
            session.add(user)
            session.flush()
            return user_out(user)

    @_store_errors
    def create_category(self, user_id: uuid.UUID, data: CategoryIn) -> CategoryOut:
        with session_scope(self.session_factory) as session:
            if not session.get(User, user_id):
                raise NotFound("User not found")
            category = Category(
                user_id=user_id,
                title=data.title.strip(),
                allotment_cents=data.allotment_cents,
                amount_cents=0,
            )
            session.add(category)
            session.flush()
            return category_out(category)

    @_store_errors
    def update_category(
        self, user_id: uuid.UUID, category_id: uuid.UUID, data: CategoryIn
    ) -> CategoryOut:
        with session_scope(self.session_factory) as session:
            category = self._owned_category(session, user_id, category_id)
            category.title = data.title.strip()
            category.allotment_cents = data.allotment_cents
            session.flush()
            return category_out(category)

    @_store_errors
    def delete_category(self, user_id: uuid.UUID, category_id: uuid.UUID) -> None:
        with session_scope(self.session_factory) as session:
            category = self._owned_category(session, user_id, category_id)
            # Cascades to the category's charges.
            session.delete(category)

    @_store_errors
    def create_charge(self, user_id: uuid.UUID, data: ChargeIn) -> ChargeOut:
        category_id = self.parse_id(data.category_id)
        with session_scope(self.session_factory) as session:
            self._owned_category(session, user_id, category_id)
            charge = Charge(
                user_id=user_id,
                category_id=category_id,
                description=data.description,
                amount_cents=data.amount_cents,
                date=data.date,
            )
            session.add(charge)
            session.flush()
            return charge_out(charge)

    @_store_errors
    def update_charge(
        self, user_id: uuid.UUID, charge_id: uuid.UUID, data: ChargeIn
    ) -> ChargeOut:
        category_id = self.parse_id(data.category_id)
        with session_scope(self.session_factory) as session:
            charge = self._owned_charge(session, user_id, charge_id)
            self._owned_category(session, user_id, category_id)
            charge.category_id = category_id
            charge.description = data.description
            charge.amount_cents = data.amount_cents
            charge.date = data.date
            session.flush()
            return charge_out(charge)

    @_store_errors
    def delete_charge(self, user_id: uuid.UUID, charge_id: uuid.UUID) -> None:
        with session_scope(self.session_factory) as session:
            charge = self._owned_charge(session, user_id, charge_id)
            session.delete(charge)
