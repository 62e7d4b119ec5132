import uuid
from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    credential_ref: Mapped[Optional[str]] = mapped_column(String(64))
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    # Cache of sum(categories.amount_cents), refreshed by the summary recompute.
    total_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_allotment_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )

    categories: Mapped[list["Category"]] = relationship(
        "Category", back_populates="user"
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    allotment_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Cache of sum(charges.amount_cents) for this category.
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    user: Mapped["User"] = relationship("User", back_populates="categories")
    charges: Mapped[list["Charge"]] = relationship(
        "Charge", back_populates="category", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_categories_user", "user_id"),
        CheckConstraint("allotment_cents >= 0", name="ck_categories_allotment_positive"),
    )


class Charge(Base, TimestampMixin):
    __tablename__ = "charges"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    category_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("categories.id", ondelete="CASCADE"), nullable=False
    )
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)

    category: Mapped["Category"] = relationship("Category", back_populates="charges")

    __table_args__ = (
        Index("ix_charges_user_category", "user_id", "category_id"),
        Index("ix_charges_user_date", "user_id", "date"),
        CheckConstraint("amount_cents >= 0", name="ck_charges_amount_positive"),
    )
