from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# Use JSONB on Postgres while keeping the models usable on SQLite test databases.
JSONType = JSON().with_variant(JSONB(), "postgresql")

SUBSCRIPTION_TIERS = ("free", "basic", "premium", "enterprise")
AUDIT_TYPES = ("manual", "bulk", "discovery")


def _one_of(column: str, values: tuple[str, ...]) -> str:
    allowed = ", ".join(f"'{value}'" for value in values)
    return f"{column} IN ({allowed})"


class Base(DeclarativeBase):
    pass


class Subscriber(Base):
    __tablename__ = "subscribers"
    __table_args__ = (
        CheckConstraint(
            _one_of("subscription_tier", SUBSCRIPTION_TIERS),
            name="ck_subscribers_subscription_tier",
        ),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    # Tenant quota key; one subscriber row per billing email.
    email: Mapped[str] = mapped_column(String, unique=True, index=True)
    stripe_customer_id: Mapped[str | None] = mapped_column(String, nullable=True)
    subscribed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    subscription_tier: Mapped[str | None] = mapped_column(String, nullable=True, default="free")
    subscription_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Null allowance falls back to the default free-tier quota at read time.
    monthly_quota: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # Only grows within a billing period; reset by an external monthly job.
    quota_used: Mapped[int | None] = mapped_column(Integer, nullable=True, default=0)
    quota_reset_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class Audit(Base):
    __tablename__ = "audits"
    __table_args__ = (
        CheckConstraint(_one_of("audit_type", AUDIT_TYPES), name="ck_audits_audit_type"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    # Owning tenant; status reports are scoped by this column.
    org_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    email: Mapped[str] = mapped_column(String)
    url: Mapped[str] = mapped_column(String)
    # Free-form status written by the workflow engine; see services.status for buckets.
    status: Mapped[str | None] = mapped_column(String, nullable=True, default="pending")
    audit_type: Mapped[str | None] = mapped_column(String, nullable=True, default="manual")
    results_json: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    score_global: Mapped[float | None] = mapped_column(Float, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Correlation id shared with the workflow engine; batch jobs use batch_<token>_<suffix>.
    webhook_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    delivery_method: Mapped[str | None] = mapped_column(String, nullable=True)
    is_public: Mapped[bool | None] = mapped_column(Boolean, nullable=True, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Profile(Base):
    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, unique=True, index=True)
    email: Mapped[str] = mapped_column(String)
    full_name: Mapped[str | None] = mapped_column(String, nullable=True)
    company: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
