"""ORM models for the pipeline: stages, opportunities, history, targets, profiles."""

import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


def _uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Stage catalog
# ---------------------------------------------------------------------------


class StageSetting(Base):
    """One pipeline stage as configured by an admin."""

    __tablename__ = "stage_settings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    key = Column(String(100), nullable=False, unique=True)
    position = Column(Integer, nullable=False, default=0)
    default_probability = Column(Numeric(5, 2), nullable=False, default=0)
    points = Column(Integer, nullable=False, default=0)
    default_due_days = Column(Integer, nullable=True)
    forecast_category = Column(String(20), nullable=True)  # Pipeline / Best Case / Commit / Closed
    is_won = Column(Boolean, default=False)
    is_lost = Column(Boolean, default=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


# ---------------------------------------------------------------------------
# Org hierarchy
# ---------------------------------------------------------------------------


class UserProfileRow(Base):
    """User profile with hierarchy links used for scope resolution."""

    __tablename__ = "user_profiles"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), nullable=False, unique=True)  # auth user id
    full_name = Column(String(255), nullable=True)
    role = Column(String(20), nullable=False)  # account_manager / manager / head / admin
    department_id = Column(String(36), nullable=True, index=True)
    division_id = Column(String(36), nullable=True, index=True)
    manager_id = Column(String(36), nullable=True, index=True)  # profile id
    head_id = Column(String(36), nullable=True, index=True)  # profile id
    created_at = Column(DateTime(timezone=True), server_default=func.now())


# ---------------------------------------------------------------------------
# Opportunities
# ---------------------------------------------------------------------------


class OpportunityRow(Base):
    """A sales deal.  Soft-deleted through ``is_deleted``."""

    __tablename__ = "opportunities"
    __table_args__ = (
        CheckConstraint("probability >= 0 AND probability <= 100", name="ck_opportunity_probability"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(500), nullable=False, default="")
    owner_id = Column(String(36), nullable=False, index=True)  # auth user id
    stage = Column(String(100), nullable=False)
    stage_entered_at = Column(DateTime(timezone=True), nullable=True)
    amount = Column(Numeric(18, 2), nullable=False, default=0)
    margin = Column(Numeric(18, 2), nullable=True)
    currency = Column(String(3), nullable=False, default="IDR")
    probability = Column(Numeric(5, 2), nullable=False, default=0)
    forecast_category = Column(String(20), nullable=False, default="Pipeline")
    status = Column(String(20), nullable=False, default="open", index=True)
    expected_close_date = Column(Date, nullable=True, index=True)
    close_date = Column(Date, nullable=True)
    due_days_override = Column(Integer, nullable=True)
    loss_reason = Column(Text, nullable=True)
    version = Column(Integer, nullable=False, default=1)  # optimistic concurrency
    is_deleted = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class StageHistoryRow(Base):
    """Append-only audit trail of stage transitions."""

    __tablename__ = "opportunity_stage_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    opportunity_id = Column(String(36), ForeignKey("opportunities.id"), nullable=False, index=True)
    from_stage = Column(String(100), nullable=True)  # null for the creation entry
    to_stage = Column(String(100), nullable=False)
    changed_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    changed_by = Column(String(36), nullable=True)
    note = Column(Text, nullable=True)


# ---------------------------------------------------------------------------
# Sales targets
# ---------------------------------------------------------------------------


class SalesTargetRow(Base):
    """A revenue or margin quota over an inclusive date range."""

    __tablename__ = "sales_targets"
    __table_args__ = (
        CheckConstraint("period_end >= period_start", name="ck_sales_target_period"),
        CheckConstraint("amount >= 0", name="ck_sales_target_amount"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    assigned_to = Column(String(36), nullable=False, index=True)  # profile id
    created_by = Column(String(36), nullable=True)  # profile id of the superior
    amount = Column(Numeric(18, 2), nullable=False)
    measure = Column(String(10), nullable=False, default="revenue")  # revenue / margin
    period_start = Column(Date, nullable=False)
    period_end = Column(Date, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
