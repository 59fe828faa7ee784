"""
ORM tables for saved CMA sessions and the per-property valuation history,
plus the versioned envelopes their JSON snapshot columns hold.
"""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, Float, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy import JSON as JsonType
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base, as_utc

SNAPSHOT_SCHEMA_VERSION = 2


def wrap_snapshot(data: Any) -> dict:
    return {"schema_version": SNAPSHOT_SCHEMA_VERSION, "data": data}


def unwrap_snapshot(envelope: Any) -> Any:
    """
    Decode a stored snapshot of any version.

    v1 rows stored the bare payload with no envelope. v2 wraps it in
    {"schema_version", "data"}.
    """
    if isinstance(envelope, dict) and "schema_version" in envelope and "data" in envelope:
        version = envelope["schema_version"]
        if version > SNAPSHOT_SCHEMA_VERSION:
            raise ValueError(f"snapshot schema {version} is newer than supported {SNAPSHOT_SCHEMA_VERSION}")
        return envelope["data"]
    return envelope


def _new_id() -> str:
    return uuid.uuid4().hex


class CMASessionRecord(Base):
    __tablename__ = "cma_sessions"
    __table_args__ = (
        UniqueConstraint("share_slug", name="uq_cma_sessions_share_slug"),
        Index("ix_cma_sessions_owner_id", "owner_id"),
        Index("ix_cma_sessions_created_at", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    owner_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_favorite: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_standalone: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    share_slug: Mapped[str | None] = mapped_column(String(120), nullable=True)
    subject_listing_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    subject_snapshot: Mapped[dict[str, Any]] = mapped_column(JsonType, nullable=False)
    filter_snapshot: Mapped[dict[str, Any]] = mapped_column(JsonType, nullable=False)
    comparables_snapshot: Mapped[dict[str, Any]] = mapped_column(JsonType, nullable=False)
    summary_snapshot: Mapped[dict[str, Any]] = mapped_column(JsonType, nullable=False)
    comparables_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    weighted_mid_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    artifact_path: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    artifact_generated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def to_dict(self, include_snapshots: bool = True) -> dict:
        out = {
            "id": self.id,
            "owner_id": self.owner_id,
            "name": self.name,
            "description": self.description,
            "is_favorite": self.is_favorite,
            "is_standalone": self.is_standalone,
            "share_slug": self.share_slug,
            "subject_listing_id": self.subject_listing_id,
            "comparables_count": self.comparables_count,
            "weighted_mid_value": self.weighted_mid_value,
            "artifact_path": self.artifact_path,
            "artifact_generated_at": _iso(self.artifact_generated_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_snapshots:
            out.update({
                "subject": unwrap_snapshot(self.subject_snapshot),
                "filters": unwrap_snapshot(self.filter_snapshot),
                "comparables": unwrap_snapshot(self.comparables_snapshot),
                "summary": unwrap_snapshot(self.summary_snapshot),
            })
        return out


class ValuationHistoryRecord(Base):
    __tablename__ = "cma_valuation_history"
    __table_args__ = (
        Index("ix_cma_valuation_history_listing_created", "listing_id", "created_at"),
        Index("ix_cma_valuation_history_owner_id", "owner_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    listing_id: Mapped[str] = mapped_column(String(64), nullable=False)
    owner_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    session_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    low_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    mid_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    high_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    weighted_mid_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    comparables_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    top_comps_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    confidence_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    confidence_level: Mapped[str] = mapped_column(String(16), nullable=False, default="low")
    avg_price_per_sqft: Mapped[float | None] = mapped_column(Float, nullable=True)
    filter_snapshot: Mapped[dict[str, Any]] = mapped_column(JsonType, nullable=False)
    is_arv_mode: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    arv_overrides: Mapped[dict[str, Any] | None] = mapped_column(JsonType, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "listing_id": self.listing_id,
            "owner_id": self.owner_id,
            "session_id": self.session_id,
            "address": self.address,
            "low": self.low_value,
            "mid": self.mid_value,
            "high": self.high_value,
            "weighted_mid": self.weighted_mid_value,
            "comparables_count": self.comparables_count,
            "top_comps_count": self.top_comps_count,
            "confidence_score": self.confidence_score,
            "confidence_level": self.confidence_level,
            "avg_price_per_sqft": self.avg_price_per_sqft,
            "filters": unwrap_snapshot(self.filter_snapshot),
            "is_arv_mode": self.is_arv_mode,
            "arv_overrides": self.arv_overrides,
            "notes": self.notes,
            "created_at": _iso(self.created_at),
        }


def _iso(value: datetime | None) -> str | None:
    value = as_utc(value)
    return value.isoformat() if value else None
