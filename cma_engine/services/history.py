import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

import numpy as np
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..core.errors import PersistenceFailure
from ..core.finance import percent_change
from ..core.metrics import PERSISTENCE_FAILURES
from ..core.utils import utc_now
from ..db import as_utc
from ..records import ValuationHistoryRecord, wrap_snapshot

logger = logging.getLogger(__name__)

FLAT_THRESHOLD_PCT = 1.0
HISTORY_LIMIT = (20, 1, 100)
TREND_MONTHS = (12, 3, 36)


def _clamp(value, bounds):
    default, lo, hi = bounds
    if value is None:
        return default
    return max(lo, min(hi, int(value)))


def _value_of(record: ValuationHistoryRecord) -> Optional[float]:
    return record.weighted_mid_value if record.weighted_mid_value is not None else record.mid_value


def trend_direction(change_pct: Optional[float]) -> str:
    if change_pct is None or abs(change_pct) < FLAT_THRESHOLD_PCT:
        return "flat"
    return "up" if change_pct > 0 else "down"


class ValuationHistoryTracker:
    """Append-only time series of computed valuations, keyed by listing id."""

    def __init__(self, session_factory: sessionmaker[Session], clock: Callable[[], datetime] = utc_now):
        self.session_factory = session_factory
        self.clock = clock

    def record(
        self,
        listing_id: str,
        summary: dict,
        filters: dict,
        owner_id: Optional[str] = None,
        session_id: Optional[str] = None,
        address: Optional[str] = None,
        arv_overrides: Optional[dict] = None,
        notes: Optional[str] = None,
    ) -> dict:
        row = ValuationHistoryRecord(
            listing_id=listing_id,
            owner_id=owner_id,
            session_id=session_id,
            address=address,
            low_value=summary.get("low"),
            mid_value=summary.get("mid"),
            high_value=summary.get("high"),
            weighted_mid_value=summary.get("weighted_mid"),
            comparables_count=summary.get("comparables_used") or 0,
            top_comps_count=summary.get("top_comps_count") or 0,
            confidence_score=summary.get("confidence_score") or 0.0,
            confidence_level=summary.get("confidence_level") or "low",
            avg_price_per_sqft=summary.get("avg_price_per_sqft"),
            filter_snapshot=wrap_snapshot(filters),
            is_arv_mode=bool(arv_overrides),
            arv_overrides=arv_overrides or None,
            notes=notes,
            created_at=self.clock(),
        )
        db = self.session_factory()
        try:
            db.add(row)
            db.commit()
            out = row.to_dict()
        except SQLAlchemyError as exc:
            db.rollback()
            PERSISTENCE_FAILURES.labels(store="history").inc()
            logger.error("history append failed", exc_info=True, extra={"listing_id": listing_id})
            raise PersistenceFailure(str(exc)) from exc
        finally:
            db.close()
        return out

    def _rows(self, listing_id: str, since: Optional[datetime] = None, newest_first: bool = False,
              limit: Optional[int] = None) -> list[ValuationHistoryRecord]:
        stmt = select(ValuationHistoryRecord).where(ValuationHistoryRecord.listing_id == listing_id)
        if since is not None:
            stmt = stmt.where(ValuationHistoryRecord.created_at >= since)
        if newest_first:
            stmt = stmt.order_by(ValuationHistoryRecord.created_at.desc(), ValuationHistoryRecord.id.desc())
        else:
            stmt = stmt.order_by(ValuationHistoryRecord.created_at, ValuationHistoryRecord.id)
        if limit is not None:
            stmt = stmt.limit(limit)
        with self.session_factory() as db:
            return list(db.scalars(stmt))

    def history(self, listing_id: str, limit: int | None = None) -> list[dict]:
        """Most recent first."""
        rows = self._rows(listing_id, newest_first=True, limit=_clamp(limit, HISTORY_LIMIT))
        return [r.to_dict() for r in rows]

    def value_trend(self, listing_id: str, months: int | None = None) -> dict:
        """
        Direction and % change strictly between the earliest and the latest
        record in the window. No smoothing, no interpolation of gaps.
        """
        months = _clamp(months, TREND_MONTHS)
        since = self.clock() - timedelta(days=months * 30)
        rows = [r for r in self._rows(listing_id, since=since) if _value_of(r) is not None]

        points = [
            {
                "date": as_utc(r.created_at).isoformat(),
                "value": _value_of(r),
                "low": r.low_value,
                "high": r.high_value,
                "confidence_score": r.confidence_score,
                "is_arv_mode": r.is_arv_mode,
            }
            for r in rows
        ]
        change = None
        if rows:
            pct = percent_change(_value_of(rows[0]), _value_of(rows[-1]))
            change = float(pct) if pct is not None else None
        return {
            "listing_id": listing_id,
            "months": months,
            "has_history": bool(rows),
            "data_points": points,
            "first_value": _value_of(rows[0]) if rows else None,
            "latest_value": _value_of(rows[-1]) if rows else None,
            "value_change_pct": change,
            "trend_direction": trend_direction(change),
        }

    def statistics(self, listing_id: str) -> dict:
        rows = self._rows(listing_id)
        values = np.array([v for v in (_value_of(r) for r in rows) if v is not None], dtype="float64")
        return {
            "listing_id": listing_id,
            "total_valuations": len(rows),
            "arv_valuations": sum(1 for r in rows if r.is_arv_mode),
            "first_valuation_at": as_utc(rows[0].created_at).isoformat() if rows else None,
            "last_valuation_at": as_utc(rows[-1].created_at).isoformat() if rows else None,
            "min_value": float(values.min()) if values.size else None,
            "max_value": float(values.max()) if values.size else None,
            "avg_value": round(float(values.mean()), 2) if values.size else None,
            "avg_confidence": round(float(np.mean([r.confidence_score for r in rows])), 1) if rows else None,
        }
