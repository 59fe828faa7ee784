import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Iterator, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..core.errors import PersistenceFailure, SessionAccessDenied, SessionNotFound
from ..core.metrics import PERSISTENCE_FAILURES
from ..core.utils import slugify, utc_now
from ..records import CMASessionRecord, wrap_snapshot

logger = logging.getLogger(__name__)

# Only these fields change after creation; snapshots never do
EDITABLE_FIELDS = ("name", "description", "is_favorite")
MAX_PAGE_SIZE = 100


class CMASessionStore:
    """
    Durable, named snapshots of completed valuation runs.

    Snapshot columns are written once at creation. Metadata edits touch only
    name, description and the favorite flag; a new valuation is a new session.
    """
    def __init__(self, session_factory: sessionmaker[Session], clock: Callable[[], datetime] = utc_now):
        self.session_factory = session_factory
        self.clock = clock

    @contextmanager
    def _tx(self) -> Iterator[Session]:
        db = self.session_factory()
        try:
            yield db
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            PERSISTENCE_FAILURES.labels(store="sessions").inc()
            logger.error("session store write failed", exc_info=True)
            raise PersistenceFailure(str(exc)) from exc
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _load(self, db: Session, session_id: str) -> CMASessionRecord:
        record = db.get(CMASessionRecord, session_id)
        if record is None:
            raise SessionNotFound(session_id)
        return record

    @staticmethod
    def _check_owner(record: CMASessionRecord, owner_id: Optional[str]) -> None:
        if record.owner_id is not None and record.owner_id != owner_id:
            raise SessionAccessDenied(record.id)

    def _unique_slug(self, db: Session, base: str) -> str:
        taken = set(db.scalars(
            select(CMASessionRecord.share_slug).where(CMASessionRecord.share_slug.like(f"{base}%"))
        ))
        if base not in taken:
            return base
        n = 2
        while f"{base}-{n}" in taken:
            n += 1
        return f"{base}-{n}"

    def create(
        self,
        name: str,
        subject: dict,
        filters: dict,
        comparables: list,
        summary: dict,
        owner_id: Optional[str] = None,
        description: Optional[str] = None,
        is_standalone: bool = False,
        is_favorite: bool = False,
    ) -> dict:
        now = self.clock()
        with self._tx() as db:
            slug = None
            if is_standalone:
                base = slugify(" ".join(p for p in (subject.get("address"), subject.get("city")) if p) or name)
                slug = self._unique_slug(db, base)
            record = CMASessionRecord(
                owner_id=owner_id,
                name=name,
                description=description,
                is_favorite=is_favorite,
                is_standalone=is_standalone,
                share_slug=slug,
                subject_listing_id=subject.get("listing_id"),
                subject_snapshot=wrap_snapshot(subject),
                filter_snapshot=wrap_snapshot(filters),
                comparables_snapshot=wrap_snapshot(comparables),
                summary_snapshot=wrap_snapshot(summary),
                comparables_count=summary.get("comparables_used") or len(comparables),
                weighted_mid_value=summary.get("weighted_mid"),
                created_at=now,
                updated_at=now,
            )
            db.add(record)
            db.flush()
            out = record.to_dict()
        logger.info("cma session created", extra={"session_id": out["id"], "owner_id": owner_id})
        return out

    def get(self, session_id: str) -> dict:
        with self._tx() as db:
            return self._load(db, session_id).to_dict()

    def get_by_slug(self, slug: str) -> dict:
        """Public lookup; only standalone sessions are reachable by slug."""
        with self._tx() as db:
            record = db.scalars(
                select(CMASessionRecord).where(
                    CMASessionRecord.share_slug == slug,
                    CMASessionRecord.is_standalone.is_(True),
                )
            ).first()
            if record is None:
                raise SessionNotFound(slug)
            return record.to_dict()

    def list_for_owner(
        self,
        owner_id: str,
        favorites_only: bool = False,
        limit: int = 20,
        offset: int = 0,
    ) -> list[dict]:
        limit = max(1, min(MAX_PAGE_SIZE, limit))
        offset = max(0, offset)
        stmt = select(CMASessionRecord).where(CMASessionRecord.owner_id == owner_id)
        if favorites_only:
            stmt = stmt.where(CMASessionRecord.is_favorite.is_(True))
        stmt = stmt.order_by(CMASessionRecord.created_at.desc(), CMASessionRecord.id).limit(limit).offset(offset)
        with self._tx() as db:
            return [r.to_dict(include_snapshots=False) for r in db.scalars(stmt)]

    def count_for_owner(self, owner_id: str, favorites_only: bool = False) -> int:
        stmt = select(func.count()).select_from(CMASessionRecord).where(CMASessionRecord.owner_id == owner_id)
        if favorites_only:
            stmt = stmt.where(CMASessionRecord.is_favorite.is_(True))
        with self._tx() as db:
            return int(db.scalar(stmt) or 0)

    def update_metadata(self, session_id: str, owner_id: Optional[str], changes: dict[str, Any]) -> dict:
        with self._tx() as db:
            record = self._load(db, session_id)
            self._check_owner(record, owner_id)
            for key in EDITABLE_FIELDS:
                if key in changes and changes[key] is not None:
                    setattr(record, key, changes[key])
            record.updated_at = self.clock()
            db.flush()
            return record.to_dict()

    def toggle_favorite(self, session_id: str, owner_id: Optional[str]) -> dict:
        with self._tx() as db:
            record = self._load(db, session_id)
            self._check_owner(record, owner_id)
            record.is_favorite = not record.is_favorite
            record.updated_at = self.clock()
            db.flush()
            return record.to_dict(include_snapshots=False)

    def attach_artifact(self, session_id: str, owner_id: Optional[str], artifact_path: str) -> dict:
        """Record where a generated report for this session lives."""
        with self._tx() as db:
            record = self._load(db, session_id)
            self._check_owner(record, owner_id)
            now = self.clock()
            record.artifact_path = artifact_path
            record.artifact_generated_at = now
            record.updated_at = now
            db.flush()
            return record.to_dict(include_snapshots=False)

    def claim(self, session_id: str, owner_id: str) -> dict:
        """Assign an anonymous session to owner_id. Claiming your own session is a no-op."""
        with self._tx() as db:
            record = self._load(db, session_id)
            if record.owner_id is not None and record.owner_id != owner_id:
                raise SessionAccessDenied(session_id)
            if record.owner_id is None:
                record.owner_id = owner_id
                record.updated_at = self.clock()
                db.flush()
            return record.to_dict(include_snapshots=False)

    def delete(self, session_id: str, owner_id: Optional[str]) -> None:
        with self._tx() as db:
            record = self._load(db, session_id)
            self._check_owner(record, owner_id)
            db.delete(record)
        logger.info("cma session deleted", extra={"session_id": session_id, "owner_id": owner_id})
