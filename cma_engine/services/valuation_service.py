import asyncio
import logging
import time
from datetime import datetime
from functools import lru_cache
from typing import Any, Callable, Mapping, Optional

from ..core.cache import ResultCache, fingerprint
from ..core.config import settings
from ..core.errors import PersistenceFailure
from ..core.metrics import MARKET_DEGRADED, VALUATION_LATENCY, VALUATIONS
from ..core.utils import utc_now
from ..data.base import InventoryRepository
from ..data.inventory_client import InMemoryInventory, inventory_client
from ..db import default_sessionmaker
from ..engine.adjustments import AdjustmentCalculator
from ..engine.aggregation import ValuationAggregator
from ..engine.filters import FilterCriteria, normalize_filters
from ..engine.geo import CandidateSelector
from ..engine.market import MarketContextCalculator
from ..engine.models import ARV_OVERRIDE_KEYS, MarketContext, SubjectProperty
from ..engine.scoring import SimilarityScorer, rank
from .history import ValuationHistoryTracker
from .session_store import CMASessionStore

logger = logging.getLogger(__name__)

WARN_HISTORY = "history_not_recorded"
WARN_MARKET = "market_context_unavailable"


def split_params(raw: Mapping[str, Any]) -> tuple[dict, dict]:
    """
    Accept either {"subject": {...}, "filters": {...}} or one flat mapping.
    In the flat form every key is offered to both parsers; each ignores what
    it does not understand.
    """
    if isinstance(raw.get("subject"), Mapping):
        filters = raw.get("filters")
        return dict(raw["subject"]), dict(filters) if isinstance(filters, Mapping) else {}
    flat = dict(raw)
    return flat, flat


def clean_overrides(overrides: Optional[Mapping[str, Any]]) -> dict:
    if not overrides:
        return {}
    return {k: v for k, v in overrides.items() if k in ARV_OVERRIDE_KEYS and v is not None}


class ComparableValuationService:
    """
    Orchestrates one comparable valuation:
      subject + filters → fingerprint → cache
        → (candidate selection ‖ market context) → scoring → adjustments → ranking
        → aggregation → cache write → history append
    Dependencies are handed in once; nothing is looked up per request.
    """
    def __init__(
        self,
        repository: InventoryRepository,
        cache: ResultCache,
        clock: Callable[[], datetime] = utc_now,
        history: Optional[ValuationHistoryTracker] = None,
        sessions: Optional[CMASessionStore] = None,
        market: Optional[MarketContextCalculator] = None,
        scorer: Optional[SimilarityScorer] = None,
        aggregator: Optional[ValuationAggregator] = None,
        adjuster: Optional[AdjustmentCalculator] = None,
        repository_timeout: float | None = None,
        parallel_threshold: int | None = None,
    ):
        self.repository = repository
        self.cache = cache
        self.clock = clock
        self.history = history
        self.sessions = sessions
        self.market = market
        self.scorer = scorer or SimilarityScorer()
        self.aggregator = aggregator or ValuationAggregator()
        if adjuster is None and settings.ADJUSTMENTS_ENABLED:
            adjuster = AdjustmentCalculator()
        self.adjuster = adjuster
        self.selector = CandidateSelector(
            repository,
            repository_timeout if repository_timeout is not None else settings.REPOSITORY_TIMEOUT_SECONDS,
        )
        self.parallel_threshold = (
            parallel_threshold if parallel_threshold is not None else settings.PARALLEL_SCORING_THRESHOLD
        )

    async def _market_or_unknown(self, subject: SubjectProperty, warnings: list) -> MarketContext:
        if self.market is None:
            return MarketContext.unknown(subject.city, subject.state, subject.property_type, degraded=False)
        try:
            return await self.market.compute(subject.city, subject.state, subject.property_type)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            reason = type(exc).__name__
            MARKET_DEGRADED.labels(reason=reason).inc()
            logger.warning("market context degraded", exc_info=True,
                           extra={"component": "market_context", "city": subject.city})
            warnings.append(WARN_MARKET)
            return MarketContext.unknown(subject.city, subject.state, subject.property_type)

    def _evaluate(self, subject: SubjectProperty, candidates, criteria: FilterCriteria, today):
        scored = self.scorer.score_all(subject, candidates, criteria, today)
        if self.adjuster is not None:
            self.adjuster.apply(subject, scored)
        return scored

    async def _score(self, subject: SubjectProperty, candidates, criteria: FilterCriteria, today):
        if len(candidates) > self.parallel_threshold:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, self._evaluate, subject, candidates, criteria, today)
        return self._evaluate(subject, candidates, criteria, today)

    async def run(
        self,
        raw_params: Mapping[str, Any],
        owner_id: Optional[str] = None,
        overrides: Optional[Mapping[str, Any]] = None,
        use_cache: bool = True,
    ) -> dict:
        subject_raw, filter_raw = split_params(raw_params or {})
        base_subject = SubjectProperty.from_mapping(subject_raw)
        arv = clean_overrides(overrides)
        subject = base_subject.with_overrides(arv)
        criteria = normalize_filters(filter_raw)

        identity = subject.to_dict()
        identity["arv_overrides"] = arv
        fp = fingerprint(identity, criteria.to_dict())

        cached = self.cache.get(fp) if use_cache else None
        if cached is not None:
            logger.info("valuation served from cache", extra={"fingerprint": fp, "listing_id": subject.listing_id})
            cached["cached"] = True
            cached["warnings"] = []
            return cached

        started = time.perf_counter()
        today = self.clock().date()
        warnings: list[str] = []

        market_task = asyncio.ensure_future(self._market_or_unknown(subject, warnings))
        try:
            selection = await self.selector.select(subject, criteria, today)
        except BaseException:
            market_task.cancel()
            raise
        market = await market_task

        scored = await self._score(subject, selection.candidates, criteria, today)
        summary = self.aggregator.summarize(scored, subject, criteria)
        ranked = rank(scored, criteria.sort_by)[:criteria.limit]

        payload = {
            "fingerprint": fp,
            "subject_property": subject.to_dict(),
            "arv_overrides": arv,
            "filters_applied": criteria.to_dict(),
            "comparables": [c.to_dict() for c in ranked],
            "summary": summary.to_dict(),
            "market_context": market.to_dict(),
            "candidates_examined": selection.examined,
        }
        self.cache.set(fp, payload)

        elapsed = time.perf_counter() - started
        VALUATIONS.inc()
        VALUATION_LATENCY.observe(elapsed)
        logger.info(
            "valuation computed",
            extra={
                "fingerprint": fp,
                "listing_id": subject.listing_id,
                "candidates": selection.examined,
                "comparables": summary.comparables_used,
                "elapsed_ms": round(elapsed * 1000, 1),
            },
        )

        if self.history is not None and subject.listing_id:
            try:
                self.history.record(
                    subject.listing_id,
                    payload["summary"],
                    payload["filters_applied"],
                    owner_id=owner_id,
                    address=subject.address or None,
                    arv_overrides=arv or None,
                )
            except PersistenceFailure:
                warnings.append(WARN_HISTORY)

        return {**payload, "cached": False, "warnings": warnings}

    async def market_context(
        self, city: str, state: str = "", property_type: Optional[str] = None, months: int | None = None
    ) -> dict:
        if self.market is None:
            return MarketContext.unknown(city, state, property_type, degraded=False).to_dict()
        try:
            return (await self.market.compute(city, state, property_type, months)).to_dict()
        except Exception as exc:  # noqa: BLE001
            MARKET_DEGRADED.labels(reason=type(exc).__name__).inc()
            logger.warning("market context degraded", exc_info=True, extra={"component": "market_context", "city": city})
            return MarketContext.unknown(city, state, property_type).to_dict()

    def _require_sessions(self) -> CMASessionStore:
        if self.sessions is None:
            raise RuntimeError("session store is not configured")
        return self.sessions

    async def create_session(
        self,
        params: Mapping[str, Any],
        name: str,
        owner_id: Optional[str] = None,
        description: Optional[str] = None,
        is_standalone: bool = False,
        overrides: Optional[Mapping[str, Any]] = None,
        use_cache: bool = True,
    ) -> dict:
        """Run (or reuse a cached run) and persist it as a named session."""
        result = await self.run(params, owner_id=owner_id, overrides=overrides, use_cache=use_cache)
        session = self._require_sessions().create(
            name=name,
            subject=result["subject_property"],
            filters=result["filters_applied"],
            comparables=result["comparables"],
            summary=result["summary"],
            owner_id=owner_id,
            description=description,
            is_standalone=is_standalone,
        )
        return {"session": session, "result": result}

    async def rerun_session(
        self,
        session_id: str,
        owner_id: Optional[str] = None,
        filters: Optional[Mapping[str, Any]] = None,
        name: Optional[str] = None,
    ) -> dict:
        """
        Recompute a stored session against current inventory and save the
        result as a new session. The original session is left as it was.
        """
        store = self._require_sessions()
        original = store.get(session_id)
        params = {
            "subject": original["subject"],
            "filters": dict(filters) if filters is not None else original["filters"],
        }
        return await self.create_session(
            params,
            name=name or original["name"],
            owner_id=owner_id if owner_id is not None else original["owner_id"],
            description=original["description"],
            is_standalone=original["is_standalone"],
            use_cache=False,
        )

    def invalidate(self, event: str = "inventory_changed") -> int:
        """Inventory changed: every cached valuation may be stale."""
        removed = self.cache.purge()
        logger.info("valuation cache invalidated", extra={"component": event})
        return removed


@lru_cache
def get_valuation_service() -> ComparableValuationService:
    repository = inventory_client()
    cache = ResultCache(namespace="cma")
    session_factory = default_sessionmaker()
    service = ComparableValuationService(
        repository=repository,
        cache=cache,
        history=ValuationHistoryTracker(session_factory),
        sessions=CMASessionStore(session_factory),
        market=MarketContextCalculator(repository) if settings.MARKET_CONTEXT_ENABLED else None,
    )
    if isinstance(repository, InMemoryInventory):
        repository.subscribe(service.invalidate)
    return service
