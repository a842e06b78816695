"""Knowledge store for AR Wizard agents: Viewpoint expertise, development knowledge,
database analyses, predictive-model metadata, and shared context.

Each record kind lives in its own namespace of the SQLite store. Operations are
async: every primitive runs on a worker thread with its own short-lived
connection, so no lock is held across operations and namespaces never block
each other.

Reads that mutate (expertise usage counts, knowledge last-used stamps) are
plain read-modify-write sequences. Two concurrent readers can both observe the
same usage_count and both write the same increment; counts are usage hints,
not audit counters.
"""

import asyncio
import json
import logging
import sqlite3
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any, TypeVar, cast
from uuid import uuid4

from ar_wizard.config import get_settings
from ar_wizard.memory.models import (
    AnalysisKind,
    AnalysisMetrics,
    AnalysisRecord,
    DatabaseName,
    ExpertiseDomain,
    ExpertiseKind,
    ExpertiseRecord,
    KnowledgeCategory,
    KnowledgePerformance,
    KnowledgeRecord,
    KnowledgeSnapshot,
    ModelPerformance,
    ModelType,
    PredictiveModelRecord,
    SharedContextEntry,
    TrainingData,
)
from ar_wizard.memory.store import (
    ALL_NAMESPACES,
    ANALYSIS_NS,
    CONTEXT_NS,
    EXPERTISE_NS,
    KNOWLEDGE_NS,
    MODELS_NS,
    count_records,
    delete_record,
    get_connection,
    get_initialized_connection,
    get_record,
    put_record,
    query_records,
)
from ar_wizard.observability.metrics import (
    ANALYSES_SWEPT_TOTAL,
    CONTEXT_EXPIRED_TOTAL,
    MAINTENANCE_DURATION,
    MAINTENANCE_RUNS_TOTAL,
    NAMESPACE_RECORDS,
    STORE_OPERATION_DURATION,
    STORE_OPERATIONS_TOTAL,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
Clock = Callable[[], datetime]

# Snapshot section -> namespace, in export order.
SNAPSHOT_SECTIONS: dict[str, str] = {
    "viewpoint_expertise": EXPERTISE_NS,
    "ar_wizard_knowledge": KNOWLEDGE_NS,
    "database_analyses": ANALYSIS_NS,
    "predictive_models": MODELS_NS,
}

# Fields every imported entry must carry, per snapshot section.
SNAPSHOT_REQUIRED_FIELDS: dict[str, frozenset[str]] = {
    "viewpoint_expertise": ExpertiseRecord.__required_keys__,
    "ar_wizard_knowledge": KnowledgeRecord.__required_keys__,
    "database_analyses": AnalysisRecord.__required_keys__,
    "predictive_models": PredictiveModelRecord.__required_keys__,
}

# Timestamp fields that selection and maintenance parse, per snapshot section.
SNAPSHOT_TIMESTAMP_FIELDS: dict[str, tuple[str, ...]] = {
    "viewpoint_expertise": ("last_updated",),
    "ar_wizard_knowledge": ("created_at", "last_used"),
    "database_analyses": ("analyzed_at", "valid_until"),
    "predictive_models": ("trained_at", "last_validated"),
}


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _parse_ts(value: str) -> datetime:
    ts = datetime.fromisoformat(value)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return ts


def _record_ts(record: Mapping[str, Any], name: str) -> datetime | None:
    """Parse a timestamp field, or None (with a warning) if it is missing or malformed."""
    try:
        return _parse_ts(record[name])
    except (KeyError, TypeError, ValueError):
        logger.warning("Skipping record %s: unreadable %s", record.get("id"), name)
        return None


def _numeric_accuracy(record: Mapping[str, Any]) -> float | None:
    try:
        accuracy = record["performance"]["accuracy"]
    except (KeyError, TypeError):
        return None
    if not isinstance(accuracy, int | float) or isinstance(accuracy, bool):
        return None
    return float(accuracy)


def _accuracy(record: Mapping[str, Any]) -> float | None:
    accuracy = _numeric_accuracy(record)
    if accuracy is None:
        logger.warning("Skipping model %s: no numeric performance.accuracy", record.get("id"))
    return accuracy


def _check_snapshot_entry(section: str, entry: Mapping[str, Any]) -> None:
    if not isinstance(entry, Mapping) or not entry.get("id"):
        msg = f"Snapshot entry in {section!r} has no id"
        raise ValueError(msg)

    missing = sorted(SNAPSHOT_REQUIRED_FIELDS[section] - entry.keys())
    if missing:
        msg = f"Snapshot entry {entry['id']!r} in {section!r} is missing fields: {', '.join(missing)}"
        raise ValueError(msg)

    for name in SNAPSHOT_TIMESTAMP_FIELDS[section]:
        try:
            _parse_ts(entry[name])
        except (TypeError, ValueError):
            msg = f"Snapshot entry {entry['id']!r} in {section!r} has an invalid {name}: {entry[name]!r}"
            raise ValueError(msg) from None

    if section == "predictive_models" and _numeric_accuracy(entry) is None:
        msg = f"Snapshot entry {entry['id']!r} in {section!r} has no numeric performance.accuracy"
        raise ValueError(msg)


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex}"


@dataclass
class MaintenanceReport:
    """Outcome of a single maintenance run."""

    started_at: str
    completed_at: str | None = None
    expired_analyses_removed: int = 0
    stale_knowledge: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class KnowledgeStore:
    """Namespaced knowledge store with per-kind read side effects and selection rules.

    Args:
        db_path: SQLite database file. If None, reads MEMORY_DB_PATH from settings.
        clock: Returns the current time as an aware UTC datetime. Injectable for tests.

    Raises:
        ValueError: If the store is not configured or points at ":memory:"
                    (each operation opens its own connection, so an in-memory
                    database would not persist between calls).
    """

    def __init__(self, db_path: str | None = None, *, clock: Clock | None = None) -> None:
        if db_path is None:
            db_path = get_settings().memory_db_path
        if not db_path:
            msg = "Knowledge store not configured (MEMORY_DB_PATH is empty)"
            raise ValueError(msg)
        if db_path == ":memory:":
            msg = "KnowledgeStore needs a file-backed database, not ':memory:'"
            raise ValueError(msg)

        self._db_path = db_path
        self._clock = clock or _utcnow
        get_initialized_connection(db_path).close()

    @property
    def db_path(self) -> str:
        return self._db_path

    def _now(self) -> datetime:
        return self._clock()

    # -----------------------------------------------------------------------
    # Primitives
    # -----------------------------------------------------------------------

    def _call(
        self,
        operation: str,
        namespace: str,
        fn: Callable[..., T],
        *args: Any,
    ) -> T:
        start = time.monotonic()
        status = "error"
        try:
            conn: sqlite3.Connection = get_connection(self._db_path)
            try:
                result = fn(conn, namespace, *args)
            finally:
                conn.close()
            status = "success"
            return result
        finally:
            STORE_OPERATIONS_TOTAL.labels(namespace=namespace, operation=operation, status=status).inc()
            STORE_OPERATION_DURATION.labels(operation=operation).observe(time.monotonic() - start)

    async def _run(self, operation: str, namespace: str, fn: Callable[..., T], *args: Any) -> T:
        return await asyncio.to_thread(self._call, operation, namespace, fn, *args)

    async def put(self, namespace: str, record_id: str, record: Mapping[str, Any]) -> None:
        """Store or overwrite ``record`` under ``record_id``."""
        await self._run("put", namespace, put_record, record_id, record)

    async def get(self, namespace: str, record_id: str) -> dict[str, Any] | None:
        """Return a copy of the record, or None if absent."""
        return await self._run("get", namespace, get_record, record_id)

    async def query(self, namespace: str, predicate: Mapping[str, Any] | None = None) -> list[dict[str, Any]]:
        """Return copies of every record matching ``predicate``, in insertion order."""
        return await self._run("query", namespace, query_records, predicate)

    async def delete(self, namespace: str, record_id: str) -> bool:
        """Remove a record. Absent ids are a no-op and return False."""
        return await self._run("delete", namespace, delete_record, record_id)

    # -----------------------------------------------------------------------
    # Viewpoint expertise
    # -----------------------------------------------------------------------

    async def store_expertise(
        self,
        kind: ExpertiseKind,
        domain: ExpertiseDomain,
        content: Any,
        *,
        confidence: float,
        source: str,
        validated: bool = False,
    ) -> str:
        """Store a new expertise entry with a zero usage count. Returns its id."""
        record_id = _new_id("expertise")
        record = ExpertiseRecord(
            id=record_id,
            kind=kind,
            domain=domain,
            content=content,
            confidence=confidence,
            last_updated=self._now().isoformat(),
            source=source,
            validated=validated,
            usage_count=0,
        )
        await self.put(EXPERTISE_NS, record_id, record)
        logger.info("Stored Viewpoint expertise %s (kind=%s, domain=%s)", record_id, kind, domain)
        return record_id

    async def get_expertise(
        self,
        domain: ExpertiseDomain,
        kind: ExpertiseKind | None = None,
    ) -> list[ExpertiseRecord]:
        """Return expertise for a domain, bumping usage_count on every record returned.

        Each increment is written back before this call returns, so repeated
        identical calls are not idempotent.
        """
        predicate: dict[str, Any] = {"domain": domain}
        if kind:
            predicate["kind"] = kind

        records = cast(list[ExpertiseRecord], await self.query(EXPERTISE_NS, predicate))
        for record in records:
            record["usage_count"] += 1
            await self.put(EXPERTISE_NS, record["id"], record)

        logger.debug("Retrieved %d expertise record(s) for domain=%s kind=%s", len(records), domain, kind)
        return records

    async def search_expertise(self, text: str, domain: ExpertiseDomain | None = None) -> list[ExpertiseRecord]:
        """Case-insensitive substring search over expertise content and source.

        Read-only: usage counts are not touched.
        """
        predicate = {"domain": domain} if domain else None
        records = cast(list[ExpertiseRecord], await self.query(EXPERTISE_NS, predicate))
        needle = text.lower()
        return [
            r
            for r in records
            if needle in json.dumps(r.get("content"), ensure_ascii=False).lower()
            or needle in str(r.get("source", "")).lower()
        ]

    # -----------------------------------------------------------------------
    # AR Wizard knowledge
    # -----------------------------------------------------------------------

    async def store_knowledge(
        self,
        category: KnowledgeCategory,
        description: str,
        implementation: Any,
        *,
        accuracy: float | None = None,
        performance: KnowledgePerformance | None = None,
        dependencies: Iterable[str] = (),
    ) -> str:
        """Store a knowledge entry. created_at and last_used both start at now."""
        record_id = _new_id("knowledge")
        now = self._now().isoformat()
        record = KnowledgeRecord(
            id=record_id,
            category=category,
            description=description,
            implementation=implementation,
            accuracy=accuracy,
            performance=performance,
            dependencies=list(dependencies),
            created_at=now,
            last_used=now,
        )
        await self.put(KNOWLEDGE_NS, record_id, record)
        logger.info("Stored AR Wizard knowledge %s (category=%s): %s", record_id, category, description)
        return record_id

    async def get_knowledge(self, category: KnowledgeCategory) -> list[KnowledgeRecord]:
        """Return knowledge in a category, stamping last_used on every record returned."""
        records = cast(list[KnowledgeRecord], await self.query(KNOWLEDGE_NS, {"category": category}))
        now = self._now().isoformat()
        for record in records:
            record["last_used"] = now
            await self.put(KNOWLEDGE_NS, record["id"], record)

        logger.debug("Retrieved %d knowledge record(s) for category=%s", len(records), category)
        return records

    async def find_stale_knowledge(self, max_idle_days: int | None = None) -> list[KnowledgeRecord]:
        """Knowledge whose last_used is older than the archive threshold."""
        if max_idle_days is None:
            max_idle_days = get_settings().knowledge_archive_days
        cutoff = self._now() - timedelta(days=max_idle_days)
        records = cast(list[KnowledgeRecord], await self.query(KNOWLEDGE_NS))
        stale: list[KnowledgeRecord] = []
        for record in records:
            last_used = _record_ts(record, "last_used")
            if last_used is not None and last_used < cutoff:
                stale.append(record)
        return stale

    # -----------------------------------------------------------------------
    # Database analyses
    # -----------------------------------------------------------------------

    async def store_analysis(
        self,
        database: DatabaseName,
        analysis_kind: AnalysisKind,
        results: Any,
        *,
        metrics: AnalysisMetrics,
        recommendations: Iterable[str] = (),
        valid_for: timedelta | None = None,
    ) -> str:
        """Store an analysis that stays live for ``valid_for`` (default from settings).

        Raises:
            ValueError: If ``valid_for`` is not positive.
        """
        if valid_for is None:
            valid_for = timedelta(hours=get_settings().analysis_validity_hours)
        if valid_for <= timedelta(0):
            msg = f"Analysis validity must be positive, got {valid_for}"
            raise ValueError(msg)

        record_id = _new_id("analysis")
        analyzed_at = self._now()
        record = AnalysisRecord(
            id=record_id,
            database=database,
            analysis_kind=analysis_kind,
            results=results,
            metrics=metrics,
            recommendations=list(recommendations),
            analyzed_at=analyzed_at.isoformat(),
            valid_until=(analyzed_at + valid_for).isoformat(),
        )
        await self.put(ANALYSIS_NS, record_id, record)
        logger.info("Stored database analysis %s (database=%s, kind=%s)", record_id, database, analysis_kind)
        return record_id

    async def get_analysis(
        self,
        database: DatabaseName,
        analysis_kind: AnalysisKind | None = None,
    ) -> list[AnalysisRecord]:
        """Return live analyses only; expired ones stay in storage until swept."""
        predicate: dict[str, Any] = {"database": database}
        if analysis_kind:
            predicate["analysis_kind"] = analysis_kind

        records = cast(list[AnalysisRecord], await self.query(ANALYSIS_NS, predicate))
        now = self._now()
        live: list[AnalysisRecord] = []
        for record in records:
            valid_until = _record_ts(record, "valid_until")
            if valid_until is not None and valid_until > now and _record_ts(record, "analyzed_at") is not None:
                live.append(record)
        return live

    async def get_latest_analysis(
        self,
        database: DatabaseName,
        analysis_kind: AnalysisKind,
    ) -> AnalysisRecord | None:
        """Most recent live analysis. On equal analyzed_at the earliest stored wins."""
        analyses = await self.get_analysis(database, analysis_kind)
        if not analyses:
            return None
        analyses.sort(key=lambda a: _parse_ts(a["analyzed_at"]), reverse=True)
        return analyses[0]

    async def sweep_expired_analyses(self) -> int:
        """Physically delete every analysis with valid_until <= now. Returns the count removed."""
        records = cast(list[AnalysisRecord], await self.query(ANALYSIS_NS))
        now = self._now()
        removed = 0
        for record in records:
            valid_until = _record_ts(record, "valid_until")
            if valid_until is None or valid_until > now:
                continue
            if await self.delete(ANALYSIS_NS, record["id"]):
                removed += 1

        if removed:
            ANALYSES_SWEPT_TOTAL.inc(removed)
            logger.info("Removed %d expired database analyses", removed)
        return removed

    # -----------------------------------------------------------------------
    # Predictive models
    # -----------------------------------------------------------------------

    async def store_model(
        self,
        name: str,
        type: ModelType,  # noqa: A002
        algorithm: str,
        *,
        features: Iterable[str],
        training_data: TrainingData,
        performance: ModelPerformance,
        model: Any,
        version: str,
    ) -> str:
        """Store predictive-model metadata. trained_at and last_validated start at now."""
        record_id = _new_id("model")
        now = self._now().isoformat()
        record = PredictiveModelRecord(
            id=record_id,
            name=name,
            type=type,
            algorithm=algorithm,
            features=list(features),
            training_data=training_data,
            performance=performance,
            model=model,
            version=version,
            trained_at=now,
            last_validated=now,
        )
        await self.put(MODELS_NS, record_id, record)
        logger.info(
            "Stored predictive model %s (name=%s, type=%s, accuracy=%.3f)",
            record_id,
            name,
            type,
            performance["accuracy"],
        )
        return record_id

    async def get_models(self, type: ModelType, name: str | None = None) -> list[PredictiveModelRecord]:  # noqa: A002
        """Models of a type, optionally narrowed by name, in insertion order."""
        predicate: dict[str, Any] = {"type": type}
        if name:
            predicate["name"] = name
        return cast(list[PredictiveModelRecord], await self.query(MODELS_NS, predicate))

    async def get_best_model(self, type: ModelType) -> PredictiveModelRecord | None:  # noqa: A002
        """Highest-accuracy model of a type. On equal accuracy the earliest stored wins."""
        ranked = [(accuracy, m) for m in await self.get_models(type) if (accuracy := _accuracy(m)) is not None]
        if not ranked:
            return None
        ranked.sort(key=lambda pair: pair[0], reverse=True)
        return ranked[0][1]

    async def update_model_performance(self, model_id: str, performance: ModelPerformance) -> bool:
        """Replace a model's performance and bump last_validated.

        Returns False (and writes nothing) if the model does not exist.
        """
        model = await self.get(MODELS_NS, model_id)
        if model is None:
            logger.warning("Cannot update performance: model %s not found", model_id)
            return False

        model["performance"] = performance
        model["last_validated"] = self._now().isoformat()
        await self.put(MODELS_NS, model_id, model)
        logger.info("Updated model %s performance (accuracy=%.3f)", model_id, performance["accuracy"])
        return True

    # -----------------------------------------------------------------------
    # Shared context
    # -----------------------------------------------------------------------

    async def put_context(self, key: str, data: Any, ttl: int | None = None) -> None:
        """Store shared context for ``ttl`` milliseconds (default from settings)."""
        if ttl is None:
            ttl = get_settings().context_default_ttl_ms
        entry = SharedContextEntry(key=key, data=data, timestamp=self._now().isoformat(), ttl=ttl)
        await self.put(CONTEXT_NS, key, entry)
        logger.info("Stored shared context %s (ttl=%dms)", key, ttl)

    async def get_context(self, key: str) -> Any | None:
        """Return the context payload, or None if absent or expired.

        An entry older than its TTL is deleted by the read that observes it.
        """
        entry = await self.get(CONTEXT_NS, key)
        if entry is None:
            return None

        age = self._now() - _parse_ts(entry["timestamp"])
        if age > timedelta(milliseconds=entry["ttl"]):
            await self.delete(CONTEXT_NS, key)
            CONTEXT_EXPIRED_TOTAL.inc()
            logger.debug("Shared context %s expired after %s", key, age)
            return None

        return entry["data"]

    # -----------------------------------------------------------------------
    # Export / import
    # -----------------------------------------------------------------------

    async def export_all(self) -> KnowledgeSnapshot:
        """Full, unfiltered contents of the four primary namespaces. No side effects."""
        sections: dict[str, list[dict[str, Any]]] = {}
        for section, namespace in SNAPSHOT_SECTIONS.items():
            sections[section] = await self.query(namespace)

        snapshot = cast(KnowledgeSnapshot, {**sections, "exported_at": self._now().isoformat()})
        logger.info(
            "Knowledge base exported: %s",
            ", ".join(f"{section}={len(records)}" for section, records in sections.items()),
        )
        return snapshot

    async def import_all(self, snapshot: Mapping[str, Any]) -> dict[str, int]:
        """Merge a snapshot into the store by id. Records not in the snapshot are untouched.

        Missing sections count as empty.

        Raises:
            ValueError: If any snapshot entry has no id, lacks a field of its record
                        kind, or carries an unparseable timestamp. Nothing is written
                        in that case.
        """
        batches: dict[str, list[Mapping[str, Any]]] = {}
        for section in SNAPSHOT_SECTIONS:
            entries = list(snapshot.get(section) or [])
            for entry in entries:
                _check_snapshot_entry(section, entry)
            batches[section] = entries

        counts: dict[str, int] = {}
        for section, entries in batches.items():
            namespace = SNAPSHOT_SECTIONS[section]
            for entry in entries:
                await self.put(namespace, str(entry["id"]), entry)
            counts[section] = len(entries)

        logger.info("Knowledge base imported: %s", ", ".join(f"{s}={n}" for s, n in counts.items()))
        return counts

    # -----------------------------------------------------------------------
    # Maintenance
    # -----------------------------------------------------------------------

    async def perform_maintenance(self, trigger: str = "manual") -> MaintenanceReport:
        """Sweep expired analyses and report knowledge eligible for archival.

        Failures are logged and collected on the report rather than raised.
        """
        start = time.monotonic()
        report = MaintenanceReport(started_at=self._now().isoformat())
        logger.info("Performing knowledge store maintenance (trigger=%s)", trigger)

        try:
            report.expired_analyses_removed = await self.sweep_expired_analyses()
        except Exception as e:
            logger.exception("Expired analysis sweep failed")
            report.errors.append(f"sweep: {e}")

        try:
            stale = await self.find_stale_knowledge()
            report.stale_knowledge = [k["id"] for k in stale]
            # Archival storage does not exist yet; stale items are only reported.
            logger.info("Found %d knowledge item(s) eligible for archival", len(stale))
        except Exception as e:
            logger.exception("Stale knowledge scan failed")
            report.errors.append(f"archive: {e}")

        report.completed_at = self._now().isoformat()
        status = "success" if report.ok else "error"
        MAINTENANCE_RUNS_TOTAL.labels(trigger=trigger, status=status).inc()
        MAINTENANCE_DURATION.observe(time.monotonic() - start)
        logger.info(
            "Maintenance completed: %d analyses removed, %d stale knowledge, %d error(s)",
            report.expired_analyses_removed,
            len(report.stale_knowledge),
            len(report.errors),
        )
        return report

    async def stats(self) -> dict[str, int]:
        """Record counts per namespace."""
        counts: dict[str, int] = {}
        for namespace in ALL_NAMESPACES:
            counts[namespace] = await self._run("count", namespace, count_records)
            NAMESPACE_RECORDS.labels(namespace=namespace).set(counts[namespace])
        return counts
