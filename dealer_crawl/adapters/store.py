"""
Target registry and crawl-run audit store (SQLAlchemy).

Audit rows are keyed by (run_date, target_slug). Writing a row for a key
that already exists replaces it: same-day reruns are expected and the last
writer wins.
"""
from datetime import date, datetime, timedelta
from typing import Callable, Iterable, List, Optional, TypeVar

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    select,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from dealer_crawl.config import config
from dealer_crawl.models.records import CrawlRunRecord
from dealer_crawl.models.target import (
    CrawlTarget,
    ExtractionStrategy,
    Priority,
    ValidationStatus,
)
from dealer_crawl.utils.logger import LayerLogger

R = TypeVar("R")


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class TargetRow(Base):
    """Crawl target (dealer trap)."""

    __tablename__ = "dealer_traps"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    slug: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    fetch_url: Mapped[str] = mapped_column(Text, nullable=False)
    suburb: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    state: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    postcode: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    region: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    extraction_strategy: Mapped[str] = mapped_column(String(32), nullable=False, default="unsupported")
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_anchor: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="normal")
    require_stable_id: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    validation_status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    validation_run_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    consecutive_failures: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    consecutive_successes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_vehicle_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    last_crawl_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_fail_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    disabled_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    disabled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    operator_disabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class CrawlRunRow(Base):
    """Per-day crawl audit row."""

    __tablename__ = "trap_crawl_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    run_date: Mapped[date] = mapped_column(Date, nullable=False)
    target_slug: Mapped[str] = mapped_column(String(128), nullable=False)
    vehicles_found: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    vehicles_ingested: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    vehicles_dropped: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    raw_candidates: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    drop_reasons: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    health_alert: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (UniqueConstraint("run_date", "target_slug", name="uq_crawl_run_date_slug"),)


TARGET_FIELDS = [c for c in CrawlTarget.model_fields]
RUN_FIELDS = [c for c in CrawlRunRecord.model_fields]


def _target_from_row(row: TargetRow) -> CrawlTarget:
    data = {name: getattr(row, name) for name in TARGET_FIELDS}
    data["extraction_strategy"] = ExtractionStrategy(row.extraction_strategy)
    data["priority"] = Priority(row.priority)
    data["validation_status"] = ValidationStatus(row.validation_status)
    return CrawlTarget(**data)


def _target_to_columns(target: CrawlTarget) -> dict:
    data = target.model_dump()
    data["extraction_strategy"] = target.extraction_strategy.value
    data["priority"] = target.priority.value
    data["validation_status"] = target.validation_status.value
    return data


LIFECYCLE_FIELDS = (
    "enabled",
    "validation_status",
    "validation_run_count",
    "consecutive_failures",
    "consecutive_successes",
    "last_vehicle_count",
    "last_crawl_at",
    "last_fail_reason",
    "disabled_reason",
    "disabled_at",
)


def _write_lifecycle(row: TargetRow, target: CrawlTarget):
    columns = _target_to_columns(target)
    for key in LIFECYCLE_FIELDS:
        setattr(row, key, columns[key])


def _run_from_row(row: CrawlRunRow) -> CrawlRunRecord:
    data = {name: getattr(row, name) for name in RUN_FIELDS}
    data["drop_reasons"] = dict(row.drop_reasons or {})
    return CrawlRunRecord(**data)


class CrawlStore:
    """
    Target registry and audit store over one SQLAlchemy engine.

    Each method runs in its own short transaction.
    """

    def __init__(self, database_url: Optional[str] = None, echo: bool = False):
        self.database_url = database_url or config.DATABASE_URL
        engine_kwargs = {"echo": echo, "future": True}
        if self.database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
        if self.database_url in ("sqlite://", "sqlite:///:memory:"):
            engine_kwargs["poolclass"] = StaticPool
        self.engine = create_engine(self.database_url, **engine_kwargs)
        self.Session = sessionmaker(bind=self.engine, expire_on_commit=False)
        self.logger = LayerLogger("store")

    def create_tables(self):
        Base.metadata.create_all(self.engine)

    def close(self):
        self.engine.dispose()

    # =========================================================================
    # TARGET REGISTRY
    # =========================================================================

    def register_target(self, target: CrawlTarget) -> CrawlTarget:
        """Insert or replace a target definition (operator registration)."""
        with self.Session.begin() as session:
            row = session.scalar(select(TargetRow).where(TargetRow.slug == target.slug))
            if row is None:
                row = TargetRow(slug=target.slug)
                session.add(row)
            for key, value in _target_to_columns(target).items():
                setattr(row, key, value)
        return target

    def get_target(self, slug: str) -> Optional[CrawlTarget]:
        with self.Session() as session:
            row = session.scalar(select(TargetRow).where(TargetRow.slug == slug))
            return _target_from_row(row) if row else None

    def list_targets(
        self,
        enabled: Optional[bool] = None,
        statuses: Optional[Iterable[ValidationStatus]] = None,
        slugs: Optional[Iterable[str]] = None,
        max_validation_runs: Optional[int] = None,
    ) -> List[CrawlTarget]:
        """List targets filtered by enabled flag, validation status and slug list."""
        query = select(TargetRow)
        if enabled is not None:
            query = query.where(TargetRow.enabled == enabled)
        if statuses is not None:
            query = query.where(TargetRow.validation_status.in_([s.value for s in statuses]))
        if slugs is not None:
            query = query.where(TargetRow.slug.in_(list(slugs)))
        if max_validation_runs is not None:
            query = query.where(TargetRow.validation_run_count < max_validation_runs)
        query = query.order_by(TargetRow.slug)

        with self.Session() as session:
            return [_target_from_row(row) for row in session.scalars(query)]

    def save_target_state(self, target: CrawlTarget) -> CrawlTarget:
        """
        Persist the lifecycle fields produced by the validation state machine.

        Operator-owned fields (URL, strategy, anchor flag, ...) are left as
        stored.
        """
        with self.Session.begin() as session:
            row = self._locked_target_row(session, target.slug)
            _write_lifecycle(row, target)
        return target

    def apply_transition(self, slug: str, apply: Callable[[CrawlTarget], R]) -> R:
        """
        Read the current target, apply a lifecycle transition and persist it,
        all in one transaction.

        `apply` receives the freshly read target and returns an object whose
        `target` attribute holds the updated copy. Changes an operator made
        since the target was selected (such as a manual disable) are the
        input to the transition rather than being overwritten.
        """
        with self.Session.begin() as session:
            row = self._locked_target_row(session, slug)
            result = apply(_target_from_row(row))
            _write_lifecycle(row, result.target)
        return result

    def _locked_target_row(self, session, slug: str) -> TargetRow:
        row = session.scalar(select(TargetRow).where(TargetRow.slug == slug).with_for_update())
        if row is None:
            raise KeyError(f"Unknown target: {slug}")
        return row

    # =========================================================================
    # AUDIT STORE
    # =========================================================================

    def upsert_run(self, record: CrawlRunRecord) -> CrawlRunRecord:
        """Insert or replace the audit row for (run_date, target_slug)."""
        with self.Session.begin() as session:
            row = session.scalar(
                select(CrawlRunRow).where(
                    CrawlRunRow.run_date == record.run_date,
                    CrawlRunRow.target_slug == record.target_slug,
                )
            )
            if row is None:
                row = CrawlRunRow(run_date=record.run_date, target_slug=record.target_slug)
                session.add(row)
            for key, value in record.model_dump().items():
                setattr(row, key, value)

        self.logger.log_action(
            "upsert_run",
            "completed",
            target=record.target_slug,
            run_date=record.run_date.isoformat(),
            vehicles_found=record.vehicles_found,
            vehicles_ingested=record.vehicles_ingested,
        )
        return record

    def get_run(self, target_slug: str, run_date: date) -> Optional[CrawlRunRecord]:
        with self.Session() as session:
            row = session.scalar(
                select(CrawlRunRow).where(
                    CrawlRunRow.run_date == run_date,
                    CrawlRunRow.target_slug == target_slug,
                )
            )
            return _run_from_row(row) if row else None

    def list_runs(self, target_slug: str, start: date, end: date) -> List[CrawlRunRecord]:
        """Runs for a target with start <= run_date <= end, newest first."""
        query = (
            select(CrawlRunRow)
            .where(
                CrawlRunRow.target_slug == target_slug,
                CrawlRunRow.run_date >= start,
                CrawlRunRow.run_date <= end,
            )
            .order_by(CrawlRunRow.run_date.desc())
        )
        with self.Session() as session:
            return [_run_from_row(row) for row in session.scalars(query)]

    def recent_runs(
        self,
        target_slug: str,
        before: date,
        days: Optional[int] = None,
        limit: int = 7,
    ) -> List[CrawlRunRecord]:
        """
        Baseline history for the health monitor.

        Runs in the `days` days before `before`, excluding `before` itself,
        newest first.
        """
        days = config.HEALTH_LOOKBACK_DAYS if days is None else days
        runs = self.list_runs(target_slug, before - timedelta(days=days), before - timedelta(days=1))
        return runs[:limit]
