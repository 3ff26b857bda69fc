"""Repository for the append-only metrics time series."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import sessionmaker
from sqlalchemy.exc import SQLAlchemyError

from src.monitoring.errors import InvalidQueryError
from src.monitoring.schemas import MetricSnapshot
from .database import session_scope
from .models import MetricSnapshotRecord

logger = logging.getLogger(__name__)

# Sortable document paths and their columns
SORT_FIELDS = {
    "timestamp": MetricSnapshotRecord.timestamp,
    "server.cpu.usage": MetricSnapshotRecord.cpu_usage,
    "server.memory.usagePercentage": MetricSnapshotRecord.memory_usage,
    "database.queryTime": MetricSnapshotRecord.db_query_time,
    "api.averageResponseTime": MetricSnapshotRecord.api_response_time,
    "errorMetrics.total": MetricSnapshotRecord.error_total,
    "healthStatus.overall": MetricSnapshotRecord.overall_status,
}

SORT_ORDERS = ("asc", "desc")


@dataclass(frozen=True)
class SaveResult:
    """Outcome of a snapshot write."""
    ok: bool
    error: Optional[str] = None


@dataclass
class MetricsPage:
    """One page of a filtered, sorted history query."""
    items: List[MetricSnapshot]
    total: int
    limit: int
    skip: int

    @property
    def has_more(self) -> bool:
        return self.skip + self.limit < self.total


def _to_record(snapshot: MetricSnapshot) -> MetricSnapshotRecord:
    return MetricSnapshotRecord(
        timestamp=snapshot.timestamp,
        overall_status=snapshot.health_status.overall.value,
        cpu_usage=snapshot.server.cpu.usage,
        memory_usage=snapshot.server.memory.usage_percentage,
        db_query_time=snapshot.database.query_time,
        api_response_time=snapshot.api.average_response_time,
        error_total=snapshot.error_metrics.total,
        document=snapshot.to_document()
    )


def _to_snapshot(record: MetricSnapshotRecord) -> MetricSnapshot:
    return MetricSnapshot.from_document(record.document)


class MetricsRepository:
    """Append-only persistence boundary for metric snapshots."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def save(self, snapshot: MetricSnapshot) -> SaveResult:
        """Insert a snapshot. Failures are logged and reported, never raised."""
        try:
            with session_scope(self.session_factory) as db:
                db.add(_to_record(snapshot))
            return SaveResult(ok=True)
        except SQLAlchemyError as e:
            logger.error(f"Error saving system metrics: {e}")
            return SaveResult(ok=False, error=str(e))

    def latest(self) -> Optional[MetricSnapshot]:
        """Most recent snapshot, or None when the series is empty."""
        with session_scope(self.session_factory) as db:
            record = db.query(MetricSnapshotRecord).order_by(
                MetricSnapshotRecord.timestamp.desc(),
                MetricSnapshotRecord.id.desc()
            ).first()
            return _to_snapshot(record) if record else None

    def range_since(self, start: datetime) -> List[MetricSnapshot]:
        """All snapshots with ``timestamp >= start``, oldest first."""
        with session_scope(self.session_factory) as db:
            records = db.query(MetricSnapshotRecord).filter(
                MetricSnapshotRecord.timestamp >= start
            ).order_by(
                MetricSnapshotRecord.timestamp.asc(),
                MetricSnapshotRecord.id.asc()
            ).all()
            return [_to_snapshot(r) for r in records]

    def query(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 100,
        skip: int = 0,
        sort_by: str = "timestamp",
        sort_order: str = "desc"
    ) -> MetricsPage:
        """Filtered, sorted, paginated fetch with the unpaginated total."""
        column = SORT_FIELDS.get(sort_by)
        if column is None:
            raise InvalidQueryError(
                f"Invalid sortBy '{sort_by}'. Use one of: {', '.join(SORT_FIELDS)}"
            )
        if sort_order not in SORT_ORDERS:
            raise InvalidQueryError(f"Invalid sortOrder '{sort_order}'. Use 'asc' or 'desc'")
        if limit < 0 or skip < 0:
            raise InvalidQueryError("limit and skip must be non-negative")

        with session_scope(self.session_factory) as db:
            query = db.query(MetricSnapshotRecord)
            if start_date:
                query = query.filter(MetricSnapshotRecord.timestamp >= start_date)
            if end_date:
                query = query.filter(MetricSnapshotRecord.timestamp <= end_date)

            total = query.with_entities(func.count(MetricSnapshotRecord.id)).scalar() or 0

            if sort_order == "desc":
                query = query.order_by(column.desc(), MetricSnapshotRecord.id.desc())
            else:
                query = query.order_by(column.asc(), MetricSnapshotRecord.id.asc())

            records = query.offset(skip).limit(limit).all()
            return MetricsPage(
                items=[_to_snapshot(r) for r in records],
                total=total,
                limit=limit,
                skip=skip
            )

    def delete_older_than(self, cutoff: datetime) -> int:
        """Delete snapshots older than ``cutoff``; returns the number removed."""
        with session_scope(self.session_factory) as db:
            deleted = db.query(MetricSnapshotRecord).filter(
                MetricSnapshotRecord.timestamp < cutoff
            ).delete(synchronize_session=False)
        if deleted:
            logger.info(f"Purged {deleted} metric snapshots older than {cutoff.isoformat()}")
        return deleted
