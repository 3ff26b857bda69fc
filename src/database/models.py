"""SQLAlchemy models for the metrics time series."""

from sqlalchemy import Column, DateTime, Float, Index, Integer, JSON, String
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


class MetricSnapshotRecord(Base):
    """
    One persisted collection tick.

    ``document`` holds the full camelCase snapshot. The scalar columns
    duplicate the fields that are filtered or sorted on.
    """

    __tablename__ = "metric_snapshots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    timestamp = Column(DateTime, nullable=False, index=True)
    overall_status = Column(String(16), nullable=False, index=True)
    cpu_usage = Column(Float, nullable=False, index=True)
    memory_usage = Column(Float, nullable=False, index=True)
    db_query_time = Column(Float, nullable=False, index=True)
    api_response_time = Column(Float, nullable=False, index=True)
    error_total = Column(Integer, nullable=False, index=True)
    document = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_metric_snapshots_timestamp_status", "timestamp", "overall_status"),
        Index("ix_metric_snapshots_timestamp_cpu", "timestamp", "cpu_usage"),
        Index("ix_metric_snapshots_timestamp_response", "timestamp", "api_response_time"),
    )

    def __repr__(self):
        return f"<MetricSnapshotRecord(id={self.id}, timestamp={self.timestamp}, status={self.overall_status})>"
