from sqlalchemy import Column, DateTime, Index, JSON, String
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.sql import func
from core.database import Base
import uuid


# Study ids come from the external studies table (uuid in Postgres); they travel
# through the engine as strings, so the column round-trips plain str on every dialect.
StudyIdType = String(36).with_variant(UUID(as_uuid=False), "postgresql")
PayloadType = JSON().with_variant(JSONB(), "postgresql")


class StudyWorkloadSnapshot(Base):
    """
    Cached WorkloadResponse for one study.

    One row per study, overwritten in place by an upsert keyed on study_id.
    A row is fresh while expires_at is in the future; missing or expired rows
    are recomputed on the next read.
    """
    __tablename__ = "study_workload_snapshots"

    id = Column(StudyIdType, primary_key=True, default=lambda: str(uuid.uuid4()))
    study_id = Column(StudyIdType, nullable=False, unique=True)

    # Full WorkloadResponse as serialized on the wire (camelCase keys)
    payload = Column(PayloadType, nullable=False)

    computed_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("idx_workload_snapshots_expires_at", "expires_at"),
    )
