from sqlalchemy import JSON, Column, Enum, Index, String, Text
import enum

from app.platform.db.base import BaseModel


class AuditJobStatus(enum.Enum):
    """Audit job status state machine"""
    pending = "pending"
    scanning = "scanning"
    analyzing = "analyzing"
    completed = "completed"
    failed = "failed"


TERMINAL_STATUSES = frozenset({AuditJobStatus.completed, AuditJobStatus.failed})


class AuditJob(BaseModel):

    __tablename__ = "audit_jobs"

    # Owner of the audit; authentication lives outside this service
    user_id = Column(String, nullable=True, index=True)

    url = Column(String(2048), nullable=False)

    status = Column(Enum(AuditJobStatus), default=AuditJobStatus.pending, nullable=False, index=True)

    # Final processed report (see services/report.py)
    results = Column(JSON, nullable=True)

    # Raw payload returned by the analysis service
    analysis_data = Column(JSON, nullable=True)

    error_message = Column(Text, nullable=True)

    __table_args__ = (
        Index('idx_audit_jobs_user_created', 'user_id', 'created_at'),
    )
