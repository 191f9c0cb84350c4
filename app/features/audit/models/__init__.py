"""
Audit models package.
"""
from app.features.audit.models.audit_job import AuditJob, AuditJobStatus

__all__ = ["AuditJob", "AuditJobStatus"]
