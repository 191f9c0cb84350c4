"""
Audit Schemas

Request and response models for the audit API endpoints.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, field_validator

from app.platform.utils.url_validator import validate_url


class AuditSubmitRequest(BaseModel):
    """Request to audit a single page."""
    url: str
    user_id: Optional[str] = None

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        is_valid, normalized_url, error = validate_url(value)
        if not is_valid:
            raise ValueError(error)
        return normalized_url

    class Config:
        json_schema_extra = {
            "example": {
                "url": "https://example.com",
            }
        }


class AuditSubmitResponse(BaseModel):
    job_id: str
    status: str
    message: str


class AuditStatusResponse(BaseModel):
    job_id: str
    url: str
    status: str
    updated_at: datetime
    error_message: Optional[str] = None


class AuditResultsResponse(BaseModel):
    job_id: str
    url: str
    status: str
    results: Dict[str, Any]
    created_at: datetime
    updated_at: datetime


class AuditHistoryItem(BaseModel):
    job_id: str
    url: str
    status: str
    health_score: Optional[int] = None
    created_at: datetime
    updated_at: datetime


class AuditHistoryResponse(BaseModel):
    audits: List[AuditHistoryItem]
    count: int
