from typing import Any, Dict, List, Optional, Union

from pydantic import Field, model_validator
from pydantic.alias_generators import to_camel

from app.features.audit.schemas.scan import CamelModel


class Finding(CamelModel):
    severity: Optional[str] = None  # high / medium / low
    type: Optional[str] = None  # issue / warning, used when severity is absent
    description: Optional[str] = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        extra = "allow"


class AnalysisResult(CamelModel):
    """Response body of the remote analysis service."""
    audit_findings: List[Finding] = Field(default_factory=list)
    performance_scores: Dict[str, Any] = Field(default_factory=dict)
    processed_tags: List[Dict[str, Any]] = Field(default_factory=list)
    audit_summary: Dict[str, Any] = Field(default_factory=dict)
    analysis_timestamp: Optional[Union[str, float]] = None
    processing_time_ms: Optional[float] = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        extra = "allow"

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        # The service sends explicit nulls for empty sections
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None}
        return data
