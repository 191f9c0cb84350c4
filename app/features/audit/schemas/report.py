from typing import Any, Dict, List, Optional, Union

from pydantic import Field
from pydantic.alias_generators import to_camel

from app.features.audit.schemas.analysis import Finding
from app.features.audit.schemas.scan import (
    CamelModel,
    DetectedScript,
    InjectedTag,
    NetworkRequest,
    PerformanceMetrics,
)


class ReportSummary(CamelModel):
    url: str
    timestamp: str
    total_scripts: int
    total_tags: int
    total_network_requests: int


class ReportAnalysis(CamelModel):
    summary: Dict[str, Any] = Field(default_factory=dict)
    findings: List[Finding] = Field(default_factory=list)
    processed_tags: List[Dict[str, Any]] = Field(default_factory=list)
    performance_scores: Dict[str, Any] = Field(default_factory=dict)


class ReportMetadata(CamelModel):
    processed_by_analysis_service: bool = True
    analysis_timestamp: Optional[Union[str, float]] = None
    processing_time_ms: Optional[float] = None
    unmatched_tag_names: List[str] = Field(default_factory=list)


class Report(CamelModel):
    """Persisted audit report. Built once per successful pipeline run."""
    summary: ReportSummary
    tags: List[InjectedTag]
    performance: PerformanceMetrics
    scripts: List[DetectedScript]
    network: List[NetworkRequest]
    health_score: int
    analysis: ReportAnalysis
    metadata: ReportMetadata

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        frozen = True

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")
