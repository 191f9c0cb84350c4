"""
Scan Schemas

Value objects produced by the scan engine. Field names are snake_case in
Python and camelCase on the wire, which is what the analysis service expects.
"""
from typing import List, Literal, Optional

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for wire models serialised with camelCase keys."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class DetectedScript(CamelModel):
    src: str = ""
    type: Literal["script", "inline"] = "script"
    location: Literal["head", "body"] = "body"
    is_async: bool = Field(default=False, alias="async")
    defer: bool = False


class InjectedTag(CamelModel):
    """A marketing/analytics tag identifier found in the page source."""
    type: str  # GTM, GA4, MetaPixel, LinkedIn, TikTok, Twitter, Pinterest
    id: str
    code: Optional[str] = None
    status: str = "found"


class NetworkRequest(CamelModel):
    url: str
    type: str
    initiator: Optional[str] = None


class PerformanceMetrics(CamelModel):
    load_time_ms: float = 0
    dom_content_loaded_ms: float = 0
    first_contentful_paint_ms: Optional[float] = None
    largest_contentful_paint_ms: Optional[float] = None
    cumulative_layout_shift: Optional[float] = None


class ScanResult(CamelModel):
    """Everything the browser scan collected for one URL."""
    url: str
    timestamp: str
    detected_scripts: List[DetectedScript] = Field(default_factory=list)
    injected_tags: List[InjectedTag] = Field(default_factory=list)
    network_requests: List[NetworkRequest] = Field(default_factory=list)
    performance_metrics: PerformanceMetrics = Field(default_factory=PerformanceMetrics)
    errors: Optional[List[str]] = None

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    def to_payload(self) -> dict:
        """JSON body for the analysis service."""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)
