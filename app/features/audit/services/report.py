"""
Report assembly and health scoring.

Everything here is pure: the same (ScanResult, AnalysisResult) pair always
produces the same Report.
"""
import math
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from app.features.audit.schemas.analysis import AnalysisResult, Finding
from app.features.audit.schemas.report import (
    Report,
    ReportAnalysis,
    ReportMetadata,
    ReportSummary,
)
from app.features.audit.schemas.scan import DetectedScript, ScanResult

TRACKING_SCRIPT_MARKERS = (
    "googletagmanager",
    "google-analytics",
    "facebook",
    "linkedin",
    "tiktok",
)
MAX_REPORT_NETWORK_REQUESTS = 50

SEVERITY_PENALTIES = {"high": 20, "medium": 12, "low": 5}
TYPE_PENALTIES = {"issue": 10, "warning": 6}

# (threshold, penalty), highest threshold first; first match wins
LOAD_TIME_PENALTIES = ((8000, 25), (5000, 15), (3500, 8), (2500, 4))
LCP_PENALTIES = ((6000, 15), (4000, 10), (2500, 5))
CLS_PENALTIES = ((0.4, 10), (0.25, 6), (0.1, 3))

TAG_BONUS_POINTS = {"ga4": 2, "gtm": 1, "meta_pixel": 1, "linkedin_or_twitter": 1}
MAX_TAG_BONUS = 5

# Normalised tag name/type -> bonus group. The analysis service is not
# consistent about filling `name` vs `type`, so both vocabularies are listed.
# A None group means "known tag, no bonus".
TAG_BONUS_ALIASES: Dict[str, Optional[str]] = {
    "googleanalytics4": "ga4",
    "ga4": "ga4",
    "googletagmanager": "gtm",
    "gtm": "gtm",
    "metapixel": "meta_pixel",
    "facebookpixel": "meta_pixel",
    "linkedininsighttag": "linkedin_or_twitter",
    "linkedin": "linkedin_or_twitter",
    "twitterpixel": "linkedin_or_twitter",
    "twitter": "linkedin_or_twitter",
    "tiktok": None,
    "tiktokpixel": None,
    "pinterest": None,
    "pinteresttag": None,
}


def normalize_tag_key(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    return re.sub(r"[^a-z0-9]", "", value.lower())


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _threshold_penalty(value: Optional[float], table: Sequence[Tuple[float, int]]) -> int:
    if value is None:
        return 0
    for threshold, penalty in table:
        if value > threshold:
            return penalty
    return 0


def _finding_penalty(finding: Finding) -> int:
    if finding.severity in SEVERITY_PENALTIES:
        return SEVERITY_PENALTIES[finding.severity]
    return TYPE_PENALTIES.get(finding.type or "", 0)


def match_tag_bonuses(
    tags: Iterable[Mapping[str, Any]],
    aliases: Mapping[str, Optional[str]] = TAG_BONUS_ALIASES,
) -> Tuple[set, List[str]]:
    """
    Resolve processed tags to bonus groups.

    Returns (matched groups, names of tags that matched no known alias).
    """
    groups = set()
    unmatched = []
    for tag in tags:
        keys = [normalize_tag_key(tag.get("name")), normalize_tag_key(tag.get("type"))]
        known = [key for key in keys if key and key in aliases]
        if not known:
            unmatched.append(str(tag.get("name") or tag.get("type") or "<unnamed>"))
            continue
        groups.update(aliases[key] for key in known if aliases[key])
    return groups, unmatched


def calculate_health_score(
    findings: Sequence[Finding],
    performance: Mapping[str, Any],
    tags: Sequence[Mapping[str, Any]],
    aliases: Mapping[str, Optional[str]] = TAG_BONUS_ALIASES,
) -> int:
    """Score 1..100: start at 100, subtract finding/performance penalties, add tag bonus."""
    score = 100

    for finding in findings:
        score -= _finding_penalty(finding)

    score -= _threshold_penalty(_number(performance.get("loadTimeMs")) or 0, LOAD_TIME_PENALTIES)
    score -= _threshold_penalty(_number(performance.get("largestContentfulPaintMs")) or 0, LCP_PENALTIES)
    score -= _threshold_penalty(_number(performance.get("cumulativeLayoutShift")), CLS_PENALTIES)

    groups, _ = match_tag_bonuses(tags, aliases)
    score += min(sum(TAG_BONUS_POINTS[group] for group in groups), MAX_TAG_BONUS)

    return max(1, min(100, int(math.floor(score + 0.5))))


def filter_tracking_scripts(scripts: Iterable[DetectedScript]) -> List[DetectedScript]:
    return [
        script for script in scripts
        if script.src and any(marker in script.src for marker in TRACKING_SCRIPT_MARKERS)
    ]


def assemble_report(
    scan: ScanResult,
    analysis: AnalysisResult,
    aliases: Mapping[str, Optional[str]] = TAG_BONUS_ALIASES,
) -> Report:
    findings = analysis.audit_findings
    performance_scores = analysis.performance_scores
    processed_tags = analysis.processed_tags
    _, unmatched = match_tag_bonuses(processed_tags, aliases)

    return Report(
        summary=ReportSummary(
            url=scan.url,
            timestamp=scan.timestamp,
            total_scripts=len(scan.detected_scripts),
            total_tags=len(scan.injected_tags),
            total_network_requests=len(scan.network_requests),
        ),
        tags=list(scan.injected_tags),
        performance=scan.performance_metrics,
        scripts=filter_tracking_scripts(scan.detected_scripts),
        network=list(scan.network_requests[:MAX_REPORT_NETWORK_REQUESTS]),
        health_score=calculate_health_score(findings, performance_scores, processed_tags, aliases),
        analysis=ReportAnalysis(
            summary=analysis.audit_summary,
            findings=findings,
            processed_tags=processed_tags,
            performance_scores=performance_scores,
        ),
        metadata=ReportMetadata(
            analysis_timestamp=analysis.analysis_timestamp,
            processing_time_ms=analysis.processing_time_ms,
            unmatched_tag_names=unmatched,
        ),
    )
