import pytest

from app.features.audit.schemas.analysis import Finding
from app.features.audit.schemas.scan import DetectedScript, NetworkRequest
from app.features.audit.services.report import (
    MAX_REPORT_NETWORK_REQUESTS,
    assemble_report,
    calculate_health_score,
    filter_tracking_scripts,
    match_tag_bonuses,
    normalize_tag_key,
)

from fakes import make_analysis_result, make_scan_result


class TestHealthScore:

    def test_clean_site_scores_100(self):
        assert calculate_health_score([], {}, []) == 100

    def test_single_high_finding(self):
        findings = [Finding(severity="high", description="Duplicate GA4 tag")]
        assert calculate_health_score(findings, {}, []) == 80

    @pytest.mark.parametrize(
        "severity, expected",
        [("high", 80), ("medium", 88), ("low", 95)],
    )
    def test_severity_penalties(self, severity, expected):
        assert calculate_health_score([Finding(severity=severity)], {}, []) == expected

    def test_type_used_when_severity_missing(self):
        findings = [Finding(type="issue"), Finding(type="warning"), Finding(type="info")]
        assert calculate_health_score(findings, {}, []) == 84

    def test_unknown_severity_falls_back_to_type(self):
        assert calculate_health_score([Finding(severity="critical", type="warning")], {}, []) == 94

    @pytest.mark.parametrize(
        "load_time_ms, expected",
        [(9000, 75), (6000, 85), (4000, 92), (3000, 96), (2500, 100), (800, 100)],
    )
    def test_load_time_penalty(self, load_time_ms, expected):
        assert calculate_health_score([], {"loadTimeMs": load_time_ms}, []) == expected

    def test_lcp_and_cls_penalties(self):
        performance = {"largestContentfulPaintMs": 4500, "cumulativeLayoutShift": 0.3}
        assert calculate_health_score([], performance, []) == 84

    def test_non_numeric_metrics_are_ignored(self):
        performance = {"loadTimeMs": "slow", "cumulativeLayoutShift": None}
        assert calculate_health_score([], performance, []) == 100

    def test_score_never_drops_below_one(self):
        findings = [Finding(severity="high")] * 10
        assert calculate_health_score(findings, {"loadTimeMs": 20000}, []) == 1

    def test_tag_bonus_cannot_push_above_100(self):
        tags = [{"name": "Google Analytics 4"}, {"name": "Google Tag Manager"}]
        assert calculate_health_score([], {}, tags) == 100

    def test_tag_bonus_is_capped(self):
        findings = [Finding(severity="high")]
        tags = [
            {"name": "Google Analytics 4"},
            {"name": "Google Tag Manager"},
            {"name": "Meta Pixel"},
            {"name": "LinkedIn Insight Tag"},
            {"name": "Twitter Pixel"},
        ]
        # 2 + 1 + 1 + 1 = 5; linkedin and twitter share a group
        assert calculate_health_score(findings, {}, tags) == 85

    def test_tags_match_on_type_when_name_is_missing(self):
        findings = [Finding(severity="high")]
        tags = [{"type": "GA4"}, {"type": "GTM"}]
        assert calculate_health_score(findings, {}, tags) == 83

    def test_duplicate_tags_count_once(self):
        findings = [Finding(severity="high")]
        tags = [{"name": "Google Analytics 4"}, {"name": "GA4", "type": "GA4"}]
        assert calculate_health_score(findings, {}, tags) == 82


class TestTagMatching:

    def test_normalize_tag_key(self):
        assert normalize_tag_key("Google Analytics 4") == "googleanalytics4"
        assert normalize_tag_key("Meta-Pixel") == "metapixel"
        assert normalize_tag_key(None) == ""

    def test_unmatched_tags_are_reported(self):
        groups, unmatched = match_tag_bonuses([
            {"name": "Hotjar"},
            {"name": "TikTok Pixel"},
            {"type": "GTM"},
            {},
        ])
        assert groups == {"gtm"}
        assert unmatched == ["Hotjar", "<unnamed>"]

    def test_custom_aliases(self):
        groups, unmatched = match_tag_bonuses(
            [{"name": "Universal Analytics"}],
            aliases={"universalanalytics": "ga4"},
        )
        assert groups == {"ga4"}
        assert unmatched == []


class TestAssembleReport:

    def test_report_layout(self):
        scan = make_scan_result("https://shop.example.com")
        analysis = make_analysis_result(
            auditFindings=[{"severity": "medium", "type": "warning", "description": "GTM in body"}],
            processedTags=[{"name": "Google Tag Manager"}, {"name": "Hotjar"}],
        )

        report = assemble_report(scan, analysis)
        document = report.to_document()

        assert document["summary"] == {
            "url": "https://shop.example.com",
            "timestamp": "2024-05-01T12:00:00+00:00",
            "totalScripts": 3,
            "totalTags": 1,
            "totalNetworkRequests": 3,
        }
        assert document["healthScore"] == 89
        assert document["tags"][0]["id"] == "GTM-ABC123"
        assert [s["src"] for s in document["scripts"]] == [
            "https://www.googletagmanager.com/gtm.js?id=GTM-ABC123"
        ]
        assert document["scripts"][0]["async"] is True
        assert document["analysis"]["findings"][0]["description"] == "GTM in body"
        assert document["metadata"]["processedByAnalysisService"] is True
        assert document["metadata"]["analysisTimestamp"] == "2024-05-01T12:00:05Z"
        assert document["metadata"]["processingTimeMs"] == 42
        assert document["metadata"]["unmatchedTagNames"] == ["Hotjar"]

    def test_network_requests_are_truncated(self):
        requests = [NetworkRequest(url=f"https://cdn.example.com/{i}.js", type="script") for i in range(120)]
        scan = make_scan_result(network_requests=requests)

        report = assemble_report(scan, make_analysis_result())

        assert report.summary.total_network_requests == 120
        assert len(report.network) == MAX_REPORT_NETWORK_REQUESTS
        assert report.network[0].url == "https://cdn.example.com/0.js"

    def test_assembly_is_deterministic(self):
        scan = make_scan_result()
        analysis = make_analysis_result(auditFindings=[{"severity": "low"}])

        assert assemble_report(scan, analysis).to_document() == assemble_report(scan, analysis).to_document()

    def test_missing_analysis_sections_default_to_empty(self):
        analysis = make_analysis_result(
            auditFindings=None,
            performanceScores=None,
            processedTags=None,
            auditSummary=None,
        )

        report = assemble_report(make_scan_result(), analysis)

        assert report.health_score == 100
        assert report.analysis.findings == []
        assert report.analysis.summary == {}


def test_filter_tracking_scripts():
    scripts = [
        DetectedScript(src="https://connect.facebook.net/en_US/fbevents.js"),
        DetectedScript(src="https://static.example.com/bundle.js"),
        DetectedScript(src="", type="inline"),
        DetectedScript(src="https://analytics.tiktok.com/i18n/pixel/events.js"),
    ]

    kept = filter_tracking_scripts(scripts)

    assert [s.src for s in kept] == [
        "https://connect.facebook.net/en_US/fbevents.js",
        "https://analytics.tiktok.com/i18n/pixel/events.js",
    ]
