"""
Unit tests for URL classification, scan intervals and link discovery.
"""

from datetime import UTC, datetime, timedelta

import pytest

from shared.models import FreshnessRisk, NodeRole, NodeType
from services.regulatory_truth.fetching import classify_content_type
from services.regulatory_truth.sentinel import (
    BASE_INTERVAL_HOURS,
    MIN_INTERVAL,
    classify_url,
    compute_next_scan,
    discover_links,
    scan_interval,
)


class TestClassifyUrl:
    """Tests for URL heuristics."""

    def test_root_is_entry_point_hub(self) -> None:
        """Test that a site root is a HUB entry point with HIGH risk."""
        result = classify_url("https://www.porezna-uprava.hr/")

        assert result.node_type == NodeType.HUB
        assert result.node_role == NodeRole.ENTRY_POINT
        assert result.freshness_risk == FreshnessRisk.HIGH

    def test_exchange_rate_page_is_critical_data(self) -> None:
        """Test that rate listings are CRITICAL data."""
        result = classify_url("https://www.hnb.hr/tecajna-lista")

        assert result.node_role == NodeRole.DATA
        assert result.freshness_risk == FreshnessRisk.CRITICAL

    def test_news_hub_is_critical(self) -> None:
        """Test that news listings are CRITICAL hubs."""
        result = classify_url("https://www.porezna-uprava.hr/vijesti")

        assert result.node_type == NodeType.HUB
        assert result.node_role == NodeRole.NEWS_FEED
        assert result.freshness_risk == FreshnessRisk.CRITICAL

    def test_gazette_pdf_is_static_regulation(self) -> None:
        """Test that published gazette PDFs never change."""
        result = classify_url("https://narodne-novine.nn.hr/files/zakon-o-pdv.pdf")

        assert result.node_type == NodeType.LEAF
        assert result.node_role == NodeRole.REGULATION
        assert result.freshness_risk == FreshnessRisk.STATIC

    def test_consolidated_regulation_page_is_medium(self) -> None:
        """Test that HTML regulation pages are MEDIUM risk leaves."""
        result = classify_url("https://narodne-novine.nn.hr/clanci/sluzbeni/2024_01_1.html")

        assert result.node_type == NodeType.LEAF
        assert result.node_role == NodeRole.REGULATION
        assert result.freshness_risk == FreshnessRisk.MEDIUM

    def test_guidance_is_high(self) -> None:
        """Test that official opinions are HIGH risk."""
        result = classify_url("https://www.porezna-uprava.hr/misljenja/pdv-stopa.html")

        assert result.node_role == NodeRole.GUIDANCE
        assert result.freshness_risk == FreshnessRisk.HIGH

    def test_forms_are_low(self) -> None:
        """Test that forms change rarely."""
        result = classify_url("https://www.porezna-uprava.hr/obrasci/pdv-obrazac.xlsx")

        assert result.node_role == NodeRole.FORM
        assert result.freshness_risk == FreshnessRisk.LOW

    def test_paginated_listing_is_hub(self) -> None:
        """Test that pagination marks a hub."""
        result = classify_url("https://www.porezna-uprava.hr/clanci?page=3")

        assert result.node_type == NodeType.HUB


class TestScanInterval:
    """Tests for the next-scan policy."""

    def test_neutral_frequency_uses_base_interval(self) -> None:
        """Test that frequency 0.5 gives exactly the base interval."""
        for risk, hours in BASE_INTERVAL_HOURS.items():
            assert scan_interval(0.5, risk) == timedelta(hours=hours)

    def test_volatile_items_scan_sooner(self) -> None:
        """Test that higher change frequency shortens the interval."""
        assert scan_interval(0.9, FreshnessRisk.MEDIUM) < scan_interval(0.1, FreshnessRisk.MEDIUM)

    def test_tiers_never_overlap(self) -> None:
        """Test that a static CRITICAL item beats a volatile HIGH item."""
        assert scan_interval(0.0, FreshnessRisk.CRITICAL) < scan_interval(1.0, FreshnessRisk.HIGH)
        assert scan_interval(0.0, FreshnessRisk.LOW) < scan_interval(1.0, FreshnessRisk.STATIC)

    def test_minimum_interval(self) -> None:
        """Test the lower bound on intervals."""
        assert scan_interval(1.0, FreshnessRisk.CRITICAL) >= MIN_INTERVAL
        assert MIN_INTERVAL == timedelta(minutes=15)

    def test_compute_next_scan(self) -> None:
        """Test that the next scan is now plus the interval."""
        now = datetime(2025, 3, 1, 8, 0, tzinfo=UTC)

        assert compute_next_scan(0.5, FreshnessRisk.HIGH, now) == now + timedelta(hours=6)


class TestDiscoverLinks:
    """Tests for hub link discovery."""

    def test_same_host_links_only(self) -> None:
        """Test that external links, assets and fragments are dropped."""
        html = """
        <html><body>
          <a href="/vijesti">Vijesti</a>
          <a href="misljenja/pdv.html#top">PDV</a>
          <a href="https://www.google.com/">Google</a>
          <a href="/static/site.css">CSS</a>
          <a href="mailto:info@porezna-uprava.hr">Mail</a>
          <a href="/vijesti">Vijesti again</a>
        </body></html>
        """

        links = discover_links(html, "https://www.porezna-uprava.hr/")

        assert links == [
            "https://www.porezna-uprava.hr/vijesti",
            "https://www.porezna-uprava.hr/misljenja/pdv.html",
        ]

    def test_limit(self) -> None:
        """Test that discovery stops at the limit."""
        html = "".join(f'<a href="/doc-{i}.html">{i}</a>' for i in range(10))

        assert len(discover_links(html, "https://www.hnb.hr/", limit=3)) == 3

    def test_self_link_skipped(self) -> None:
        """Test that a page does not rediscover itself."""
        assert discover_links('<a href="/">Home</a>', "https://www.hnb.hr/") == []


class TestClassifyContentType:
    """Tests for evidence content types."""

    @pytest.mark.parametrize(
        ("header", "body", "expected"),
        [
            ("application/pdf", "", "pdf"),
            ("application/json; charset=utf-8", "", "json"),
            ("application/xml", "", "xml"),
            ("application/xhtml+xml", "", "html"),
            ("text/html", "", "html"),
            ("", '{"a": 1}', "json"),
            ("", "<!DOCTYPE html><html></html>", "html"),
            ("text/plain", "Stopa PDV-a je 25%.", "text"),
        ],
    )
    def test_mapping(self, header: str, body: str, expected: str) -> None:
        """Test header and body sniffing."""
        assert classify_content_type(header, body) == expected
