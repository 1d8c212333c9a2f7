"""
Feedback categorization.
"""
from unittest.mock import MagicMock, patch

import pytest

from backend.services.categorization_service import (
    CategorizationService, extract_keywords, validate_category, quick_categorize, keyword_categorize,
)


class TestRules:

    def test_critical_phrase(self):
        result = quick_categorize("We hit data loss after the update")
        assert result.category == "Critical Bug"
        assert result.urgency == "critical"
        assert result.method == "quick"

    def test_billing_phrase(self):
        result = quick_categorize("Payment failed on renewal")
        assert result.category == "Billing/Pricing"
        assert result.confidence == 0.92

    def test_nothing_obvious(self):
        assert quick_categorize("Add dark mode") is None

    @pytest.mark.parametrize("title,expected", [
        ("Login error on Safari", "Bug"),
        ("Page is slow", "Performance"),
        ("Webhook for new posts", "Integration"),
        ("Zebra", "Feature Request"),
    ])
    def test_keyword_fallback(self, title, expected):
        assert keyword_categorize(title).category == expected

    def test_default_has_low_confidence(self):
        result = keyword_categorize("Zebra")
        assert result.method == "default"
        assert result.confidence == 0.3

    @pytest.mark.parametrize("raw,expected", [
        ("Bug", "Bug"),
        ("bug", "Bug"),
        ("ui/ux", "UI/UX"),
        ("Billing", "Billing/Pricing"),
        ("Something else", "Feature Request"),
        (None, "Feature Request"),
    ])
    def test_validate_category(self, raw, expected):
        assert validate_category(raw) == expected

    def test_extract_keywords(self):
        assert extract_keywords("The export button fails when exporting large files") == [
            "export", "button", "fails", "exporting", "large"
        ]
        assert extract_keywords("") == []


class TestService:

    def test_offline_uses_keywords(self):
        result = CategorizationService().categorize("Export to CSV is missing columns")
        assert result.category == "Integration"
        assert result.method == "keyword"

    def test_llm_answer_is_validated(self):
        llm = MagicMock()
        llm.enabled = True
        llm.invoke_json.return_value = {
            "primaryCategory": "ui/ux",
            "confidence": 1.7,
            "reasoning": "Layout complaint",
            "suggestedTags": ["layout", "mobile"],
        }
        with patch("backend.services.categorization_service.get_llm_client", return_value=llm):
            result = CategorizationService().categorize("Sidebar overlaps content", "on small screens")

        assert result.category == "UI/UX"
        assert result.confidence == 1.0
        assert result.urgency == "low"
        assert result.method == "llm"

    def test_quick_rules_skip_the_model(self):
        llm = MagicMock()
        llm.enabled = True
        with patch("backend.services.categorization_service.get_llm_client", return_value=llm):
            result = CategorizationService().categorize("System crash when saving")

        assert result.category == "Critical Bug"
        llm.invoke_json.assert_not_called()

    def test_llm_failure_falls_back(self):
        llm = MagicMock()
        llm.enabled = True
        llm.invoke_json.side_effect = RuntimeError("timeout")
        with patch("backend.services.categorization_service.get_llm_client", return_value=llm):
            result = CategorizationService().categorize("Page is slow")

        assert result.category == "Performance"
