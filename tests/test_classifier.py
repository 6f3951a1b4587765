import pytest

from marketfeed.services.classifier import (
    ADDON_STREAMING_MESSAGE,
    ErrorCategory,
    addon_message,
    classify,
)

STREAM_URL = "https://api.test/api/v1/tokens/stream"
SYMBOLS_URL = "https://api.test/api/v1/symbol_info"


class TestClassify:
    def test_stream_401_mentioning_plan_is_addon(self):
        error = classify(401, "no addon access for stream plan", STREAM_URL)

        assert error.category == ErrorCategory.ADDON
        assert error.is_addon_error is True
        assert error.is_retryable is False

    def test_rest_401_is_auth(self):
        error = classify(401, "bad token", SYMBOLS_URL)

        assert error.category == ErrorCategory.AUTH
        assert error.is_addon_error is False
        assert "Invalid API key" in error.message

    def test_stream_401_without_addon_hint_is_auth(self):
        assert classify(401, "bad token", STREAM_URL).category == ErrorCategory.AUTH

    def test_addon_markers_are_case_insensitive(self):
        error = classify(401, "Subscription REQUIRED", STREAM_URL)

        assert error.category == ErrorCategory.ADDON

    def test_stream_403_is_always_addon(self):
        assert classify(403, "", STREAM_URL).category == ErrorCategory.ADDON

    def test_rest_403_mentioning_plan_is_addon(self):
        assert classify(403, "upgrade your plan", SYMBOLS_URL).is_addon_error is True

    def test_rest_403_is_auth(self):
        error = classify(403, "forbidden", SYMBOLS_URL)

        assert error.category == ErrorCategory.AUTH
        assert error.message.startswith("Access denied")

    @pytest.mark.parametrize("status", [429, 500, 502, 404])
    def test_other_failures_are_network(self, status):
        error = classify(status, "oops", SYMBOLS_URL)

        assert error.category == ErrorCategory.NETWORK
        assert error.is_retryable is True
        assert error.status_code == status

    def test_rate_limit_message(self):
        assert "Rate limit" in classify(429, "", SYMBOLS_URL).message

    def test_non_error_status_is_unknown(self):
        assert classify(200, "", SYMBOLS_URL).category == ErrorCategory.UNKNOWN


def test_addon_message_by_feature():
    assert addon_message("streaming") == ADDON_STREAMING_MESSAGE
    assert "paid addon" in addon_message("api")
