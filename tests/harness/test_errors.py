"""Unit and property tests for error classification and error comments."""

from hypothesis import given, settings, strategies as st

from src.harness.agent.errors import (
    classify_llm_error,
    classify_session_error,
    create_agent_error,
    create_error_info,
    create_llm_fetch_error,
    create_timeout_error,
    error_text,
    format_error_comment,
    is_agent_not_found_error,
    is_llm_fetch_error,
)
from src.harness.agent.models import ErrorType


FETCH_MARKERS = [
    "fetch failed",
    "Connect Timeout Error",
    "ConnectTimeoutError",
    "request timed out",
    "ECONNREFUSED",
    "ECONNRESET",
    "ETIMEDOUT",
    "Network Error",
    "connection refused",
    "Connection reset by peer",
]


class TestIsLlmFetchError:
    def test_markers_are_detected_case_insensitively(self):
        for marker in FETCH_MARKERS:
            assert is_llm_fetch_error(marker), marker
            assert is_llm_fetch_error(marker.upper()), marker

    def test_chained_cause_is_searched(self):
        try:
            try:
                raise OSError("ECONNRESET")
            except OSError as cause:
                raise RuntimeError("prompt failed") from cause
        except RuntimeError as exc:
            assert is_llm_fetch_error(exc)

    def test_payload_message_is_searched(self):
        assert is_llm_fetch_error({"name": "UnknownError", "data": {"message": "fetch failed"}})

    def test_unrelated_errors_are_not_fetch_errors(self):
        assert not is_llm_fetch_error("Invalid API key")
        assert not is_llm_fetch_error(None)
        assert not is_llm_fetch_error("")

    @settings(max_examples=100)
    @given(
        prefix=st.text(max_size=20),
        marker=st.sampled_from(FETCH_MARKERS),
        suffix=st.text(max_size=20),
    )
    def test_marker_anywhere_in_text_is_detected(self, prefix, marker, suffix):
        assert is_llm_fetch_error(f"{prefix} {marker} {suffix}")


class TestAgentNotFound:
    def test_agent_not_found_phrases(self):
        for text in (
            "Agent not found: sisyphus",
            "unknown agent 'x'",
            "agent planner does not exist",
            "No agent named reviewer",
            "agent plan is not available",
        ):
            assert is_agent_not_found_error(text), text

    def test_other_errors(self):
        assert not is_agent_not_found_error("model not found")


class TestClassification:
    def test_fetch_error_is_retryable(self):
        info = classify_llm_error("fetch failed", model="claude-sonnet-4")

        assert info.type == ErrorType.LLM_FETCH_ERROR
        assert info.retryable is True
        assert info.message == "LLM request failed: fetch failed"
        assert info.details == "Model: claude-sonnet-4"

    def test_other_errors_are_unclassified(self):
        assert classify_llm_error("Invalid API key") is None

    def test_session_error_always_classified(self):
        info = classify_session_error({"message": "Provider returned 400"})

        assert info.type == ErrorType.CONFIGURATION
        assert info.retryable is False
        assert "Provider returned 400" in info.message

    def test_session_fetch_error_stays_retryable(self):
        info = classify_session_error({"message": "fetch failed"})
        assert info.type == ErrorType.LLM_FETCH_ERROR
        assert info.retryable

    def test_timeout_error(self):
        info = create_timeout_error(1800)
        assert info.type == ErrorType.LLM_TIMEOUT
        assert info.message == "Execution timed out after 1800s"

    def test_error_text_for_plain_objects(self):
        assert error_text(42) == "42"


class TestFormatErrorComment:
    def test_fetch_error_comment(self):
        body = format_error_comment(create_llm_fetch_error("fetch failed", "gpt-5"))

        assert body.startswith(":warning: **LLM Fetch Error**")
        assert "LLM request failed: fetch failed" in body
        assert "> Model: gpt-5" in body
        assert "**Suggested action:**" in body
        assert body.endswith("_This error is retryable._")

    def test_non_retryable_error_comment(self):
        body = format_error_comment(create_agent_error("Agent not found", "planner"))

        assert body.startswith(":x: **Configuration Error**")
        assert "> Requested agent: planner" in body
        assert "retryable" not in body

    def test_timeout_comment_icon(self):
        assert format_error_comment(create_timeout_error(60)).startswith(":hourglass:")

    def test_minimal_comment(self):
        body = format_error_comment(create_error_info(ErrorType.INTERNAL, "boom", False))
        assert body == ":x: **Internal Error**\n\nboom"
