"""Tests for backend session id extraction."""

import pytest

from goatherd.providers import ExecutionResult, attach_provider_session_id, extract_session_hint


class TestExtractSessionHint:
    """Test extract_session_hint."""

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ('{"sessionID": "ses_abc123"}', "ses_abc123"),
            ('{"sessionId":"thread-42"}', "thread-42"),
            ('{"chatId": "c-77"}', "c-77"),
            ("Session ID: run.2024-01", "run.2024-01"),
            ("session=abcdef123", "abcdef123"),
            ("chat id: chat-998877", "chat-998877"),
            (
                "resumed 123e4567-e89b-42d3-a456-426614174000 ok",
                "123e4567-e89b-42d3-a456-426614174000",
            ),
        ],
    )
    def test_patterns(self, text: str, expected: str) -> None:
        assert extract_session_hint(text) == expected

    @pytest.mark.parametrize("text", ["", "   ", "no ids here", "session: abc"])
    def test_no_match(self, text: str) -> None:
        assert extract_session_hint(text) is None


class TestAttachProviderSessionId:
    """Test attach_provider_session_id."""

    def test_explicit_wins(self) -> None:
        result = ExecutionResult(code=0, stdout="session id: fromtext1")

        attached = attach_provider_session_id(result, " explicit-1 ")

        assert attached.provider_session_id == "explicit-1"

    def test_discovered_from_stderr(self) -> None:
        result = ExecutionResult(code=0, stdout="ok", stderr="session: resume-me-7")

        assert attach_provider_session_id(result).provider_session_id == "resume-me-7"

    def test_unchanged_without_hint(self) -> None:
        result = ExecutionResult(code=0, stdout="ok")

        assert attach_provider_session_id(result) is result
