"""Tests for the command-line provider."""

import pytest

from goatherd.providers import CommandProvider, InvokeOptions
from goatherd.providers.command import NOT_FOUND_EXIT_CODE, TIMEOUT_EXIT_CODE


class TestBuildArgs:
    """Test CommandProvider.build_args."""

    def test_message_is_last(self) -> None:
        provider = CommandProvider("codex", command="codex exec")

        args = provider.build_args(InvokeOptions(message="do it", passthrough_args=["--json"]))

        assert args == ["codex", "exec", "--json", "do it"]

    def test_optional_flags(self) -> None:
        provider = CommandProvider(
            "codex",
            command=["codex", "exec"],
            session_flag="--resume",
            system_prompt_flag="--system",
        )

        args = provider.build_args(
            InvokeOptions(
                message="do it",
                model="o3",
                provider_session_id="sess-1",
                system_prompt="be brief",
                session_context="earlier context",
            )
        )

        assert args == [
            "codex",
            "exec",
            "--model",
            "o3",
            "--resume",
            "sess-1",
            "--system",
            "be brief",
            "earlier context\n\ndo it",
        ]

    def test_force_new_skips_resume(self) -> None:
        provider = CommandProvider("codex", command=["codex"], session_flag="--resume")

        args = provider.build_args(
            InvokeOptions(message="hi", provider_session_id="sess-1", force_new_provider_session=True)
        )

        assert "--resume" not in args

    def test_empty_command_rejected(self) -> None:
        with pytest.raises(ValueError):
            CommandProvider("codex", command=[])


@pytest.mark.integration
class TestInvoke:
    """Test CommandProvider.invoke against real processes."""

    @pytest.mark.asyncio
    async def test_captures_output(self) -> None:
        provider = CommandProvider("echo", command=["echo"])

        result = await provider.invoke(InvokeOptions(message="session id: abc123xyz"))

        assert result.ok
        assert result.stdout.strip() == "session id: abc123xyz"
        assert result.provider_session_id == "abc123xyz"

    @pytest.mark.asyncio
    async def test_runs_in_cwd(self, tmp_path) -> None:
        provider = CommandProvider("pwd", command=["sh", "-c", "pwd #"])

        result = await provider.invoke(InvokeOptions(message="ignored", cwd=tmp_path))

        assert result.stdout.strip() == str(tmp_path)

    @pytest.mark.asyncio
    async def test_missing_executable(self) -> None:
        provider = CommandProvider("nope", command=["goatherd-no-such-binary"])

        result = await provider.invoke(InvokeOptions(message="hi"))

        assert result.code == NOT_FOUND_EXIT_CODE
        assert "Command not found" in result.stderr

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        provider = CommandProvider("sleepy", command=["sleep"], timeout_seconds=0.2)

        result = await provider.invoke(InvokeOptions(message="5"))

        assert result.code == TIMEOUT_EXIT_CODE
        assert "timed out" in result.stderr
