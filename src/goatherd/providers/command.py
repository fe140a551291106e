"""Generic command-line provider.

Runs a configured command with the message as the final argument. Timeouts
and missing executables are reported as non-zero exit codes, never raised.
"""

import asyncio
import os
import shlex
import time

from goatherd.providers.session_hint import attach_provider_session_id
from goatherd.providers.types import (
    BaseProvider,
    ExecutionResult,
    InvokeOptions,
    ProviderCapabilities,
    ProviderKind,
)
from goatherd.telemetry import get_logger

log = get_logger(__name__)

TIMEOUT_EXIT_CODE = 124
NOT_FOUND_EXIT_CODE = 127


class CommandProvider(BaseProvider):
    """Provider that shells out to a local CLI tool.

    Attributes:
        command: Base argv (e.g. ``["codex", "exec"]``).
        model_flag: Flag used to pass a model override.
        session_flag: Flag used to resume a backend session, if supported.
        system_prompt_flag: Flag used to pass a system prompt, if supported.
        timeout_seconds: Hard limit for one invocation.
    """

    def __init__(
        self,
        provider_id: str,
        command: list[str] | str,
        model_flag: str = "--model",
        session_flag: str | None = None,
        system_prompt_flag: str | None = None,
        timeout_seconds: float = 600.0,
        display_name: str | None = None,
    ) -> None:
        super().__init__(
            provider_id=provider_id,
            kind=ProviderKind.CLI,
            capabilities=ProviderCapabilities(model=True, passthrough=True),
            display_name=display_name,
        )
        self.command = shlex.split(command) if isinstance(command, str) else list(command)
        if not self.command:
            raise ValueError(f"Provider {provider_id} has an empty command")
        self.model_flag = model_flag
        self.session_flag = session_flag
        self.system_prompt_flag = system_prompt_flag
        self.timeout_seconds = timeout_seconds

    def build_args(self, options: InvokeOptions) -> list[str]:
        """Build the argv for one invocation."""
        args = list(self.command)
        if options.model:
            args.extend([self.model_flag, options.model])
        if self.session_flag and options.provider_session_id and not options.force_new_provider_session:
            args.extend([self.session_flag, options.provider_session_id])
        if self.system_prompt_flag and options.system_prompt:
            args.extend([self.system_prompt_flag, options.system_prompt])
        args.extend(options.passthrough_args)

        message = options.message
        if options.session_context:
            message = f"{options.session_context}\n\n{message}"
        args.append(message)
        return args

    async def invoke(self, options: InvokeOptions) -> ExecutionResult:
        self.validate_invoke_options(options)
        args = self.build_args(options)
        env = {**os.environ, **(options.env or {})}

        start_time = time.time()
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(options.cwd) if options.cwd else None,
                env=env,
            )
        except FileNotFoundError:
            return ExecutionResult(
                code=NOT_FOUND_EXIT_CODE,
                stderr=f"Command not found: {args[0]}",
            )

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            log.warning(
                "command_provider_timeout",
                provider_id=self.id,
                timeout_seconds=self.timeout_seconds,
            )
            return ExecutionResult(
                code=TIMEOUT_EXIT_CODE,
                stderr=f"Provider {self.id} timed out after {self.timeout_seconds}s",
            )
        except asyncio.CancelledError:
            process.kill()
            await process.wait()
            raise

        log.debug(
            "command_provider_exited",
            provider_id=self.id,
            code=process.returncode,
            duration_ms=int((time.time() - start_time) * 1000),
        )
        result = ExecutionResult(
            code=process.returncode if process.returncode is not None else 1,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )
        return attach_provider_session_id(result)
