"""Execution façade over both backends."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable

from pyconsole_core.config import ConsoleConfig
from pyconsole_core.errors import ConsoleError, ErrorKind, InvalidSnippet
from pyconsole_core.schemas import BackendKind, ExecutionResult, RuntimeBackend, SandboxState, Verdict
from runner.process import IsolatedRunner, OutputCallback
from sandbox.runtime import SandboxRuntime, shared_runtime

logger = logging.getLogger(__name__)


def _check_snippet(code: object) -> str:
    # whitespace-only text is a valid program that prints nothing
    if not isinstance(code, str) or not code:
        raise InvalidSnippet("Missing code")
    return code


class ExecutionService:
    """Caller-facing operations. Backend selection stays with the caller.

    Every service shares the process-wide embedded runtime unless one is
    injected; its configuration comes from the first service created.
    """

    def __init__(
        self,
        config: ConsoleConfig | None = None,
        sandbox: SandboxRuntime | None = None,
        runner: IsolatedRunner | None = None,
    ) -> None:
        self.config = config or ConsoleConfig()
        self.sandbox = sandbox or shared_runtime(self.config)
        self.runner = runner or IsolatedRunner.from_config(self.config)

    @property
    def sandbox_state(self) -> SandboxState:
        return self.sandbox.state

    async def prepare_sandbox(self) -> None:
        """Resolve once the embedded interpreter is ready.

        Raises:
            BootstrapFailure: If the interpreter could not be initialized
        """
        await self.sandbox.prepare()

    def classify(self, code: str) -> dict[str, Verdict]:
        return self.sandbox.classifier.classify(code)

    def explain(self, code: str) -> str:
        return self.sandbox.classifier.server_only_reason(code)

    async def run_embedded(self, code: str, on_output: OutputCallback | None = None) -> ExecutionResult:
        async def _run() -> ExecutionResult:
            return await self.sandbox.execute(_check_snippet(code), on_output)

        return await self._contain(RuntimeBackend.embedded(), _run())

    async def run_isolated(
        self,
        code: str,
        on_output: OutputCallback | None = None,
        cancel: asyncio.Event | None = None,
        timeout_s: float | None = None,
    ) -> ExecutionResult:
        async def _run() -> ExecutionResult:
            return await self.runner.run(_check_snippet(code), on_output, cancel=cancel, timeout_s=timeout_s)

        return await self._contain(self.runner.chain[0].backend, _run())

    async def run(
        self,
        code: str,
        backend: BackendKind,
        on_output: OutputCallback | None = None,
    ) -> ExecutionResult:
        if backend is BackendKind.EMBEDDED_SANDBOX:
            return await self.run_embedded(code, on_output)
        return await self.run_isolated(code, on_output)

    async def _contain(self, backend: RuntimeBackend, call: Awaitable[ExecutionResult]) -> ExecutionResult:
        try:
            return await call
        except ConsoleError as exc:
            logger.info(f"{backend} run failed ({exc.kind.value}): {exc}")
            return ExecutionResult(backend=backend, diagnostic=str(exc) or exc.kind.value, error_kind=exc.kind)
        except Exception as exc:  # noqa: BLE001 - nothing escapes the façade
            logger.exception(f"Unexpected error on {backend}")
            return ExecutionResult(
                backend=backend,
                diagnostic=f"Runner error: {exc.__class__.__name__}: {exc}",
                error_kind=ErrorKind.INTERNAL,
            )
