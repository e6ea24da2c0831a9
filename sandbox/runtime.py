"""
Sandbox runtime manager.

Owns the single embedded interpreter and its lifecycle
(uninitialized -> initializing -> ready), prepares each snippet's packages
and serializes executions against the shared interpreter.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time

from pyconsole_core.config import ConsoleConfig
from pyconsole_core.errors import (
    BootstrapFailure,
    ClassificationBlock,
    ConsoleError,
    ErrorKind,
    OptionalDependencyFailure,
)
from pyconsole_core.schemas import ExecutionResult, RuntimeBackend, SandboxState, Verdict
from sandbox import policy
from sandbox.classifier import CapabilityClassifier
from sandbox.interpreter import EmbeddedInterpreter, InProcessInterpreter, OutputCallback

logger = logging.getLogger(__name__)

STATUS_STREAM = "status"


class SandboxRuntime:
    """Lifecycle and execution manager for the embedded interpreter."""

    def __init__(
        self,
        interpreter: EmbeddedInterpreter,
        classifier: CapabilityClassifier | None = None,
    ) -> None:
        self._interpreter = interpreter
        self._classifier = classifier or CapabilityClassifier()
        self._state = SandboxState.UNINITIALIZED
        self._boot: asyncio.Future[None] | None = None
        self._run_lock = asyncio.Lock()
        self._installed: set[str] = set()

    @classmethod
    def from_config(cls, config: ConsoleConfig) -> "SandboxRuntime":
        classifier = CapabilityClassifier.from_overrides(config.allowed_modules, config.denied_modules)
        interpreter = InProcessInterpreter(
            preload=config.sandbox_preload,
            install_command=config.install_command,
            blocked_modules=classifier.denied | policy.RESTRICTED_MODULES,
        )
        return cls(interpreter, classifier)

    def close(self) -> None:
        shutdown = getattr(self._interpreter, "shutdown", None)
        if shutdown is not None:
            shutdown()

    @property
    def state(self) -> SandboxState:
        return self._state

    @property
    def classifier(self) -> CapabilityClassifier:
        return self._classifier

    async def prepare(self) -> None:
        """Bring the interpreter to ready; concurrent callers share one bootstrap."""
        if self._state is SandboxState.READY:
            return
        # No await between the check and the assignment, so callers on the
        # same loop can never start a second bootstrap.
        if self._boot is None:
            self._state = SandboxState.INITIALIZING
            self._boot = asyncio.ensure_future(self._bootstrap())
        await asyncio.shield(self._boot)

    async def _bootstrap(self) -> None:
        logger.info("Booting embedded interpreter")
        try:
            await self._interpreter.boot()
        except BaseException as exc:
            self._state = SandboxState.UNINITIALIZED
            self._boot = None
            if isinstance(exc, BootstrapFailure) or not isinstance(exc, Exception):
                raise
            raise BootstrapFailure(f"Error loading Python: {exc}") from exc
        self._state = SandboxState.READY

    async def execute(self, code: str, on_output: OutputCallback | None = None) -> ExecutionResult:
        start = time.perf_counter()
        try:
            return await self._execute(code, on_output, start)
        except ConsoleError as exc:
            return ExecutionResult(
                backend=RuntimeBackend.embedded(),
                diagnostic=str(exc),
                error_kind=exc.kind,
                runtime_ms=(time.perf_counter() - start) * 1000,
                loaded_packages=sorted(self._interpreter.loaded_packages),
            )

    async def _execute(self, code: str, on_output: OutputCallback | None, start: float) -> ExecutionResult:
        verdicts = self._classifier.classify(code)
        blocked = [m for m, v in verdicts.items() if v is Verdict.UNSUPPORTED]
        if blocked:
            raise ClassificationBlock(blocked)

        await self.prepare()

        def status(text: str) -> None:
            if on_output is not None:
                on_output(STATUS_STREAM, text + "\n")

        async with self._run_lock:
            native = [
                p for p in self._classifier.packages_for(verdicts, Verdict.SANDBOX_NATIVE)
                if p not in self._interpreter.loaded_packages
            ]
            if native:
                status(f"... Loading (native): {', '.join(native)}")
                for package in native:
                    await self._interpreter.load_package(package)

            installable = [
                p for p in self._classifier.packages_for(verdicts, Verdict.SANDBOX_INSTALLABLE)
                if p not in self._installed
            ]
            if installable:
                status(f"... Installing: {', '.join(installable)}")
                for package in installable:
                    try:
                        await self._interpreter.install_package(package)
                    except OptionalDependencyFailure as exc:
                        logger.warning(f"Optional dependency skipped: {exc}")
                        status(str(exc))
                        continue
                    self._installed.add(package)

            outcome = await self._interpreter.run(code, on_output)

        return ExecutionResult(
            exit_code=outcome.exit_code,
            stdout=outcome.stdout,
            stderr=outcome.stderr,
            backend=RuntimeBackend.embedded(),
            diagnostic=outcome.error,
            error_kind=ErrorKind.PROGRAM_ERROR if outcome.error else None,
            runtime_ms=(time.perf_counter() - start) * 1000,
            loaded_packages=sorted(self._interpreter.loaded_packages),
        )


_shared_lock = threading.Lock()
_shared_runtime: SandboxRuntime | None = None


def shared_runtime(config: ConsoleConfig | None = None) -> SandboxRuntime:
    """Process-wide runtime; the first caller's configuration wins."""
    global _shared_runtime
    with _shared_lock:
        if _shared_runtime is None:
            _shared_runtime = SandboxRuntime.from_config(config or ConsoleConfig())
        return _shared_runtime


def reset_shared_runtime() -> SandboxRuntime | None:
    """Drop the process-wide runtime and return it so the caller can release it."""
    global _shared_runtime
    with _shared_lock:
        previous, _shared_runtime = _shared_runtime, None
        return previous
