"""
In-process embedded interpreter.

Snippets run with ``exec`` in a fresh namespace whose builtins are a guarded
copy (see ``sandbox.policy``). All interpreter work happens on one dedicated
worker thread, so the event loop stays responsive while a snippet, a package
import or the bootstrap is in progress. While a snippet runs, writes to
sys.stdout and sys.stderr from the worker thread land in that run's buffers.
"""

from __future__ import annotations

import asyncio
import contextlib
import importlib
import logging
import sys
import threading
import traceback
from collections.abc import Callable, Iterable, Iterator, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Protocol, TextIO

from pyconsole_core.errors import BootstrapFailure, OptionalDependencyFailure, PackageLoadFailure
from sandbox import policy

logger = logging.getLogger(__name__)

OutputCallback = Callable[[str, str], None]

SNIPPET_FILENAME = "<snippet>"


@dataclass
class RunOutcome:
    exit_code: int
    stdout: str
    stderr: str
    error: str | None = None


class EmbeddedInterpreter(Protocol):
    """What the sandbox runtime manager needs from an embedded backend."""

    @property
    def loaded_packages(self) -> frozenset[str]: ...

    async def boot(self) -> None: ...

    async def load_package(self, package: str) -> None: ...

    async def install_package(self, package: str) -> None: ...

    async def run(self, code: str, on_output: OutputCallback | None = None) -> RunOutcome: ...


class _StreamBuffer:
    def __init__(self, name: str, emit: Callable[[str, str], None]) -> None:
        self.name = name
        self._emit = emit
        self._parts: list[str] = []

    def write(self, text: str) -> int:
        if text:
            self._parts.append(text)
            self._emit(self.name, text)
        return len(text)

    def flush(self) -> None:
        pass

    def getvalue(self) -> str:
        return "".join(self._parts)


_routing = threading.local()
_routing_lock = threading.Lock()
_routing_users = 0
_installed: dict[str, "_ThreadRoutedStream"] = {}


class _ThreadRoutedStream:
    """Stands in for sys.stdout/sys.stderr while snippets run.

    Writes from a thread with an active run go to that run's buffer; writes
    from any other thread reach the stream that was in place before.
    """

    def __init__(self, name: str, original: TextIO) -> None:
        self._name = name
        self._original = original

    @property
    def original(self) -> TextIO:
        return self._original

    def _target(self) -> _StreamBuffer | TextIO:
        return getattr(_routing, self._name, None) or self._original

    def write(self, text: str) -> int:
        return self._target().write(text)

    def writelines(self, lines: Iterable[str]) -> None:
        for line in lines:
            self.write(line)

    def flush(self) -> None:
        self._target().flush()

    def isatty(self) -> bool:
        return False if getattr(_routing, self._name, None) else self._original.isatty()

    def __getattr__(self, name: str) -> object:
        return getattr(self._original, name)


@contextlib.contextmanager
def _routed_streams(stdout: _StreamBuffer, stderr: _StreamBuffer) -> Iterator[None]:
    """Route this thread's sys.stdout/sys.stderr writes into the run buffers."""
    global _routing_users
    with _routing_lock:
        if _routing_users == 0:
            for name in ("stdout", "stderr"):
                proxy = _ThreadRoutedStream(name, getattr(sys, name))
                _installed[name] = proxy
                setattr(sys, name, proxy)
        _routing_users += 1
    _routing.stdout = stdout
    _routing.stderr = stderr
    try:
        yield
    finally:
        _routing.stdout = None
        _routing.stderr = None
        with _routing_lock:
            _routing_users -= 1
            if _routing_users == 0:
                for name, proxy in _installed.items():
                    # leave streams alone if someone else replaced them meanwhile
                    if getattr(sys, name) is proxy:
                        setattr(sys, name, proxy.original)
                _installed.clear()


def _exit_status(exc: SystemExit, stderr: _StreamBuffer) -> int:
    code = exc.code
    if code is None:
        return 0
    if isinstance(code, int):
        return code
    stderr.write(f"{code}\n")
    return 1


class InProcessInterpreter:
    """Capability-restricted interpreter sharing the host process."""

    def __init__(
        self,
        preload: Sequence[str] = ("numpy",),
        install_command: Sequence[str] | None = None,
        blocked_modules: Iterable[str] | None = None,
        executor: ThreadPoolExecutor | None = None,
    ) -> None:
        self.preload = list(preload)
        self.install_command = list(install_command or [sys.executable, "-m", "pip", "install", "--quiet"])
        self.blocked_modules = frozenset(
            blocked_modules if blocked_modules is not None
            else policy.DENIED_MODULES | policy.RESTRICTED_MODULES
        )
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="sandbox")
        self._loaded: set[str] = set()

    @property
    def loaded_packages(self) -> frozenset[str]:
        return frozenset(self._loaded)

    async def _on_worker(self, fn: Callable[..., object], *args: object) -> object:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, fn, *args)

    async def boot(self) -> None:
        for package in self.preload:
            try:
                await self._import(package)
            except PackageLoadFailure as exc:
                raise BootstrapFailure(f"Error loading Python: {exc.reason}") from exc
        logger.info(f"Embedded interpreter ready (preloaded: {', '.join(self.preload) or 'none'})")

    async def load_package(self, package: str) -> None:
        if package in self._loaded:
            return
        await self._import(package)
        logger.info(f"Loaded sandbox package {package}")

    async def _import(self, package: str) -> None:
        try:
            await self._on_worker(importlib.import_module, package)
        except ImportError as exc:
            raise PackageLoadFailure(package, str(exc)) from exc
        self._loaded.add(package)

    async def install_package(self, package: str) -> None:
        argv = [*self.install_command, package]
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise OptionalDependencyFailure(package, str(exc)) from exc

        _, err = await proc.communicate()
        if proc.returncode != 0:
            lines = err.decode("utf-8", errors="replace").strip().splitlines()
            reason = lines[-1] if lines else f"installer exited with {proc.returncode}"
            raise OptionalDependencyFailure(package, reason)
        importlib.invalidate_caches()

    async def run(self, code: str, on_output: OutputCallback | None = None) -> RunOutcome:
        loop = asyncio.get_running_loop()

        def emit(stream: str, text: str) -> None:
            if on_output is not None:
                loop.call_soon_threadsafe(on_output, stream, text)

        outcome = await self._on_worker(self._run_sync, code, emit)
        assert isinstance(outcome, RunOutcome)
        return outcome

    def _run_sync(self, code: str, emit: Callable[[str, str], None]) -> RunOutcome:
        stdout = _StreamBuffer("stdout", emit)
        stderr = _StreamBuffer("stderr", emit)
        namespace: dict[str, object] = {
            "__name__": "__main__",
            "__builtins__": policy.restricted_builtins(blocked_modules=self.blocked_modules),
        }

        with _routed_streams(stdout, stderr):
            try:
                compiled = compile(code, SNIPPET_FILENAME, "exec")
            except SyntaxError as exc:
                text = "".join(traceback.format_exception_only(type(exc), exc))
                stderr.write(text)
                return RunOutcome(1, stdout.getvalue(), stderr.getvalue(), text.strip().splitlines()[-1])

            try:
                exec(compiled, namespace, namespace)
            except SystemExit as exc:
                status = _exit_status(exc, stderr)
                return RunOutcome(status, stdout.getvalue(), stderr.getvalue())
            except Exception as exc:  # noqa: BLE001 - snippet errors are program output
                tb = exc.__traceback__.tb_next if exc.__traceback__ else None
                text = "".join(traceback.format_exception(type(exc), exc, tb))
                stderr.write(text)
                return RunOutcome(1, stdout.getvalue(), stderr.getvalue(), f"{exc.__class__.__name__}: {exc}")
        return RunOutcome(0, stdout.getvalue(), stderr.getvalue())

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)
