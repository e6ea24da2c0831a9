"""
Isolated process runner.

Each call spawns a fresh interpreter process, writes the snippet to its
standard input and closes it, then collects stdout and stderr until exit.
Launch attempts follow the configured chain in order and stop at the first
tier that starts. Stopping a run early sends SIGTERM first, SIGKILL after a
grace period, and then runs the tier's cleanup command (for containers,
removing the container by the name it was started with).
"""

from __future__ import annotations

import asyncio
import codecs
import contextlib
import logging
import time
from collections.abc import Callable, Sequence

from pyconsole_core.config import ConsoleConfig
from pyconsole_core.errors import ErrorKind, ProcessLaunchFailure
from pyconsole_core.schemas import ExecutionResult
from runner.tiers import LaunchSpec, build_launch_chain

logger = logging.getLogger(__name__)

OutputCallback = Callable[[str, str], None]

READ_CHUNK_BYTES = 4096
TERMINATE_GRACE_S = 2.0
KILL_GRACE_S = 5.0
CLEANUP_TIMEOUT_S = 15.0


class _LaunchError(Exception):
    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class IsolatedRunner:
    """Run snippets in isolated host processes. Holds no per-call state."""

    def __init__(
        self,
        chain: Sequence[LaunchSpec],
        timeout_s: float | None = None,
    ) -> None:
        if not chain:
            raise ValueError("launch chain must contain at least one tier")
        self.chain = tuple(chain)
        self.timeout_s = timeout_s

    @classmethod
    def from_config(cls, config: ConsoleConfig) -> "IsolatedRunner":
        return cls(build_launch_chain(config), timeout_s=config.isolated_timeout_s)

    async def run(
        self,
        code: str,
        on_output: OutputCallback | None = None,
        cancel: asyncio.Event | None = None,
        timeout_s: float | None = None,
    ) -> ExecutionResult:
        """Run ``code`` on the first tier that starts.

        Raises:
            ProcessLaunchFailure: If no tier in the chain could be started
        """
        timeout = timeout_s if timeout_s is not None else self.timeout_s
        attempts: list[tuple[str, str]] = []
        for spec in self.chain:
            try:
                return await self._attempt(spec, code, on_output, cancel, timeout)
            except _LaunchError as exc:
                attempts.append((spec.label, exc.reason))
                logger.warning(f"Runner {spec.label} failed to start: {exc.reason}")
        raise ProcessLaunchFailure(_launch_failure_message(attempts), attempts)

    async def _attempt(
        self,
        spec: LaunchSpec,
        code: str,
        on_output: OutputCallback | None,
        cancel: asyncio.Event | None,
        timeout: float | None,
    ) -> ExecutionResult:
        start = time.perf_counter()
        command = spec.command()
        try:
            proc = await asyncio.create_subprocess_exec(
                *command.argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise _LaunchError(f"{exc.__class__.__name__}: {exc}") from exc
        logger.info(f"Started {spec.label} (pid {proc.pid})")

        stdout: list[str] = []
        stderr: list[str] = []
        work = asyncio.ensure_future(self._communicate(proc, code, stdout, stderr, on_output))
        waiters: set[asyncio.Future[object]] = {work}
        cancel_wait: asyncio.Future[object] | None = None
        if cancel is not None:
            cancel_wait = asyncio.ensure_future(cancel.wait())
            waiters.add(cancel_wait)

        try:
            done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            await _terminate(proc, work, command.cleanup_argv)
            raise
        finally:
            if cancel_wait is not None:
                cancel_wait.cancel()

        if work not in done:
            await _terminate(proc, work, command.cleanup_argv)
            if cancel_wait is not None and cancel_wait in done:
                diagnostic, kind = "Execution canceled", ErrorKind.CANCELED
            else:
                diagnostic, kind = f"Execution timed out after {timeout:g}s", ErrorKind.TIMEOUT
            logger.info(f"{spec.label} stopped: {diagnostic}")
            return ExecutionResult(
                exit_code=None,
                stdout="".join(stdout),
                stderr="".join(stderr),
                backend=spec.backend,
                diagnostic=diagnostic,
                error_kind=kind,
                runtime_ms=(time.perf_counter() - start) * 1000,
                canceled=True,
            )

        returncode = work.result()
        out_text = "".join(stdout)
        err_text = "".join(stderr)
        if returncode in spec.launch_failure_codes and not out_text:
            lines = err_text.strip().splitlines()
            raise _LaunchError(lines[-1] if lines else f"exited with status {returncode}")

        exit_code = returncode if isinstance(returncode, int) and returncode >= 0 else None
        return ExecutionResult(
            exit_code=exit_code,
            stdout=out_text,
            stderr=err_text,
            backend=spec.backend,
            error_kind=None if exit_code == 0 else ErrorKind.PROCESS_RUNTIME_FAILURE,
            runtime_ms=(time.perf_counter() - start) * 1000,
        )

    async def _communicate(
        self,
        proc: asyncio.subprocess.Process,
        code: str,
        stdout: list[str],
        stderr: list[str],
        on_output: OutputCallback | None,
    ) -> int | None:
        assert proc.stdin is not None and proc.stdout is not None and proc.stderr is not None
        await asyncio.gather(
            _feed(proc.stdin, code),
            _pump(proc.stdout, "stdout", stdout, on_output),
            _pump(proc.stderr, "stderr", stderr, on_output),
        )
        return await proc.wait()


async def _feed(stdin: asyncio.StreamWriter, code: str) -> None:
    # end of stream marks the end of the program
    try:
        stdin.write(code.encode("utf-8"))
        await stdin.drain()
    except (BrokenPipeError, ConnectionResetError):
        pass
    finally:
        stdin.close()
        with contextlib.suppress(BrokenPipeError, ConnectionResetError):
            await stdin.wait_closed()


async def _pump(
    stream: asyncio.StreamReader,
    name: str,
    sink: list[str],
    on_output: OutputCallback | None,
) -> None:
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    while True:
        chunk = await stream.read(READ_CHUNK_BYTES)
        final = not chunk
        text = decoder.decode(chunk, final=final)
        if text:
            sink.append(text)
            if on_output is not None:
                on_output(name, text)
        if final:
            break


async def _settle(work: asyncio.Future[object], timeout: float) -> bool:
    try:
        await asyncio.wait_for(asyncio.shield(work), timeout)
    except (asyncio.TimeoutError, OSError):
        return work.done()
    except asyncio.CancelledError:
        work.cancel()
        raise
    return True


async def _terminate(
    proc: asyncio.subprocess.Process,
    work: asyncio.Future[object],
    cleanup_argv: tuple[str, ...] | None,
) -> None:
    """Stop a run: SIGTERM, then SIGKILL after a grace period, then cleanup."""
    try:
        if proc.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                proc.terminate()
        if not await _settle(work, TERMINATE_GRACE_S):
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            if not await _settle(work, KILL_GRACE_S):
                work.cancel()
    finally:
        if cleanup_argv:
            await _remove_leftovers(cleanup_argv)


async def _remove_leftovers(argv: tuple[str, ...]) -> None:
    # a killed container client does not stop the container itself
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
        await asyncio.wait_for(proc.wait(), CLEANUP_TIMEOUT_S)
    except (OSError, asyncio.TimeoutError) as exc:
        logger.warning(f"Cleanup {' '.join(argv)} failed: {exc!r}")


def _launch_failure_message(attempts: list[tuple[str, str]]) -> str:
    if len(attempts) == 1:
        label, reason = attempts[0]
        return f"Failed to start {label}: {reason}. Is the container runtime available on this host?"
    detail = "; ".join(f"{label}: {reason}" for label, reason in attempts)
    return f"No runner could be started ({detail})"
