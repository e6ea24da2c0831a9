import asyncio
import sys

import pytest

from pyconsole_core.config import ConsoleConfig
from pyconsole_core.errors import ErrorKind, ProcessLaunchFailure
from pyconsole_core.schemas import BackendKind, LaunchTier
from runner.process import IsolatedRunner
from runner.tiers import NAME_PLACEHOLDER, LaunchSpec, build_launch_chain

MISSING = "/nonexistent/container-runtime-xyz"


def _local(tier=LaunchTier.PRIMARY, label="local:test"):
    return LaunchSpec(tier, label, (sys.executable, "-I", "-"))


def _missing(tier=LaunchTier.PRIMARY, label="docker:python-ml:latest"):
    return LaunchSpec(tier, label, (MISSING, "run", "--rm", "-i", "python-ml:latest", "python", "-I", "-"))


def _run(runner, code, **kwargs):
    return asyncio.run(runner.run(code, **kwargs))


def test_runs_snippet_from_stdin():
    result = _run(IsolatedRunner([_local()]), "print(1+1)")
    assert result.exit_code == 0
    assert result.stdout.strip() == "2"
    assert result.backend.kind is BackendKind.ISOLATED_PROCESS
    assert result.backend.tier is LaunchTier.PRIMARY
    assert result.diagnostic is None


def test_fallback_used_when_primary_missing():
    runner = IsolatedRunner([_missing(), _local(LaunchTier.FALLBACK, "local:python")])
    result = _run(runner, "print('hi')")
    assert result.stdout == "hi\n"
    assert result.backend.tier is LaunchTier.FALLBACK
    assert str(result.backend) == "local:python"


def test_primary_missing_without_fallback_fails():
    with pytest.raises(ProcessLaunchFailure) as info:
        _run(IsolatedRunner([_missing()]), "print(1)")
    message = str(info.value)
    assert "docker:python-ml:latest" in message
    assert info.value.attempts[0][0] == "docker:python-ml:latest"


def test_both_tiers_missing_fails_with_both_reasons():
    runner = IsolatedRunner([_missing(), _missing(LaunchTier.FALLBACK, "local:python")])
    with pytest.raises(ProcessLaunchFailure) as info:
        _run(runner, "print(1)")
    assert [label for label, _ in info.value.attempts] == ["docker:python-ml:latest", "local:python"]
    assert "local:python" in str(info.value)


def test_container_launch_failure_exit_code_falls_back():
    broken_daemon = LaunchSpec(
        LaunchTier.PRIMARY,
        "docker:python-ml:latest",
        (sys.executable, "-c", "import sys; sys.stderr.write('Cannot connect to the daemon\\n'); sys.exit(125)"),
        frozenset({125}),
    )
    runner = IsolatedRunner([broken_daemon, _local(LaunchTier.FALLBACK, "local:python")])
    result = _run(runner, "print('fallback ran')")
    assert result.stdout == "fallback ran\n"
    assert result.backend.tier is LaunchTier.FALLBACK


def test_launch_failure_codes_only_apply_to_their_tier():
    result = _run(IsolatedRunner([_local()]), "import sys; sys.exit(125)")
    assert result.exit_code == 125
    assert result.diagnostic is None


def test_failing_program_is_ordinary_result():
    result = _run(IsolatedRunner([_local()]), "print('start')\nraise ValueError('boom')\n")
    assert result.exit_code == 1
    assert result.stdout == "start\n"
    assert "ValueError: boom" in result.stderr
    assert result.diagnostic is None
    assert result.error_kind is ErrorKind.PROCESS_RUNTIME_FAILURE


def test_large_output_is_fully_captured():
    result = _run(IsolatedRunner([_local()]), "for i in range(20000):\n    print(i)\n")
    lines = result.stdout.splitlines()
    assert len(lines) == 20000
    assert lines[0] == "0" and lines[-1] == "19999"


def test_streams_are_independent_and_ordered():
    code = "import sys\nfor i in range(5):\n    print(i)\n    print('e%d' % i, file=sys.stderr)\n"
    chunks = []
    result = _run(IsolatedRunner([_local()]), code, on_output=lambda s, t: chunks.append((s, t)))
    assert result.stdout == "0\n1\n2\n3\n4\n"
    assert result.stderr == "e0\ne1\ne2\ne3\ne4\n"
    assert "".join(t for s, t in chunks if s == "stdout") == result.stdout
    assert "".join(t for s, t in chunks if s == "stderr") == result.stderr


def test_unicode_output():
    result = _run(IsolatedRunner([_local()]), "print('héllo ✓')")
    assert result.stdout == "héllo ✓\n"


def test_timeout_kills_process():
    result = _run(IsolatedRunner([_local()]), "import time\nprint('started', flush=True)\ntime.sleep(30)\n", timeout_s=1.0)
    assert result.canceled is True
    assert result.exit_code is None
    assert result.error_kind is ErrorKind.TIMEOUT
    assert result.diagnostic == "Execution timed out after 1s"
    assert result.stdout == "started\n"


def test_stop_sends_sigterm_before_kill():
    code = (
        "import signal, sys, time\n"
        "def stop(*_):\n"
        "    print('terminated', flush=True)\n"
        "    sys.exit(0)\n"
        "signal.signal(signal.SIGTERM, stop)\n"
        "print('ready', flush=True)\n"
        "time.sleep(30)\n"
    )
    result = _run(IsolatedRunner([_local()]), code, timeout_s=1.5)
    assert result.canceled is True
    assert result.stdout == "ready\nterminated\n"


def _recording_spec(marker):
    # cleanup writes the launch name it was given into ``marker``
    return LaunchSpec(
        LaunchTier.PRIMARY,
        "docker:python-ml:latest",
        (sys.executable, "-I", "-"),
        cleanup_argv=(
            sys.executable,
            "-c",
            "import sys; open(sys.argv[1], 'w').write(sys.argv[2])",
            str(marker),
            NAME_PLACEHOLDER,
        ),
    )


def test_stopped_run_removes_its_container(tmp_path):
    marker = tmp_path / "removed.txt"
    result = _run(IsolatedRunner([_recording_spec(marker)]), "import time\ntime.sleep(30)\n", timeout_s=0.5)
    assert result.canceled is True
    assert marker.read_text().startswith("pyconsole-")


def test_finished_run_skips_cleanup(tmp_path):
    marker = tmp_path / "removed.txt"
    result = _run(IsolatedRunner([_recording_spec(marker)]), "print(1)")
    assert result.exit_code == 0
    assert not marker.exists()


def test_cancel_event_terminates_run():
    runner = IsolatedRunner([_local()])

    async def main():
        cancel = asyncio.Event()
        asyncio.get_running_loop().call_later(0.5, cancel.set)
        return await runner.run("import time\ntime.sleep(30)\n", cancel=cancel)

    result = asyncio.run(main())
    assert result.canceled is True
    assert result.error_kind is ErrorKind.CANCELED
    assert result.diagnostic == "Execution canceled"


def test_task_cancellation_propagates():
    runner = IsolatedRunner([_local()])

    async def main():
        task = asyncio.ensure_future(runner.run("import time\ntime.sleep(30)\n"))
        await asyncio.sleep(0.5)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(main())


def test_concurrent_runs_are_independent():
    runner = IsolatedRunner([_local()])

    async def main():
        return await asyncio.gather(*(runner.run(f"print({i} * 10)") for i in range(4)))

    results = asyncio.run(main())
    assert [r.stdout.strip() for r in results] == ["0", "10", "20", "30"]


def test_empty_chain_rejected():
    with pytest.raises(ValueError):
        IsolatedRunner([])


class TestLaunchChain:
    def test_default_chain_is_container_only(self):
        chain = build_launch_chain(ConsoleConfig())
        assert len(chain) == 1
        assert chain[0].tier is LaunchTier.PRIMARY
        assert chain[0].label == "docker:python-ml:latest"
        command = chain[0].command()
        name = command.argv[5]
        assert name.startswith("pyconsole-")
        assert command.argv == ("docker", "run", "--rm", "-i", "--name", name, "python-ml:latest", "python", "-I", "-")
        assert command.cleanup_argv == ("docker", "rm", "-f", name)

    def test_each_launch_gets_a_fresh_container_name(self):
        spec = build_launch_chain(ConsoleConfig())[0]
        assert spec.command().argv[5] != spec.command().argv[5]

    def test_fallback_appended_when_enabled(self):
        config = ConsoleConfig(allow_local_fallback=True, container_image="py:3.12")
        chain = build_launch_chain(config)
        assert [spec.tier for spec in chain] == [LaunchTier.PRIMARY, LaunchTier.FALLBACK]
        assert chain[0].label == "docker:py:3.12"
        assert chain[1].label == "local:python"
        assert chain[1].argv == ("python", "-I", "-")
        assert chain[1].launch_failure_codes == frozenset()
        assert chain[1].command().cleanup_argv is None

    def test_runner_from_config(self):
        runner = IsolatedRunner.from_config(ConsoleConfig(isolated_timeout_s=3.0))
        assert runner.timeout_s == 3.0
        assert len(runner.chain) == 1
