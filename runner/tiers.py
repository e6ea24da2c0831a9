"""Launch chain for the isolated runner."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from pathlib import PurePath

from pyconsole_core.config import ConsoleConfig
from pyconsole_core.schemas import LaunchTier, RuntimeBackend

# docker run: 125 daemon/run error, 126 command not invokable, 127 command not found
CONTAINER_LAUNCH_FAILURE_CODES = frozenset({125, 126, 127})

# replaced with a fresh name for every launch
NAME_PLACEHOLDER = "{name}"
NAME_PREFIX = "pyconsole-"


@dataclass(frozen=True)
class LaunchCommand:
    argv: tuple[str, ...]
    # removes whatever the launch left behind when the run is stopped early
    cleanup_argv: tuple[str, ...] | None = None


@dataclass(frozen=True)
class LaunchSpec:
    tier: LaunchTier
    label: str
    argv: tuple[str, ...]
    # exit codes that mean the launcher itself failed, when no stdout was produced
    launch_failure_codes: frozenset[int] = field(default_factory=frozenset)
    cleanup_argv: tuple[str, ...] | None = None

    @property
    def backend(self) -> RuntimeBackend:
        return RuntimeBackend.isolated(self.tier, self.label)

    def command(self) -> LaunchCommand:
        name = f"{NAME_PREFIX}{uuid.uuid4().hex[:12]}"

        def fill(argv: tuple[str, ...]) -> tuple[str, ...]:
            return tuple(name if part == NAME_PLACEHOLDER else part for part in argv)

        cleanup = fill(self.cleanup_argv) if self.cleanup_argv else None
        return LaunchCommand(fill(self.argv), cleanup)


def container_spec(config: ConsoleConfig) -> LaunchSpec:
    executable = config.container_executable
    argv = (
        executable,
        "run",
        "--rm",
        "-i",
        "--name",
        NAME_PLACEHOLDER,
        config.container_image,
        config.container_python,
        *config.python_flags,
    )
    label = f"{PurePath(executable).name}:{config.container_image}"
    return LaunchSpec(
        LaunchTier.PRIMARY,
        label,
        argv,
        CONTAINER_LAUNCH_FAILURE_CODES,
        cleanup_argv=(executable, "rm", "-f", NAME_PLACEHOLDER),
    )


def local_spec(config: ConsoleConfig) -> LaunchSpec:
    label = f"local:{PurePath(config.local_python).name}"
    return LaunchSpec(LaunchTier.FALLBACK, label, (config.local_python, *config.python_flags))


def build_launch_chain(config: ConsoleConfig) -> list[LaunchSpec]:
    """Ordered attempts; the first tier that starts wins."""
    chain = [container_spec(config)]
    if config.allow_local_fallback:
        chain.append(local_spec(config))
    return chain
