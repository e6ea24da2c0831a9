"""Error taxonomy for the execution subsystem."""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum


class ErrorKind(str, Enum):
    CLASSIFICATION_BLOCK = "classification_block"
    BOOTSTRAP_FAILURE = "bootstrap_failure"
    OPTIONAL_DEPENDENCY_FAILURE = "optional_dependency_failure"
    PACKAGE_LOAD_FAILURE = "package_load_failure"
    PROCESS_LAUNCH_FAILURE = "process_launch_failure"
    PROCESS_RUNTIME_FAILURE = "process_runtime_failure"
    PROGRAM_ERROR = "program_error"
    INVALID_SNIPPET = "invalid_snippet"
    CANCELED = "canceled"
    TIMEOUT = "timeout"
    INTERNAL = "internal"


class ConsoleError(Exception):
    kind: ErrorKind = ErrorKind.INTERNAL


class InvalidSnippet(ConsoleError):
    kind = ErrorKind.INVALID_SNIPPET


class ClassificationBlock(ConsoleError):
    """Raised before any interpreter work when a snippet needs unsupported modules."""

    kind = ErrorKind.CLASSIFICATION_BLOCK

    def __init__(self, modules: Iterable[str]) -> None:
        self.modules: list[str] = sorted(set(modules))
        super().__init__(
            "These packages are not supported in the sandbox: "
            f"{', '.join(self.modules)}. Run it on the isolated backend instead."
        )


class BootstrapFailure(ConsoleError):
    kind = ErrorKind.BOOTSTRAP_FAILURE


class OptionalDependencyFailure(ConsoleError):
    kind = ErrorKind.OPTIONAL_DEPENDENCY_FAILURE

    def __init__(self, package: str, reason: str) -> None:
        self.package = package
        self.reason = reason
        super().__init__(f"install failed for {package}: {reason}")


class PackageLoadFailure(ConsoleError):
    kind = ErrorKind.PACKAGE_LOAD_FAILURE

    def __init__(self, package: str, reason: str) -> None:
        self.package = package
        self.reason = reason
        super().__init__(f"Failed to load package {package}: {reason}")


class ProcessLaunchFailure(ConsoleError):
    """Neither launch tier of the isolated runner could start."""

    kind = ErrorKind.PROCESS_LAUNCH_FAILURE

    def __init__(self, message: str, attempts: list[tuple[str, str]] | None = None) -> None:
        self.attempts = list(attempts or [])
        super().__init__(message)
