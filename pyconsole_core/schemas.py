"""Data model shared by the embedded sandbox, the isolated runner and the façade."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from pyconsole_core.errors import ErrorKind


class Verdict(str, Enum):
    BUILTIN = "builtin"
    SANDBOX_NATIVE = "sandbox_native"
    SANDBOX_INSTALLABLE = "sandbox_installable"
    UNSUPPORTED = "unsupported"


class LoadMethod(str, Enum):
    NATIVE = "native"
    INSTALLABLE = "installable"


@dataclass(frozen=True)
class ModuleRule:
    """How an allow-listed module reaches the embedded sandbox."""

    load_method: LoadMethod
    package_name: str


class BackendKind(str, Enum):
    EMBEDDED_SANDBOX = "embedded_sandbox"
    ISOLATED_PROCESS = "isolated_process"


class LaunchTier(str, Enum):
    PRIMARY = "primary"
    FALLBACK = "fallback"


class SandboxState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"


@dataclass(frozen=True)
class RuntimeBackend:
    kind: BackendKind
    tier: LaunchTier | None = None
    label: str = ""

    @classmethod
    def embedded(cls) -> "RuntimeBackend":
        return cls(BackendKind.EMBEDDED_SANDBOX, None, "embedded:sandbox")

    @classmethod
    def isolated(cls, tier: LaunchTier, label: str) -> "RuntimeBackend":
        return cls(BackendKind.ISOLATED_PROCESS, tier, label)

    def __str__(self) -> str:
        return self.label or self.kind.value


@dataclass
class ExecutionResult:
    exit_code: int | None = None
    stdout: str = ""
    stderr: str = ""
    backend: RuntimeBackend | None = None
    diagnostic: str | None = None
    error_kind: ErrorKind | None = None
    runtime_ms: float = 0.0
    canceled: bool = False
    loaded_packages: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.diagnostic is None and self.exit_code == 0

    def to_dict(self) -> dict[str, object]:
        return {
            "code": self.exit_code,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "runner": str(self.backend) if self.backend else None,
            "backend": self.backend.kind.value if self.backend else None,
            "tier": self.backend.tier.value if self.backend and self.backend.tier else None,
            "diagnostic": self.diagnostic,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "runtime_ms": self.runtime_ms,
            "canceled": self.canceled,
            "loaded_packages": list(self.loaded_packages),
        }
