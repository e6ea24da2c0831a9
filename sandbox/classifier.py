"""Capability classification of module references."""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from pyconsole_core.schemas import LoadMethod, ModuleRule, Verdict
from sandbox import policy
from sandbox.scanner import scan_imports


class CapabilityClassifier:
    """Closed-world allow/deny policy over top-level module names.

    Unlisted names are assumed to be part of the interpreter's standard
    library or otherwise harmless and classify as ``Verdict.BUILTIN``.
    """

    def __init__(
        self,
        allowed: Mapping[str, ModuleRule] | None = None,
        denied: Iterable[str] | None = None,
    ) -> None:
        self._allowed: Mapping[str, ModuleRule] = allowed if allowed is not None else policy.ALLOWED_MODULES
        self._denied: frozenset[str] = frozenset(denied) if denied is not None else policy.DENIED_MODULES

    @classmethod
    def from_overrides(
        cls,
        allowed: Mapping[str, Mapping[str, str]] | None,
        denied: Iterable[str] | None,
    ) -> "CapabilityClassifier":
        return cls(policy.freeze_allow_table(allowed), policy.freeze_deny_set(denied))

    @property
    def denied(self) -> frozenset[str]:
        return self._denied

    def verdict(self, module: str) -> Verdict:
        if module in self._denied:
            return Verdict.UNSUPPORTED
        rule = self._allowed.get(module)
        if rule is None:
            return Verdict.BUILTIN
        if rule.load_method is LoadMethod.NATIVE:
            return Verdict.SANDBOX_NATIVE
        return Verdict.SANDBOX_INSTALLABLE

    def rule_for(self, module: str) -> ModuleRule | None:
        return self._allowed.get(module)

    def classify(self, code: str) -> dict[str, Verdict]:
        return {module: self.verdict(module) for module in scan_imports(code)}

    def unsupported(self, code: str) -> list[str]:
        return sorted(m for m, v in self.classify(code).items() if v is Verdict.UNSUPPORTED)

    def packages_for(self, verdicts: Mapping[str, Verdict], wanted: Verdict) -> list[str]:
        """Distinct package names for modules with the given verdict."""
        packages: list[str] = []
        for module in sorted(verdicts):
            if verdicts[module] is not wanted:
                continue
            rule = self._allowed.get(module)
            package = rule.package_name if rule else module
            if package not in packages:
                packages.append(package)
        return packages

    def server_only_reason(self, code: str) -> str:
        blocked = self.unsupported(code)
        if not blocked:
            return ""
        return f"Requires native packages not available in the sandbox: {', '.join(blocked)}"
