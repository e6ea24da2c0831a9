"""
Sandbox policy tables and import/builtin guards.
"""

from __future__ import annotations

import builtins
from collections.abc import Callable, Iterable, Mapping, Sequence
from types import MappingProxyType, ModuleType
from typing import cast

from pyconsole_core.schemas import LoadMethod, ModuleRule

ImportHook = Callable[
    [str, Mapping[str, object] | None, Mapping[str, object] | None, Sequence[str], int],
    ModuleType,
]

# import name -> how the embedded sandbox obtains it
ALLOWED_MODULES: Mapping[str, ModuleRule] = MappingProxyType({
    "numpy": ModuleRule(LoadMethod.NATIVE, "numpy"),
    "pandas": ModuleRule(LoadMethod.NATIVE, "pandas"),
    "matplotlib": ModuleRule(LoadMethod.NATIVE, "matplotlib"),
    "seaborn": ModuleRule(LoadMethod.INSTALLABLE, "seaborn"),
    "polars": ModuleRule(LoadMethod.INSTALLABLE, "polars"),
})

# need native extensions the sandbox cannot provide
DENIED_MODULES: frozenset[str] = frozenset({
    "sklearn",
    "scikit-learn",
    "xgboost",
    "lightgbm",
    "torch",
    "tensorflow",
    "jax",
    "cv2",
})

# OS capabilities the in-process interpreter never exposes to snippets
RESTRICTED_MODULES: frozenset[str] = frozenset({
    "subprocess",
    "socket",
    "ctypes",
    "multiprocessing",
    "signal",
    "pty",
    "resource",
})

BLOCKED_BUILTINS: frozenset[str] = frozenset({
    "open",
    "input",
    "breakpoint",
})


def freeze_allow_table(overrides: Mapping[str, Mapping[str, str]] | None) -> Mapping[str, ModuleRule]:
    """Build an immutable allow table from configuration overrides."""
    if overrides is None:
        return ALLOWED_MODULES
    table: dict[str, ModuleRule] = {}
    for module, rule in overrides.items():
        method = LoadMethod(str(rule.get("load_method", LoadMethod.NATIVE.value)))
        table[module] = ModuleRule(method, str(rule.get("package_name") or module))
    return MappingProxyType(table)


def freeze_deny_set(overrides: Iterable[str] | None) -> frozenset[str]:
    if overrides is None:
        return DENIED_MODULES
    return frozenset(overrides)


def build_import_guard(
    blocked_modules: Iterable[str] | None = None,
    original_import: ImportHook | None = None,
) -> ImportHook:
    """
    Build an __import__ hook that refuses blocked modules and passes
    everything else through.
    """
    blocked = frozenset(blocked_modules if blocked_modules is not None else DENIED_MODULES | RESTRICTED_MODULES)
    delegate = original_import or cast(ImportHook, builtins.__import__)

    def guarded_import(
        name: str,
        globals: Mapping[str, object] | None = None,
        locals: Mapping[str, object] | None = None,
        fromlist: Sequence[str] = (),
        level: int = 0,
    ) -> ModuleType:
        root = name.split(".")[0]
        if level == 0 and (root in blocked or name in blocked):
            raise ImportError(f"Import of '{root}' blocked by sandbox policy")
        return delegate(name, globals, locals, fromlist, level)

    return guarded_import


def _blocked(*_args: object, **_kwargs: object) -> None:
    raise RuntimeError("Blocked by sandbox policy")


def restricted_builtins(
    blocked_modules: Iterable[str] | None = None,
    blocked_names: Iterable[str] | None = None,
) -> dict[str, object]:
    """Return a copy of builtins for a sandbox namespace.

    The host's builtins module is never modified; only the returned mapping
    carries the guarded ``__import__`` and the disabled names.
    """
    table = dict(vars(builtins))
    table["__import__"] = build_import_guard(blocked_modules)
    for name in blocked_names if blocked_names is not None else BLOCKED_BUILTINS:
        if name in table:
            table[name] = _blocked
    return table
