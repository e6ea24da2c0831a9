"""
Lexical import scanner.

Finds top-level module names in ``import`` and ``from ... import`` statements
without parsing the program, so malformed snippets still scan. Statements after
``;`` or a compound-statement ``:`` on the same line count too. Names inside
comments or strings that look like import statements are reported as well; a
spurious name can only over-block.
"""

from __future__ import annotations

import re

_DOTTED = r"[^\W\d][\w]*(?:[ \t]*\.[ \t]*[^\W\d]\w*)*"
_ALIAS = rf"{_DOTTED}(?:[ \t]+as[ \t]+[^\W\d]\w*)?"

_IMPORT_RE = re.compile(
    rf"(?:^|[;:])[ \t]*import[ \t]+(?P<names>{_ALIAS}(?:[ \t]*,[ \t]*{_ALIAS})*)",
    re.MULTILINE,
)
_FROM_RE = re.compile(
    rf"(?:^|[;:])[ \t]*from[ \t]+(?P<name>{_DOTTED})[ \t]+import\b",
    re.MULTILINE,
)
_CONTINUATION_RE = re.compile(r"\\\r?\n")


def _top_level(dotted: str) -> str:
    return dotted.split(".", 1)[0].strip()


def scan_imports(source: str) -> set[str]:
    """Return the distinct top-level module names imported by ``source``."""
    if not source:
        return set()
    text = _CONTINUATION_RE.sub(" ", source)
    modules: set[str] = set()

    for match in _IMPORT_RE.finditer(text):
        for item in match.group("names").split(","):
            dotted = item.strip().split()[0] if item.strip() else ""
            name = _top_level(dotted)
            if name:
                modules.add(name)

    for match in _FROM_RE.finditer(text):
        name = _top_level(match.group("name"))
        if name:
            modules.add(name)

    return modules
