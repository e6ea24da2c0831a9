"""
Runner Module

Out-of-process execution of snippets with full native capability.

This module provides:
- An explicit, ordered launch chain (container first, optional local fallback)
- Asynchronous process execution with stdin program delivery
- Incremental, independent capture of stdout and stderr
- Caller-driven cancellation and optional timeouts

WARNING: Isolation is process/container separation for a trusted classroom,
not a security boundary against hostile code.
"""

__version__ = "0.1.0"
