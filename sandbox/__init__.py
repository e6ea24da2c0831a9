"""
Sandbox Module

Capability-restricted in-process execution of short snippets.

This module provides:
- Lexical import scanning
- Allow/deny capability classification
- A guarded in-process interpreter (restricted builtins and imports)
- A singleton runtime manager with coalesced bootstrap

WARNING: This sandbox is NOT a security boundary. It keeps well-meaning
programs away from capabilities the embedded interpreter does not offer;
it does not contain a motivated adversary.
"""

__version__ = "0.1.0"
