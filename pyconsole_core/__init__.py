"""
PyConsole Core Module

Shared data model, error taxonomy and startup configuration for the
code-execution subsystem.

This module provides:
- ExecutionResult and RuntimeBackend (uniform result shape for both backends)
- Capability verdicts and allow-table rules
- ConsoleError hierarchy tagged with ErrorKind
- ConsoleConfig loaded from YAML and environment
"""

__version__ = "0.1.0"
