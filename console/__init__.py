"""
Console Module

Uniform entry point over the embedded sandbox and the isolated runner.

This module provides:
- ExecutionService (prepare, classify, run on either backend)
- Fault containment: every failure becomes a result diagnostic
- The ``pyconsole`` command line interface
"""

__version__ = "0.1.0"
