"""
kscope Command-Line Interface
=============================

- **kscc**: Kaleidoscope compiler driver

The tool is a Click-based CLI application with help and error reporting.
"""

__all__ = ["kscc"]
