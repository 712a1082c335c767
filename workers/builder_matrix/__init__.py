"""
builder_matrix — multi-component, multi-architecture native build orchestrator.

Detect a vendor C++ toolchain, resolve CPU-architecture flags, compile each
component once, keep going past failures, then smoke-test and audit the
linkage of every produced binary.
"""

__version__ = "0.1.0"
PACKAGE_NAME = "builder_matrix"
SCHEMA_VERSION = "0.1"
