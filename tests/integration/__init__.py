"""
agent-governance — integration test package

File: tests/integration/__init__.py

Purpose
- Test package marker for cross-service and CLI tests.

Functional requirements
- Must not import heavy modules at import time; keep test collection fast.
- Must not touch the network; every test works inside ``tmp_path``.
"""
