"""
agent-governance — package root

File: src/agent_governance/__init__.py

Purpose
- Governance substrate for AI agents: audit log, skill lifecycle, budgets,
  risk scoring, traces with retention, workspace versions and promotion.

Functional requirements
- No side effects at import time (no config loading, no logging setup, no DB).
- Services are wired explicitly through ``agent_governance.services``.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
