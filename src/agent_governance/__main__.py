"""Module entrypoint for ``python -m agent_governance``."""

from __future__ import annotations

from agent_governance.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
