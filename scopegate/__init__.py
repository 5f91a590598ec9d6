"""scopegate - file-backed coordination for concurrent workers.

Governance rules, scope reservations, task/chain lifecycles, stage gates and
handoff checks over a shared project tree. No server, no database.
"""

__version__ = "0.4.0"
