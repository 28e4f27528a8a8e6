"""
Approval Kernel - expense approval rule engine core.

Domain types, typed exceptions, structured logging, collaborator
protocols, the append-only audit trail, and the approval service facade:
- Deterministic rule selection
- All-or-nothing workflow planning
- Per-expense serialized approval state transitions
- Escalation and delegation handling
- Replayable, hash-chained audit events
"""

__version__ = "0.1.0"
