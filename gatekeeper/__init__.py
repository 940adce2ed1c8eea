"""gatekeeper - workflow enforcement for handoffs between coding agents.

Tracks tasks through a status lifecycle, certifies red/green/refactor
phases, and runs the quality-gate battery that decides whether a handoff
may proceed.
"""

__version__ = "0.4.0"
