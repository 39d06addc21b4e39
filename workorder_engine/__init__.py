"""
Work-Order Engine

Facility-maintenance ticket workflow with:
- Ticket lifecycle state machine
- Cost approval gate
- Emergency incident tracking
- Escalation sweep
- Preventive maintenance ticket generation
"""

__version__ = "0.1.0"
