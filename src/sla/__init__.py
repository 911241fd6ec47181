"""
SLA Module
==========

Bounded context for ticket SLA tracking.

Responsibilities:
- Compute response/resolution deadlines from priority and SLA profile
- Business-hours calendar arithmetic
- Ticket status transitions and SLA milestone stamping
- Compliance evaluation and sla_breach events
- Ticket API and the periodic automation sweep
"""

__version__ = "1.0.0"
