"""
SLA Monitoring Module
=====================

Bounded Context for first-response SLA monitoring and escalation.

Responsibilities:
- Compute each open thread's SLA state (ok / warning / breached)
- Escalate once per transition into a more severe state
- Manage tenant SLA policies (ADMIN and above)
- Serve per-thread and per-tenant SLA views for the inbox

Features:
- POST /sla/monitor (on-demand run) and a background APScheduler job
- Business-hours aware deadlines with holidays
- Slack and in-app notification escalations
- Monitor tuning hot-reload via watchdog
"""

__version__ = "1.0.0"
