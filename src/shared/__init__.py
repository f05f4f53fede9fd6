"""
Shared Kernel Module
====================

Generic infrastructure and API plumbing used by the SLA bounded context.

Architecture Pattern: Modular Monolith
- Each module (sla) is a bounded context
- Shared kernel contains only generic infrastructure (logging, middleware)

DO NOT add SLA business logic to the shared kernel.
"""

__version__ = "1.0.0"
