"""API route modules for the sales sync orchestrator.

Routers:
- orchestrator: lifecycle control, manual sync, status and health
"""

from .orchestrator import router as orchestrator_router

__all__ = ["orchestrator_router"]
