"""
Service layer for the daily agent feature.
"""

from .scheduler import DailyAgentScheduler, is_due
from .workflow_service import DailyAgentWorkflow, build_daily_agent_workflow

__all__ = [
    "DailyAgentScheduler",
    "is_due",
    "DailyAgentWorkflow",
    "build_daily_agent_workflow",
]
