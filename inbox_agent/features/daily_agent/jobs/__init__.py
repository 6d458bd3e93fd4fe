"""
Job runners for the daily agent feature.
"""

from .daily_agent_job import run_daily_agent_sweep, start_daily_agent_scheduler

__all__ = ["start_daily_agent_scheduler", "run_daily_agent_sweep"]
