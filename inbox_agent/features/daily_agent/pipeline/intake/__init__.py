"""
Intake package.

Collects candidate messages for a run and caches conversation context.
"""

from .service import MessageIntakeService

__all__ = ["MessageIntakeService"]
