"""
Auto-archive package.

Archives overflow messages and sends rate-limited boundary replies.
"""

from .service import AutoArchiveService, is_protected

__all__ = ["AutoArchiveService", "is_protected"]
