from .service import DigestNotifier, summarize_run

__all__ = ["DigestNotifier", "summarize_run"]
