from .service import DraftStage

__all__ = ["DraftStage"]
