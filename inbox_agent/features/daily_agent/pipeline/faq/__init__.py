from .service import FAQStage

__all__ = ["FAQStage"]
