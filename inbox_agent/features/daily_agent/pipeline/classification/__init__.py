"""
Classification package.

Applies category, sentiment and opportunity scores to candidates.
"""

from .service import ClassificationStage, apply_classification_guards

__all__ = ["ClassificationStage", "apply_classification_guards"]
