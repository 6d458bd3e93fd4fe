"""
Priority scoring package.

Scores candidates and splits them into digest tiers and overflow.
"""

from .service import PriorityScoringStage, build_digest, rank_for_digest, score_message

__all__ = ["PriorityScoringStage", "build_digest", "rank_for_digest", "score_message"]
