"""
Pipeline stages for the daily agent.

Each subpackage is one stage of a run, in order: intake, classification,
faq, drafting, scoring, archive, summary.
"""

__all__ = ["intake", "classification", "faq", "drafting", "scoring", "archive", "summary"]
