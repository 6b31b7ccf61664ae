"""Prompt templates for the scoring, summary, and query agents.

PROMPT_PACK_VERSION is reported by /api/version so scores can be traced to
the prompt wording that produced them.
"""

PROMPT_PACK_VERSION = "2026.10.1"
