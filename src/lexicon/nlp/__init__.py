"""Model-backed validation, correction and extraction."""

from lexicon.nlp.judge import ClaudeJudge, EntryJudge, JudgeError, JudgeQuotaExceeded
from lexicon.nlp.models import ExtractedEntry, PageImage, ValidationJudgment

__all__ = [
    "ClaudeJudge",
    "EntryJudge",
    "ExtractedEntry",
    "JudgeError",
    "JudgeQuotaExceeded",
    "PageImage",
    "ValidationJudgment",
]
