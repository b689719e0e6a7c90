"""
Relevance package for RealFocus.

Decides whether a page is on-task for the user's focus keywords:
rules, embedding similarity, and the language-model judge.
"""

from relevance.classifier import RelevanceClassifier, ValidationError
from relevance.provider import OpenAIRelevanceProvider, ProviderError, MalformedJudgmentError
from relevance.result import ClassificationResult, STATUS_STAY, STATUS_BLOCK
from relevance.rules import ClassifierRules, DEFAULT_RULES, RulesManager, extract_domain

__all__ = [
    "RelevanceClassifier",
    "ValidationError",
    "OpenAIRelevanceProvider",
    "ProviderError",
    "MalformedJudgmentError",
    "ClassificationResult",
    "STATUS_STAY",
    "STATUS_BLOCK",
    "ClassifierRules",
    "DEFAULT_RULES",
    "RulesManager",
    "extract_domain",
]
