"""
Zero-cost classifier for UI testing.

Enabled with MOCK_API_ENABLED. Returns canned judgments by URL so every
UI path (grace countdown, block, pass) can be exercised without API calls.
"""

import logging
from typing import Optional

from relevance.classifier import RelevanceClassifier
from relevance.result import ClassificationResult, STATUS_BLOCK, STATUS_STAY, SOURCE_MOCK

logger = logging.getLogger(__name__)

GRACE_PERIOD_MARKERS = ("google.com/search", "xiaohongshu.com")
BLOCK_MARKERS = ("weibo.com", "bilibili.com", "douyin.com")
PASS_MARKERS = ("vercel.com/docs", "github.com", "gemini.google.com")


class MockClassifier:
    """Drop-in replacement for RelevanceClassifier.classify."""

    async def classify(
        self,
        keywords: str,
        title: str,
        url: str,
        content_snippet: Optional[str] = None,
    ) -> ClassificationResult:
        RelevanceClassifier._validate(keywords, title, url)
        logger.info(f"[MOCK] Using mock classification for: {url}")

        if any(marker in url for marker in GRACE_PERIOD_MARKERS):
            return ClassificationResult(
                score=50,
                status=STATUS_STAY,
                reason="Search page or distracting platform, 30 seconds allowed",
                requires_grace_period=True,
                source=SOURCE_MOCK,
            )

        if any(marker in url for marker in BLOCK_MARKERS):
            return ClassificationResult(
                score=15,
                status=STATUS_BLOCK,
                reason="Page is not related to the current task",
                source=SOURCE_MOCK,
            )

        if any(marker in url for marker in PASS_MARKERS):
            return ClassificationResult(
                score=85,
                status=STATUS_STAY,
                reason="Core tool chain documentation, access allowed",
                source=SOURCE_MOCK,
            )

        return ClassificationResult(
            score=60,
            status=STATUS_STAY,
            reason="Content is related to the task, access allowed",
            source=SOURCE_MOCK,
        )
