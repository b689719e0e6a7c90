"""
Relevance classification for RealFocus.

Pipeline for one page:

1. Domain and keyword rules (pure functions of url/title/snippet).
2. Work searches on a distracting platform get a grace period and stop here.
3. Embedding similarity between the focus keywords and the page text.
4. Meta-task and toolchain overrides lift low scores into the judge band.
5. Three tiers: fast pass (>= 75), fast block (<= 20, non-toolchain),
   everything else goes to the language-model judge.

Provider failures and timeouts never escape: they degrade to a score
derived from the semantic similarity.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

import config
from relevance.provider import ProviderError
from relevance.result import (
    ClassificationResult,
    STATUS_BLOCK,
    STATUS_STAY,
    SOURCE_FALLBACK,
    SOURCE_FAST_BLOCK,
    SOURCE_FAST_PASS,
    SOURCE_INTERFERENCE_SEARCH,
    SOURCE_JUDGE,
    status_for_score,
)
from relevance.rules import ClassifierRules, DEFAULT_RULES, extract_domain

logger = logging.getLogger(__name__)

FALLBACK_REASON = "fallback"

_CJK_RE = re.compile(r"[㐀-鿿]")


class ValidationError(ValueError):
    """A required classification input is missing. Raised before any network call."""


def prefers_chinese(text: str) -> bool:
    """True when the text contains CJK characters."""
    return bool(_CJK_RE.search(text or ""))


def localized(keywords: str, english: str, chinese: str) -> str:
    """Pick the message in the language of the focus keywords."""
    return chinese if prefers_chinese(keywords) else english


def cosine_score(vec_a: Sequence[float], vec_b: Sequence[float]) -> int:
    """
    Cosine similarity scaled to an integer 0-100.

    Negative similarity clamps to 0; a zero vector scores 0.
    """
    a = np.asarray(vec_a, dtype=float)
    b = np.asarray(vec_b, dtype=float)
    norm = np.linalg.norm(a) * np.linalg.norm(b)
    if norm == 0 or a.shape != b.shape:
        return 0
    cosine = float(np.dot(a, b) / norm)
    # Half-up rounding on a non-negative value
    return int(max(0.0, min(1.0, cosine)) * 100 + 0.5)


def build_page_text(title: str, content_snippet: Optional[str]) -> str:
    """Text embedded for the page: title plus snippet when there is one."""
    if content_snippet and content_snippet.strip():
        return f"Title: {title.strip()}. Content: {content_snippet.strip()}"
    return f"Title: {title.strip()}"


@dataclass
class PageSignals:
    """Rule evaluation for one page, logged with every decision."""

    domain: Optional[str]
    is_interference_domain: bool
    is_toolchain_domain: bool
    has_meta_task_keyword: bool
    has_toolchain_keyword: bool
    is_documentation_page: bool


class RelevanceClassifier:
    """
    Decides whether a page is on-task for the current focus keywords.

    The provider must expose `embed(text)` and `judge(prompt)` coroutines
    that raise ProviderError on failure.
    """

    def __init__(
        self,
        provider,
        rules: Optional[ClassifierRules] = None,
        embedding_timeout: Optional[float] = None,
        judge_timeout: Optional[float] = None,
    ):
        self.provider = provider
        self.rules = rules or DEFAULT_RULES
        self.embedding_timeout = (
            config.EMBEDDING_TIMEOUT_SECONDS if embedding_timeout is None else embedding_timeout
        )
        self.judge_timeout = config.JUDGE_TIMEOUT_SECONDS if judge_timeout is None else judge_timeout

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def evaluate_signals(self, url: str, title: str, content_snippet: Optional[str] = None) -> PageSignals:
        domain = extract_domain(url)
        if domain is None:
            logger.warning(f"Could not extract domain from URL: {url}")
        return PageSignals(
            domain=domain,
            is_interference_domain=self.rules.is_interference_domain(domain),
            is_toolchain_domain=self.rules.is_toolchain_domain(domain),
            has_meta_task_keyword=self.rules.has_meta_task_keyword(url, title, content_snippet),
            has_toolchain_keyword=self.rules.has_toolchain_keyword(url, title, content_snippet),
            is_documentation_page=self.rules.is_documentation_page(url, title),
        )

    async def classify(
        self,
        keywords: str,
        title: str,
        url: str,
        content_snippet: Optional[str] = None,
    ) -> ClassificationResult:
        """
        Classify a page against the focus keywords.

        Args:
            keywords: Focus keywords (required, non-empty)
            title: Page title (required)
            url: Page URL (required)
            content_snippet: Normalized page text, up to 500 characters

        Returns:
            ClassificationResult. Provider failures are folded into a
            fallback result rather than raised.

        Raises:
            ValidationError: If a required field is missing.
        """
        self._validate(keywords, title, url)
        rules = self.rules
        signals = self.evaluate_signals(url, title, content_snippet)
        logger.debug(f"Signals for {url}: {signals}")

        # Work-related search on a distracting platform: grace period, no scoring
        if signals.has_meta_task_keyword and signals.is_interference_domain:
            logger.info(f"Meta-Task search detected on interference domain: {signals.domain}")
            return ClassificationResult(
                score=rules.interference_search_score,
                status=STATUS_STAY,
                reason=localized(
                    keywords,
                    "Work-related search on a distracting platform. A short time limit applies.",
                    "检测到在干扰平台上搜索工作相关内容，建议设置时间控制",
                ),
                requires_grace_period=True,
                source=SOURCE_INTERFERENCE_SEARCH,
            )

        semantic_score = await self._semantic_score(keywords, title, content_snippet)
        raw_score = semantic_score
        semantic_score = self._apply_overrides(semantic_score, signals)
        if semantic_score != raw_score:
            logger.info(f"Semantic score for {url} lifted from {raw_score} to {semantic_score}")

        if semantic_score >= rules.fast_pass_threshold:
            logger.info(f"Fast pass for {url} (score: {semantic_score})")
            return ClassificationResult(
                score=rules.fast_pass_score,
                status=STATUS_STAY,
                reason=localized(
                    keywords,
                    "Content is highly similar to the task keywords. Directly relevant resource.",
                    "内容与任务关键词高度相关，属于直接相关的资源",
                ),
                source=SOURCE_FAST_PASS,
            )

        if semantic_score <= rules.fast_block_threshold and not signals.is_toolchain_domain:
            logger.info(f"Fast block for {url} (score: {semantic_score}, domain: {signals.domain})")
            return ClassificationResult(
                score=rules.fast_block_score,
                status=STATUS_BLOCK,
                reason=localized(
                    keywords,
                    "Content has low similarity with the task keywords. Not relevant to the current task.",
                    "网页内容与当前任务关键词相关度很低，与当前任务无关",
                ),
                source=SOURCE_FAST_BLOCK,
            )

        if signals.is_toolchain_domain and semantic_score <= rules.fast_block_threshold:
            logger.info(f"Tool chain domain {signals.domain}, judging despite low score ({semantic_score})")
        else:
            logger.info(f"Ambiguous relevance for {url} (score: {semantic_score}), asking the judge")

        return await self._judge(keywords, title, url, content_snippet, semantic_score, signals)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    @staticmethod
    def _validate(keywords: str, title: str, url: str) -> None:
        missing: List[str] = []
        if not isinstance(keywords, str) or not keywords.strip():
            missing.append("keywords")
        if not isinstance(title, str) or not title.strip():
            missing.append("title")
        if not isinstance(url, str) or not url.strip():
            missing.append("url")
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    async def _semantic_score(self, keywords: str, title: str, content_snippet: Optional[str]) -> int:
        """Embedding similarity, or EMBEDDING_FALLBACK_SCORE if the provider fails."""
        keywords_text = keywords.strip()
        page_text = build_page_text(title, content_snippet)
        try:
            keywords_vec, page_vec = await asyncio.wait_for(
                asyncio.gather(
                    self.provider.embed(keywords_text),
                    self.provider.embed(page_text),
                ),
                timeout=self.embedding_timeout,
            )
        except (ProviderError, asyncio.TimeoutError) as e:
            logger.warning(
                f"Embedding unavailable ({type(e).__name__}: {e}), "
                f"using fallback score {config.EMBEDDING_FALLBACK_SCORE}"
            )
            return config.EMBEDDING_FALLBACK_SCORE

        score = cosine_score(keywords_vec, page_vec)
        logger.debug(f"Embedding similarity for '{keywords_text}': {score}")
        return score

    def _apply_overrides(self, semantic_score: int, signals: PageSignals) -> int:
        """
        Lift low scores of supporting pages into the judge band.

        The meta-task check runs before the toolchain check; only one applies.
        """
        rules = self.rules
        if signals.is_interference_domain:
            return semantic_score

        if signals.has_meta_task_keyword and semantic_score < rules.fast_pass_threshold:
            return rules.meta_task_forced_score

        if signals.has_toolchain_keyword and semantic_score <= rules.toolchain_keyword_ceiling:
            return rules.toolchain_forced_score

        return semantic_score

    async def _judge(
        self,
        keywords: str,
        title: str,
        url: str,
        content_snippet: Optional[str],
        semantic_score: int,
        signals: PageSignals,
    ) -> ClassificationResult:
        rules = self.rules
        prompt = self._create_prompt(keywords, title, url, content_snippet, semantic_score)

        try:
            judgment = await asyncio.wait_for(self.provider.judge(prompt), timeout=self.judge_timeout)
        except (ProviderError, asyncio.TimeoutError) as e:
            logger.warning(f"Judge unavailable for {url} ({type(e).__name__}: {e}), using semantic score")
            return ClassificationResult(
                score=semantic_score,
                status=status_for_score(semantic_score, rules.stay_threshold),
                reason=FALLBACK_REASON,
                source=SOURCE_FALLBACK,
            )

        score = judgment.score
        if signals.is_documentation_page:
            low, high = rules.documentation_score_range
            clamped = max(low, min(high, score))
            if clamped != score:
                logger.info(f"Documentation page {url}: judge score {score} clamped to {clamped}")
            score = clamped

        status = status_for_score(score, rules.stay_threshold)
        logger.info(f"Judge: semantic={semantic_score}, corrected={score}, status={status}")
        return ClassificationResult(score=score, status=status, reason=judgment.reason, source=SOURCE_JUDGE)

    def _create_prompt(
        self,
        keywords: str,
        title: str,
        url: str,
        content_snippet: Optional[str],
        semantic_score: int,
    ) -> str:
        """
        Create the judge prompt.

        The judge replaces the semantic score with its own 0-100 score and
        must honour the documentation-value rule.
        """
        rules = self.rules
        low, high = rules.documentation_score_range
        markers = ", ".join(f"'{marker}'" for marker in rules.documentation_markers)
        domains = ", ".join(rules.toolchain_domains)

        prompt = f"""You are FocusMate, a focus assistant that decides whether a webpage helps the user stay productive.

[Input]
<TASK_KEYWORDS>{keywords}</TASK_KEYWORDS>
<WEBPAGE_TITLE>{title}</WEBPAGE_TITLE>
<WEBPAGE_URL>{url}</WEBPAGE_URL>
<WEBPAGE_CONTENT>{content_snippet or ''}</WEBPAGE_CONTENT>
<SEMANTIC_SIMILARITY_SCORE>{semantic_score}</SEMANTIC_SIMILARITY_SCORE>

[Context]
SEMANTIC_SIMILARITY_SCORE (0-100) is the embedding similarity between the task keywords and the page.
It misses domain relevance, content quality and process necessities.

[Rules]
1. Analyse WEBPAGE_CONTENT first, then WEBPAGE_TITLE, then WEBPAGE_URL.
2. Process pages that are needed to finish the task (API usage and billing, official documentation,
   account or authentication pages, environment setup, version control) deserve a higher score
   even when the semantic score is low.
3. Documentation Value Rule (highest priority): if the URL or title contains any of {markers}
   AND the domain is one of {domains} (or a subdomain), the score MUST be between {low} and {high}.
4. Replace the semantic score with your own corrected score. Do not average them.
5. Scoring: 90-100 core resources; 70-89 strong supporting tools and documentation;
   50-69 partially relevant; 30-49 loosely related; below 30 irrelevant, social media,
   entertainment, ads, news, shopping or clickbait.
6. Lower the score for gossip, celebrities, memes and trending slang, except for pages under rule 3.
7. Answer in the language of TASK_KEYWORDS.

[Output]
JSON only:
{{
  "relevance_score_percent": <integer 0-100>,
  "reason": "<fewer than 25 words>"
}}"""

        return prompt
