"""
Tests for relevance/classifier.py: semantic scoring, rule overrides,
the three decision tiers and provider fallbacks.
"""

import sys
import math
import asyncio
import unittest
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

# Ensure project root is on the path
sys.path.insert(0, str(Path(__file__).parent.parent))

from relevance.classifier import (
    FALLBACK_REASON,
    RelevanceClassifier,
    ValidationError,
    build_page_text,
    cosine_score,
)
from relevance.provider import Judgment, OpenAIRelevanceProvider, ProviderError
from relevance.result import (
    STATUS_BLOCK,
    STATUS_STAY,
    SOURCE_FALLBACK,
    SOURCE_FAST_BLOCK,
    SOURCE_FAST_PASS,
    SOURCE_INTERFERENCE_SEARCH,
    SOURCE_JUDGE,
)

PLAIN_URL = "https://physics.test/orbitals"
PLAIN_TITLE = "Molecular orbitals"


class FakeProvider:
    """
    Embeds the keywords as [1, 0] and any page text as a unit vector at
    cosine `similarity` to it, so the semantic score is exactly
    round(similarity * 100).
    """

    def __init__(self, similarity=0.5, judgment=None, judge_error=None, embed_error=None):
        self.similarity = similarity
        self.embed_error = embed_error
        self.embed_calls = []
        self.judge = AsyncMock(
            return_value=judgment or Judgment(score=60, reason="judged"),
            side_effect=judge_error,
        )

    async def embed(self, text):
        self.embed_calls.append(text)
        if self.embed_error:
            raise self.embed_error
        if text.startswith("Title:"):
            c = self.similarity
            return [c, math.sqrt(max(0.0, 1 - c * c))]
        return [1.0, 0.0]


class TestCosineScore(unittest.TestCase):
    """Test the 0-100 similarity scale."""

    def test_identical_vectors_score_100(self):
        self.assertEqual(cosine_score([0.3, 0.4], [0.3, 0.4]), 100)

    def test_orthogonal_vectors_score_0(self):
        self.assertEqual(cosine_score([1, 0], [0, 1]), 0)

    def test_negative_similarity_clamps_to_0(self):
        self.assertEqual(cosine_score([1, 0], [-1, 0]), 0)

    def test_zero_vector_scores_0(self):
        self.assertEqual(cosine_score([0, 0], [1, 0]), 0)

    def test_mismatched_shapes_score_0(self):
        self.assertEqual(cosine_score([1, 0, 0], [1, 0]), 0)

    def test_deterministic(self):
        a, b = [0.1, 0.7, 0.2], [0.4, 0.4, 0.1]
        self.assertEqual(cosine_score(a, b), cosine_score(a, b))

    def test_page_text(self):
        self.assertEqual(build_page_text("T", None), "Title: T")
        self.assertEqual(build_page_text("T", "  body "), "Title: T. Content: body")


class TestThreeTiers(unittest.IsolatedAsyncioTestCase):
    """Test fast pass / fast block / judge boundaries."""

    async def classify(self, similarity, url=PLAIN_URL, title=PLAIN_TITLE, **provider_kwargs):
        provider = FakeProvider(similarity=similarity, **provider_kwargs)
        classifier = RelevanceClassifier(provider)
        result = await classifier.classify("quantum chemistry", title, url)
        return result, provider

    async def test_score_75_fast_passes(self):
        result, provider = await self.classify(0.75)
        self.assertEqual((result.score, result.status, result.source), (90, STATUS_STAY, SOURCE_FAST_PASS))
        provider.judge.assert_not_called()

    async def test_score_74_goes_to_judge(self):
        result, provider = await self.classify(0.74, judgment=Judgment(score=82, reason="useful"))
        provider.judge.assert_awaited_once()
        self.assertEqual((result.score, result.status, result.source), (82, STATUS_STAY, SOURCE_JUDGE))
        self.assertEqual(result.reason, "useful")

    async def test_score_20_fast_blocks_on_plain_domain(self):
        result, provider = await self.classify(0.20)
        self.assertEqual((result.score, result.status, result.source), (15, STATUS_BLOCK, SOURCE_FAST_BLOCK))
        provider.judge.assert_not_called()

    async def test_score_21_goes_to_judge(self):
        result, provider = await self.classify(0.21, judgment=Judgment(score=30, reason="off topic"))
        provider.judge.assert_awaited_once()
        self.assertEqual(result.status, STATUS_BLOCK)

    async def test_score_20_on_toolchain_domain_is_judged(self):
        result, provider = await self.classify(0.20, url="https://github.com/someone/orbitals")
        provider.judge.assert_awaited_once()
        self.assertNotEqual(result.source, SOURCE_FAST_BLOCK)

    async def test_judge_prompt_carries_semantic_score(self):
        _, provider = await self.classify(0.60)
        prompt = provider.judge.await_args.args[0]
        self.assertIn("<SEMANTIC_SIMILARITY_SCORE>60</SEMANTIC_SIMILARITY_SCORE>", prompt)
        self.assertIn(PLAIN_URL, prompt)

    async def test_grace_flag_only_for_interference_search(self):
        result, _ = await self.classify(0.60)
        self.assertFalse(result.requires_grace_period)


class TestOverrides(unittest.IsolatedAsyncioTestCase):
    """Test interference search, meta-task and toolchain overrides."""

    async def test_interference_search_tuple(self):
        provider = FakeProvider(similarity=0.05)
        classifier = RelevanceClassifier(provider)
        result = await classifier.classify("vercel billing", "微博搜索", "https://weibo.com/search?q=vercel")
        self.assertEqual(
            (result.score, result.status, result.requires_grace_period),
            (50, STATUS_STAY, True),
        )
        self.assertEqual(result.source, SOURCE_INTERFERENCE_SEARCH)
        self.assertEqual(provider.embed_calls, [])
        provider.judge.assert_not_called()

    async def test_interference_search_ignores_high_similarity(self):
        classifier = RelevanceClassifier(FakeProvider(similarity=0.99))
        result = await classifier.classify("vercel billing", "Search", "https://weibo.com/search?q=vercel")
        self.assertEqual((result.score, result.requires_grace_period), (50, True))

    async def test_interference_reason_follows_keyword_language(self):
        classifier = RelevanceClassifier(FakeProvider())
        english = await classifier.classify("vercel billing", "Search", "https://weibo.com/search?q=vercel")
        chinese = await classifier.classify("vercel 部署", "搜索", "https://weibo.com/search?q=vercel")
        self.assertTrue(english.reason.isascii())
        self.assertFalse(chinese.reason.isascii())

    async def test_interference_domain_without_meta_keyword_is_scored(self):
        provider = FakeProvider(similarity=0.10)
        classifier = RelevanceClassifier(provider)
        result = await classifier.classify("quantum chemistry", "Trending", "https://weibo.com/hot")
        self.assertEqual(result.status, STATUS_BLOCK)
        self.assertFalse(result.requires_grace_period)

    async def test_meta_task_lifts_low_score_into_judge_band(self):
        provider = FakeProvider(similarity=0.10, judge_error=ProviderError("down"))
        classifier = RelevanceClassifier(provider)
        result = await classifier.classify("quantum chemistry", "Billing overview", "https://physics.test/billing")
        provider.judge.assert_awaited_once()
        # Fallback keeps the lifted score
        self.assertEqual((result.score, result.status), (50, STATUS_STAY))

    async def test_toolchain_keyword_lifts_to_40(self):
        provider = FakeProvider(similarity=0.10, judge_error=ProviderError("down"))
        classifier = RelevanceClassifier(provider)
        result = await classifier.classify("quantum chemistry", "Troubleshooting", "https://physics.test/x")
        self.assertEqual((result.score, result.status), (40, STATUS_BLOCK))

    async def test_toolchain_keyword_leaves_scores_above_35(self):
        provider = FakeProvider(similarity=0.36, judge_error=ProviderError("down"))
        classifier = RelevanceClassifier(provider)
        result = await classifier.classify("quantum chemistry", "Troubleshooting", "https://physics.test/x")
        self.assertEqual(result.score, 36)

    async def test_documentation_rule_clamps_judge_score(self):
        provider = FakeProvider(similarity=0.15, judgment=Judgment(score=30, reason="docs page"))
        classifier = RelevanceClassifier(provider)
        result = await classifier.classify("vercel deployment", "Errors", "https://vercel.com/docs/errors")
        provider.judge.assert_awaited_once()
        self.assertGreaterEqual(result.score, 70)
        self.assertLessEqual(result.score, 90)
        self.assertEqual(result.status, STATUS_STAY)

    async def test_repository_path_is_not_a_documentation_page(self):
        provider = FakeProvider(similarity=0.30, judgment=Judgment(score=25, reason="unrelated repo"))
        classifier = RelevanceClassifier(provider)
        result = await classifier.classify("quantum chemistry", "rapid-app", "https://github.com/x/rapid-app")
        self.assertEqual((result.score, result.status), (25, STATUS_BLOCK))

    async def test_documentation_rule_caps_high_judge_score(self):
        provider = FakeProvider(similarity=0.50, judgment=Judgment(score=99, reason="docs page"))
        classifier = RelevanceClassifier(provider)
        result = await classifier.classify("vercel deployment", "Docs", "https://vercel.com/docs")
        self.assertEqual(result.score, 90)


class TestFallbacks(unittest.IsolatedAsyncioTestCase):
    """Test that provider failures degrade instead of raising."""

    async def test_judge_error_falls_back_to_semantic_score(self):
        classifier = RelevanceClassifier(FakeProvider(similarity=0.60, judge_error=ProviderError("boom")))
        result = await classifier.classify("quantum chemistry", PLAIN_TITLE, PLAIN_URL)
        self.assertEqual((result.score, result.status, result.reason), (60, STATUS_STAY, FALLBACK_REASON))
        self.assertEqual(result.source, SOURCE_FALLBACK)

    async def test_fallback_below_50_blocks(self):
        classifier = RelevanceClassifier(FakeProvider(similarity=0.40, judge_error=ProviderError("boom")))
        result = await classifier.classify("quantum chemistry", PLAIN_TITLE, PLAIN_URL)
        self.assertEqual((result.score, result.status), (40, STATUS_BLOCK))

    async def test_judge_timeout_falls_back(self):
        provider = FakeProvider(similarity=0.55)

        async def slow_judge(prompt):
            await asyncio.sleep(1)
            return Judgment(score=99, reason="late")

        provider.judge = AsyncMock(side_effect=slow_judge)
        classifier = RelevanceClassifier(provider, judge_timeout=0.01)
        result = await classifier.classify("quantum chemistry", PLAIN_TITLE, PLAIN_URL)
        self.assertEqual((result.score, result.reason), (55, FALLBACK_REASON))

    async def test_non_finite_judge_score_falls_back(self):
        client = MagicMock()
        message = MagicMock(content='{"relevance_score_percent": NaN, "reason": "x"}')
        client.chat.completions.create = AsyncMock(return_value=MagicMock(choices=[MagicMock(message=message)]))
        provider = OpenAIRelevanceProvider(api_key="sk-test", client=client)
        provider.embed = FakeProvider(similarity=0.60).embed

        classifier = RelevanceClassifier(provider)
        result = await classifier.classify("quantum chemistry", "Orbitals", "https://physics.test/a")
        self.assertEqual((result.score, result.status, result.reason), (60, STATUS_STAY, FALLBACK_REASON))

    async def test_embedding_error_uses_neutral_score(self):
        provider = FakeProvider(embed_error=ProviderError("no key"), judge_error=ProviderError("no key"))
        classifier = RelevanceClassifier(provider)
        result = await classifier.classify("quantum chemistry", PLAIN_TITLE, PLAIN_URL)
        self.assertEqual((result.score, result.status, result.reason), (50, STATUS_STAY, FALLBACK_REASON))

    async def test_unparseable_url_is_not_fatal(self):
        classifier = RelevanceClassifier(FakeProvider(similarity=0.10))
        result = await classifier.classify("quantum chemistry", PLAIN_TITLE, "not a url")
        self.assertEqual(result.status, STATUS_BLOCK)


class TestValidation(unittest.IsolatedAsyncioTestCase):
    """Test input rejection before any network call."""

    async def test_missing_fields_rejected(self):
        for keywords, title, url in (("", "T", PLAIN_URL), ("k", "", PLAIN_URL), ("k", "T", "  ")):
            provider = FakeProvider()
            classifier = RelevanceClassifier(provider)
            with self.assertRaises(ValidationError):
                await classifier.classify(keywords, title, url)
            self.assertEqual(provider.embed_calls, [])
            provider.judge.assert_not_called()

    async def test_identical_inputs_identical_result(self):
        classifier = RelevanceClassifier(FakeProvider(similarity=0.80))
        first = await classifier.classify("quantum chemistry", PLAIN_TITLE, PLAIN_URL)
        second = await classifier.classify("quantum chemistry", PLAIN_TITLE, PLAIN_URL)
        self.assertEqual(first, second)


if __name__ == "__main__":
    unittest.main()
