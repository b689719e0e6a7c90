"""OpenAI integration for embeddings and relevance judgments."""

import asyncio
import json
import math
import logging
from dataclasses import dataclass
from typing import List, Optional

from openai import AsyncOpenAI, OpenAIError

import config

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """The embedding/judge provider failed to produce an answer."""


class MalformedJudgmentError(ProviderError):
    """The judge answered, but not with a usable score and reason."""


@dataclass
class Judgment:
    score: int
    reason: str


def parse_judgment(content: Optional[str]) -> Judgment:
    """
    Parse the judge's JSON answer.

    Expected shape: {"relevance_score_percent": <number>, "reason": <str>}

    Raises:
        MalformedJudgmentError: If the content is not JSON, lacks either field,
            or the score is NaN or infinite.
    """
    try:
        data = json.loads(content or "")
    except (json.JSONDecodeError, TypeError) as e:
        raise MalformedJudgmentError(f"Judge output is not JSON: {content!r}") from e

    if not isinstance(data, dict):
        raise MalformedJudgmentError(f"Judge output is not an object: {content!r}")

    score = data.get("relevance_score_percent")
    reason = data.get("reason")
    if isinstance(score, bool) or not isinstance(score, (int, float)) or not reason:
        raise MalformedJudgmentError(f"Invalid judge output structure: {content!r}")
    if not math.isfinite(score):
        raise MalformedJudgmentError(f"Judge score is not a finite number: {content!r}")

    return Judgment(score=max(0, min(100, round(score))), reason=str(reason))


class OpenAIRelevanceProvider:
    """
    Embedding and judge calls against the OpenAI API.

    Both operations raise ProviderError on failure, so a failed call is
    never confused with a valid low score.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        embedding_model: Optional[str] = None,
        judge_model: Optional[str] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        """
        Initialize the provider with an OpenAI client.

        Args:
            api_key: OpenAI API key (defaults to config.OPENAI_API_KEY)
            embedding_model: Embedding model (defaults to config.OPENAI_EMBEDDING_MODEL)
            judge_model: Chat model for judgments (defaults to config.OPENAI_JUDGE_MODEL)
            client: Pre-built client, mainly for tests
        """
        self.api_key = api_key or config.OPENAI_API_KEY
        self.embedding_model = embedding_model or config.OPENAI_EMBEDDING_MODEL
        self.judge_model = judge_model or config.OPENAI_JUDGE_MODEL

        if client is not None:
            self.client = client
        elif not self.api_key:
            logger.warning("OpenAI API key not found. Classification will use fallback scores.")
            self.client = None
        else:
            self.client = AsyncOpenAI(api_key=self.api_key)

    async def embed(self, text: str) -> List[float]:
        """
        Get the embedding vector for a text.

        Raises:
            ProviderError: If no client is configured or the API call fails.
        """
        if not self.client:
            raise ProviderError("OpenAI client not configured")

        try:
            response = await self.client.embeddings.create(
                model=self.embedding_model,
                input=text,
            )
            return list(response.data[0].embedding)
        except (OpenAIError, IndexError, AttributeError) as e:
            raise ProviderError(f"Embedding request failed: {e}") from e

    async def judge(self, prompt: str, max_retries: Optional[int] = None) -> Judgment:
        """
        Ask the chat model for a corrected relevance score.

        Transport errors are retried with exponential backoff. A malformed
        answer is not retried.

        Raises:
            ProviderError: If every attempt fails.
            MalformedJudgmentError: If the model's answer cannot be used.
        """
        if not self.client:
            raise ProviderError("OpenAI client not configured")

        max_retries = max_retries or config.OPENAI_MAX_RETRIES
        last_error: Optional[Exception] = None

        for attempt in range(max_retries):
            try:
                content = await self._call_openai_api(prompt)
                judgment = parse_judgment(content)
                logger.debug(f"Judge returned score {judgment.score}")
                return judgment
            except OpenAIError as e:
                last_error = e
                logger.warning(f"OpenAI judge attempt {attempt + 1} failed: {e}")

                if attempt < max_retries - 1:
                    wait_time = config.OPENAI_RETRY_DELAY * (2 ** attempt)
                    logger.info(f"Retrying in {wait_time} seconds...")
                    await asyncio.sleep(wait_time)

        raise ProviderError(f"All OpenAI judge attempts failed: {last_error}")

    async def _call_openai_api(self, prompt: str) -> Optional[str]:
        response = await self.client.chat.completions.create(
            model=self.judge_model,
            messages=[
                {
                    "role": "system",
                    "content": prompt
                }
            ],
            response_format={"type": "json_object"},
            max_tokens=150,
            temperature=0.2,
        )
        try:
            return response.choices[0].message.content
        except (IndexError, AttributeError) as e:
            raise MalformedJudgmentError(f"Judge response has no message: {e}") from e

    async def close(self) -> None:
        if self.client is not None and hasattr(self.client, "close"):
            await self.client.close()
