"""
Page content and tab tracking.

The browser side extracts page content; this module normalizes what it
sends and remembers which URL each tab currently shows, so a grace timer
can check whether the user is still on the page it was started for.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

MAX_SNIPPET_LENGTH = 500

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_whitespace(text: Optional[str]) -> str:
    if not text:
        return ""
    return _WHITESPACE_RE.sub(" ", text).strip()


def build_snippet(
    description: str = "",
    h1: str = "",
    body_text: str = "",
    limit: int = MAX_SNIPPET_LENGTH,
) -> str:
    """
    Pick the most informative text for a page, at most `limit` chars.

    Priority: meta description, then the main heading, then body text.
    """
    for candidate in (description, h1, body_text):
        text = normalize_whitespace(candidate)
        if text:
            return text[:limit]
    return ""


@dataclass
class PageContent:
    """What the classifier gets to see of a page."""

    title: str
    content_snippet: str = ""
    h1: str = ""
    description: str = ""

    def __post_init__(self):
        self.title = normalize_whitespace(self.title)
        self.h1 = normalize_whitespace(self.h1)
        self.description = normalize_whitespace(self.description)
        self.content_snippet = normalize_whitespace(self.content_snippet)[:MAX_SNIPPET_LENGTH]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PageContent':
        snippet = data.get("content_snippet") or build_snippet(
            data.get("description", ""),
            data.get("h1", ""),
            data.get("body_text", ""),
        )
        return cls(
            title=data.get("title", ""),
            content_snippet=snippet,
            h1=data.get("h1", ""),
            description=data.get("description", ""),
        )


class ContentExtractor:
    """
    Asks the page for its content.

    Returns None when the page cannot be reached (restricted page,
    content script missing); callers then fall back to the bare title.
    """

    async def extract(self, tab_id: int, url: str) -> Optional[PageContent]:
        return None


class NullContentExtractor(ContentExtractor):
    """Used when the host only receives what the browser pushed."""


@dataclass
class TabRegistry:
    """Last known URL and title per tab id."""

    urls: Dict[int, str] = field(default_factory=dict)
    titles: Dict[int, str] = field(default_factory=dict)
    active_tab: Optional[int] = None

    def update(self, tab_id: int, url: str, title: str = "", active: bool = True) -> None:
        self.urls[tab_id] = url
        self.titles[tab_id] = normalize_whitespace(title)
        if active:
            self.active_tab = tab_id

    def remove(self, tab_id: int) -> None:
        self.urls.pop(tab_id, None)
        self.titles.pop(tab_id, None)
        if self.active_tab == tab_id:
            self.active_tab = None

    async def get_url(self, tab_id: int) -> Optional[str]:
        return self.urls.get(tab_id)

    def title(self, tab_id: int) -> str:
        return self.titles.get(tab_id, "")
