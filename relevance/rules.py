"""
Domain and keyword rules for relevance classification.

All lists and thresholds the classifier uses live in one versioned
ClassifierRules object. The defaults below can be overridden per install
with a JSON file (see RulesManager).
"""

import json
import logging
import re
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)

RULES_VERSION = "5.0"


# Social, entertainment, news and gaming platforms. Work tools such as
# github.com or vercel.com are deliberately absent.
INTERFERENCE_DOMAINS = (
    # Chinese social media & entertainment
    "xiaohongshu.com", "xiaohongshu.cn",
    "weibo.com", "weibo.cn",
    "douyin.com", "douyin.cn",
    "tiktok.com",
    "toutiao.com",
    "zhihu.com",
    "bilibili.com", "bilibili.tv",
    "acfun.cn",
    "iqiyi.com",
    "youku.com",
    "tencent.com",
    "qq.com",
    "baidu.com", "baidu.cn",
    "sina.com.cn", "sina.cn",
    "netease.com", "163.com",
    "sohu.com",
    "sogou.com",
    "taobao.com", "tmall.com", "jd.com", "pinduoduo.com",
    "meituan.com", "dianping.com",
    "douban.com",
    "huya.com", "douyu.com",
    "kuaishou.com", "kuaishou.cn",
    # International social media & entertainment
    "instagram.com",
    "facebook.com",
    "twitter.com",
    "x.com",
    "youtube.com",
    "reddit.com",
    "pinterest.com",
    "snapchat.com",
    "linkedin.com",
    "tumblr.com",
    "flickr.com",
    "vimeo.com",
    "twitch.tv",
    "discord.com",
    "telegram.org",
    "whatsapp.com",
    "messenger.com",
    "netflix.com", "hulu.com", "disney.com", "disneyplus.com", "hbo.com",
    "amazon.com", "amazon.cn", "ebay.com", "etsy.com", "etsy.cn",
    # News & media
    "cnn.com", "bbc.com", "nytimes.com", "theguardian.com", "washingtonpost.com",
    "reuters.com", "bloomberg.com", "forbes.com", "techcrunch.com", "theverge.com",
    "engadget.com", "gizmodo.com", "mashable.com", "buzzfeed.com", "vice.com",
    "vox.com", "medium.com", "substack.com",
    # Gaming
    "steam.com", "steampowered.com", "epicgames.com", "roblox.com", "minecraft.net",
    "playstation.com", "xbox.com", "nintendo.com", "riotgames.com", "blizzard.com",
    "ea.com", "ubisoft.com",
    # Other rabbit holes
    "wikipedia.org", "wikimedia.org", "quora.com", "stackoverflow.com",
)

# Developer tool vendors. Pages here always reach the judge, even at low scores.
TOOLCHAIN_DOMAINS = (
    "vercel.com",
    "github.com",
    "gitlab.com",
    "npmjs.com",
    "stackoverflow.com",
    "gemini.google.com",
    "chat.openai.com",
    "claude.ai",
    "cursor.sh",
    "openai.com",
    "anthropic.com",
    "docs.github.com",
    "docs.vercel.com",
    "developer.mozilla.org",
    "nodejs.org",
    "react.dev",
    "vuejs.org",
    "angular.io",
    "nextjs.org",
    "nuxt.com",
)

# Account / process management pages that support doing the task
META_TASK_KEYWORDS = {
    "chinese": ("用量", "账单", "配置", "密钥", "文档", "控制台", "部署", "教程", "指南"),
    "english": (
        "usage", "billing", "api key", "console", "dashboard", "github", "gitlab",
        "vercel", "login", "auth", "settings", "account", "profile", "documentation",
        "docs", "deploy", "deployment", "tutorial", "guide",
    ),
}

# Tool names and documentation-page markers
TOOLCHAIN_KEYWORDS = {
    "tools": (
        "vercel", "github", "gitlab", "gemini", "google", "openai", "claude", "cursor",
        "npm", "node", "react", "vue", "angular", "nextjs", "nuxt",
    ),
    "documentation": (
        "docs", "documentation", "api", "reference", "guide", "tutorial",
        "getting-started", "quickstart", "examples", "cli", "command", "error",
        "errors", "troubleshooting", "faq", "help", "support",
        "文档", "教程", "指南", "参考", "报错",
    ),
}

# URL/title markers for the documentation-value rule
DOCUMENTATION_MARKERS = (
    "docs", "documentation", "errors", "error", "api", "reference", "guide",
    "tutorial", "getting-started", "quickstart", "examples", "example", "how-to",
    "howto", "faq", "help", "support", "manual", "handbook", "playbook",
    "cheatsheet", "cheat-sheet", "spec", "specification",
)

_FALLBACK_HOST_RE = re.compile(r"https?://(?:www\.)?([^/:?#]+)", re.IGNORECASE)


def extract_domain(url: str) -> Optional[str]:
    """
    Extract the lower-cased hostname of a URL without a leading "www.".

    Returns:
        The domain, or None when the URL cannot be parsed. Callers treat
        None as "no domain matched".
    """
    if not url:
        return None

    hostname = None
    try:
        hostname = urlsplit(url.strip()).hostname
    except ValueError:
        hostname = None

    if not hostname:
        match = _FALLBACK_HOST_RE.match(url.strip())
        if not match:
            return None
        hostname = match.group(1)

    hostname = hostname.lower()
    if hostname.startswith("www."):
        hostname = hostname[4:]
    return hostname or None


def _contains_any(text: str, keywords) -> bool:
    return any(keyword.lower() in text for keyword in keywords)


def _contains_word(text: str, markers) -> bool:
    """Whole-word match: a marker may not sit inside a longer latin word or number."""
    return any(
        re.search(rf"(?<![a-z0-9]){re.escape(marker.lower())}(?![a-z0-9])", text)
        for marker in markers
    )


@dataclass(frozen=True)
class ClassifierRules:
    """
    Versioned rule set injected into the RelevanceClassifier.

    Thresholds are configuration, not invariants. The defaults match the
    5.0 rule set: fast pass at 75, fast block at 20.
    """

    version: str = RULES_VERSION
    interference_domains: Tuple[str, ...] = INTERFERENCE_DOMAINS
    toolchain_domains: Tuple[str, ...] = TOOLCHAIN_DOMAINS
    meta_task_keywords: Tuple[str, ...] = field(
        default=META_TASK_KEYWORDS["chinese"] + META_TASK_KEYWORDS["english"]
    )
    toolchain_keywords: Tuple[str, ...] = field(
        default=TOOLCHAIN_KEYWORDS["tools"] + TOOLCHAIN_KEYWORDS["documentation"]
    )
    documentation_markers: Tuple[str, ...] = DOCUMENTATION_MARKERS

    fast_pass_threshold: int = 75
    fast_pass_score: int = 90
    fast_block_threshold: int = 20
    fast_block_score: int = 15
    meta_task_forced_score: int = 50
    toolchain_keyword_ceiling: int = 35
    toolchain_forced_score: int = 40
    interference_search_score: int = 50
    stay_threshold: int = 50
    documentation_score_range: Tuple[int, int] = (70, 90)

    # ---- Domain classification ----

    def is_interference_domain(self, domain: Optional[str]) -> bool:
        """Exact or subdomain match against the interference list."""
        if not domain:
            return False
        return any(
            domain == blocked or domain.endswith("." + blocked)
            for blocked in self.interference_domains
        )

    def is_toolchain_domain(self, domain: Optional[str]) -> bool:
        """Exact, subdomain or substring match against the toolchain list."""
        if not domain:
            return False
        for tool_domain in self.toolchain_domains:
            if domain == tool_domain or domain.endswith("." + tool_domain) or tool_domain in domain:
                logger.debug(f"Tool chain domain matched: {domain} matches {tool_domain}")
                return True
        return False

    # ---- Keyword detection (case-insensitive substring) ----

    @staticmethod
    def _combined_text(url: str, title: str, content_snippet: Optional[str]) -> str:
        return f"{url or ''} {title or ''} {content_snippet or ''}".lower()

    def has_meta_task_keyword(self, url: str, title: str, content_snippet: Optional[str] = None) -> bool:
        return _contains_any(self._combined_text(url, title, content_snippet), self.meta_task_keywords)

    def has_toolchain_keyword(self, url: str, title: str, content_snippet: Optional[str] = None) -> bool:
        return _contains_any(self._combined_text(url, title, content_snippet), self.toolchain_keywords)

    def is_documentation_page(self, url: str, title: str) -> bool:
        """
        Documentation-value rule: a documentation marker in the URL or title
        on a toolchain domain. Markers match whole words or path segments,
        so "/x/rapid-app" does not count as "api".
        """
        text = f"{url or ''} {title or ''}".lower()
        if not _contains_word(text, self.documentation_markers):
            return False
        return self.is_toolchain_domain(extract_domain(url))

    # ---- Serialization ----

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key, value in data.items():
            if isinstance(value, tuple):
                data[key] = list(value)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ClassifierRules':
        """
        Build rules from a (partial) dictionary. Missing keys keep defaults,
        unknown keys are ignored with a warning.
        """
        known = set(cls.__dataclass_fields__.keys())
        kwargs = {}
        for key, value in data.items():
            if key not in known:
                logger.warning(f"Ignoring unknown classifier rule '{key}'")
                continue
            kwargs[key] = tuple(value) if isinstance(value, list) else value
        return cls(**kwargs)


DEFAULT_RULES = ClassifierRules()


class RulesManager:
    """Loads classifier rule overrides from a JSON file."""

    def __init__(self, rules_path: Optional[Path]):
        self.rules_path = rules_path
        self._rules: Optional[ClassifierRules] = None

    def load(self) -> ClassifierRules:
        """
        Load rules from file, or fall back to the defaults.

        Returns:
            Loaded or default ClassifierRules instance.
        """
        if self._rules is not None:
            return self._rules

        if self.rules_path is not None and self.rules_path.exists():
            try:
                with open(self.rules_path, "r", encoding="utf-8") as f:
                    data = json.load(f)
                self._rules = ClassifierRules.from_dict(data)
                logger.info(f"Loaded classifier rules v{self._rules.version} from {self.rules_path}")
            except (json.JSONDecodeError, TypeError, IOError, OSError) as e:
                logger.warning(f"Invalid classifier rules file, using defaults: {e}")
                self._rules = DEFAULT_RULES
        else:
            self._rules = DEFAULT_RULES

        return self._rules
