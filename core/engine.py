"""
FocusEngine: core orchestration for RealFocus.

Wires the relevance classifier, the judgment cache, the Pomodoro
scheduler and the grace-period controller together, and dispatches the
browser's commands to them.

This module has ZERO browser dependencies. The host (main.py or a
native-messaging bridge) feeds commands to dispatch() and receives
outward signals via callbacks.

Callbacks:
    on_block(tab_id: int, url: str, reason: str, score: int)
    on_forced_block(tab_id: int, url: str, reason: str, score: int)
    on_grace_started(tab_id: int, url: str, duration_seconds: int, message: str)
    on_clear_ui(tab_id: int)
    on_state_change(snapshot: dict)
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Optional, Union

import config
from core.commands import (
    COMMAND_TYPES,
    CheckRelevance,
    ClearCache,
    Command,
    EndBreak,
    EndFocus,
    GetCacheStats,
    GetPopupState,
    GetStatus,
    InitFocus,
    InvalidCommandError,
    MarkTaskComplete,
    PauseFocus,
    ResumeFocus,
    SetKeywords,
    SkipBreak,
    StopFocus,
    TabClosed,
    TabNavigated,
    UnknownCommandError,
)
from core.content import ContentExtractor, NullContentExtractor, PageContent, TabRegistry
from core.grace import GracePeriodController
from relevance.classifier import RelevanceClassifier, ValidationError
from relevance.mock import MockClassifier
from relevance.provider import OpenAIRelevanceProvider
from relevance.result import ClassificationResult
from relevance.rules import RulesManager
from storage.cache import RelevanceCache, now_ms
from storage.kv_store import JsonFileStore, KeyValueStore, StorageQuotaError
from tracking.alarms import AlarmClock
from tracking.scheduler import SessionScheduler
from tracking.statistics import StatisticsTracker

logger = logging.getLogger(__name__)


def is_internal_url(url: str) -> bool:
    """Browser pages that are never classified (settings, extensions, blank tabs)."""
    return url.lower().startswith(config.INTERNAL_URL_PREFIXES)


def _ok(**extra) -> Dict[str, Any]:
    result = {"success": True, "error": None, "error_type": None}
    result.update(extra)
    return result


def _failed(message: str, error_type: str) -> Dict[str, Any]:
    return {"success": False, "error": message, "error_type": error_type}


class FocusEngine:
    """
    Core focus-assistant engine.

    Handles:
    - Command dispatch from the browser
    - Relevance checks (cache first, then the classifier)
    - Block / grace-period / clear signals per tab
    - Pomodoro session lifecycle via SessionScheduler
    - Hourly expired-cache sweep

    Call start() once inside the running event loop and shutdown() on exit.
    """

    # ------------------------------------------------------------------
    # Initialisation
    # ------------------------------------------------------------------

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        classifier=None,
        content_extractor: Optional[ContentExtractor] = None,
        clock: Optional[Callable[[], int]] = None,
        mock: Optional[bool] = None,
        grace_period_ms: Optional[int] = None,
    ) -> None:
        self.clock = clock or now_ms
        self.mock = config.MOCK_API_ENABLED if mock is None else mock

        self.store: KeyValueStore = store or JsonFileStore(config.STORAGE_FILE, config.STORAGE_QUOTA_BYTES)
        self.classifier = classifier or self._create_classifier()
        self.content_extractor = content_extractor or NullContentExtractor()

        self.cache = RelevanceCache(self.store, clock=self.clock)
        self.statistics = StatisticsTracker(self.store)
        self.alarms = AlarmClock(clock=self.clock)
        self.scheduler = SessionScheduler(self.store, self.statistics, self.alarms, clock=self.clock)
        self.tabs = TabRegistry()
        self.grace = GracePeriodController(self.statistics, self.tabs.get_url, grace_period_ms)

        self._sweep_task: Optional[asyncio.Task] = None
        self._started = False

        # ---- Callbacks (set by the host) ----
        self.on_block: Optional[Callable[[int, str, str, int], None]] = None
        self.on_forced_block: Optional[Callable[[int, str, str, int], None]] = None
        self.on_grace_started: Optional[Callable[[int, str, int, str], None]] = None
        self.on_clear_ui: Optional[Callable[[int], None]] = None
        self.on_state_change: Optional[Callable[[Dict[str, Any]], None]] = None

        self.grace.on_grace_started = self._notify_grace_started
        self.grace.on_forced_block = self._notify_forced_block
        self.scheduler.on_state_change = self._notify_state_change

        self._handlers = {
            InitFocus: self._handle_init_focus,
            PauseFocus: lambda cmd: self.scheduler.pause(),
            ResumeFocus: lambda cmd: self.scheduler.resume(),
            StopFocus: lambda cmd: self.scheduler.stop(),
            EndFocus: lambda cmd: self.scheduler.end_focus(),
            EndBreak: lambda cmd: self.scheduler.end_break(),
            SkipBreak: lambda cmd: self.scheduler.skip_break(),
            MarkTaskComplete: lambda cmd: self.scheduler.mark_task_complete(cmd.next),
            SetKeywords: self._handle_set_keywords,
            CheckRelevance: lambda cmd: self.check_relevance(cmd.tab_id, cmd.url, cmd.title, cmd.content),
            TabNavigated: lambda cmd: self.tab_navigated(cmd.tab_id, cmd.url),
            TabClosed: lambda cmd: self.tab_closed(cmd.tab_id),
            ClearCache: lambda cmd: self.clear_cache(),
            GetCacheStats: self._handle_cache_stats,
            GetPopupState: lambda cmd: self.get_popup_state(cmd.tab_id),
            GetStatus: lambda cmd: self.get_status(),
        }
        missing = [cls.__name__ for cls in COMMAND_TYPES if cls not in self._handlers]
        if missing:
            raise RuntimeError(f"No handler for commands: {', '.join(missing)}")

    def _create_classifier(self):
        if self.mock:
            logger.info("Mock mode enabled, no API calls will be made")
            return MockClassifier()
        rules = RulesManager(config.CLASSIFIER_RULES_FILE).load()
        return RelevanceClassifier(OpenAIRelevanceProvider(), rules=rules)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Restore a persisted session and start the background cache sweep."""
        if self._started:
            return
        self._started = True
        await self.scheduler.restore()
        self._sweep_task = asyncio.create_task(self._sweep_loop())
        logger.info("Focus engine started")

    async def shutdown(self) -> None:
        """Cancel every timer and release the provider client."""
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            await asyncio.gather(self._sweep_task, return_exceptions=True)
            self._sweep_task = None
        await self.grace.shutdown()
        await self.scheduler.shutdown()
        await self.alarms.shutdown()

        provider = getattr(self.classifier, "provider", None)
        if provider is not None and hasattr(provider, "close"):
            await provider.close()
        self._started = False
        logger.info("Focus engine shut down")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def dispatch(self, message: Union[Command, Dict[str, Any]]) -> Dict[str, Any]:
        """
        Run one command.

        Returns:
            {"success": bool, "error": str | None, "error_type": str | None, ...}
            error_type values: "unknown_action", "invalid_input",
                "invalid_state", "storage_error"
        """
        try:
            command = message if isinstance(message, Command) else Command.from_dict(message)
        except UnknownCommandError as e:
            logger.warning(str(e))
            return _failed(str(e), "unknown_action")
        except InvalidCommandError as e:
            logger.warning(f"Rejected command: {e}")
            return _failed(str(e), "invalid_input")

        handler = self._handlers[type(command)]
        try:
            return await handler(command)
        except (StorageQuotaError, OSError) as e:
            logger.error(f"Storage error while handling {command.ACTION}: {e}")
            return _failed(str(e), "storage_error")

    async def check_relevance(
        self,
        tab_id: int,
        url: str,
        title: str = "",
        content: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Classify the page a tab shows and emit the matching signal.

        Cache hits return the stored judgment and emit nothing. On a miss
        the fresh result is routed (grace / block / clear) and cached
        without its grace flag.
        """
        previous_url = self.tabs.urls.get(tab_id)
        if previous_url is not None and previous_url != url:
            self._leave_page(tab_id)
        self.tabs.update(tab_id, url, title)

        if is_internal_url(url):
            logger.debug(f"Skipping internal page: {url}")
            return _ok(skipped="internal_url")

        keywords = await self.scheduler.current_keywords()
        if not keywords:
            return _ok(skipped="no_keywords")

        cached = await self.cache.get(url)
        if cached is not None:
            logger.debug(f"Using cached result for: {url}")
            return _ok(result=cached.to_dict(), from_cache=True)

        page = await self._extract_content(tab_id, url, title, content)
        page_title = page.title or page.h1 or title or url

        try:
            result = await self.classifier.classify(keywords, page_title, url, page.content_snippet or None)
        except ValidationError as e:
            logger.warning(f"Relevance check rejected: {e}")
            return _failed(str(e), "invalid_input")

        logger.info(f"Relevance for {url}: {result.score}% {result.status} ({result.source})")

        if self.tabs.urls.get(tab_id) == url:
            await self._route_result(tab_id, url, result, keywords)
        else:
            logger.debug(f"Tab {tab_id} left {url} during classification, no signal sent")

        await self.cache.put(url, result)
        return _ok(result=result.to_dict(), from_cache=False)

    async def tab_navigated(self, tab_id: int, url: str) -> Dict[str, Any]:
        """The tab started loading `url`; drop any pending grace timer."""
        self._leave_page(tab_id)
        self.tabs.update(tab_id, url)
        return _ok()

    async def tab_closed(self, tab_id: int) -> Dict[str, Any]:
        self.grace.cancel(tab_id)
        self.tabs.remove(tab_id)
        return _ok()

    async def clear_cache(self) -> Dict[str, Any]:
        """Forget every judgment and drop every pending grace timer."""
        await self.cache.clear()
        for tab_id in self.grace.active_tabs:
            self._notify_clear_ui(tab_id)
        self.grace.cancel_all()
        logger.info("Relevance cache cleared")
        return _ok()

    async def get_popup_state(self, tab_id: Optional[int] = None) -> Dict[str, Any]:
        """
        Everything the popup shows: keywords, current page and its
        judgment, scheduler state, statistics.
        """
        if tab_id is None:
            tab_id = self.tabs.active_tab
        url = self.tabs.urls.get(tab_id) if tab_id is not None else None
        keywords = await self.scheduler.current_keywords()

        relevance = None
        if url and keywords and not is_internal_url(url):
            check = await self.check_relevance(tab_id, url, self.tabs.title(tab_id))
            if check.get("success") and "result" in check:
                data = check["result"]
                relevance = {
                    "score": data["relevance_score_percent"],
                    "status": data["status"],
                    "reason": data["reason"],
                }

        stats = await self.statistics.get()
        return _ok(data={
            "keywords": keywords,
            "current_url": url,
            "relevance": relevance,
            "state": self.scheduler.snapshot(),
            "statistics": stats.snapshot(),
        })

    async def get_status(self) -> Dict[str, Any]:
        stats = await self.statistics.get()
        return _ok(
            state=self.scheduler.snapshot(),
            statistics=stats.snapshot(),
            mock=self.mock,
            grace_tabs=self.grace.active_tabs,
        )

    # ------------------------------------------------------------------
    # Command handlers
    # ------------------------------------------------------------------

    async def _handle_init_focus(self, command: InitFocus) -> Dict[str, Any]:
        previous = await self.scheduler.current_keywords()
        result = await self.scheduler.init(command.keywords)
        if result["success"] and previous != command.keywords.strip():
            await self.clear_cache()
        return result

    async def _handle_set_keywords(self, command: SetKeywords) -> Dict[str, Any]:
        result = await self.scheduler.set_keywords(command.keywords)
        if result["success"] and result.get("changed"):
            logger.info("Focus keywords changed, clearing cached judgments")
            await self.clear_cache()
        return result

    async def _handle_cache_stats(self, command: GetCacheStats) -> Dict[str, Any]:
        return _ok(stats=await self.cache.stats())

    # ------------------------------------------------------------------
    # Relevance helpers
    # ------------------------------------------------------------------

    async def _extract_content(
        self,
        tab_id: int,
        url: str,
        title: str,
        content: Optional[Dict[str, Any]],
    ) -> PageContent:
        """Page content pushed with the command, else asked from the page; bare title on failure."""
        if content:
            return PageContent.from_dict({"title": title, **content})
        try:
            page = await asyncio.wait_for(
                self.content_extractor.extract(tab_id, url),
                timeout=config.CONTENT_EXTRACTION_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Content extraction timed out for tab {tab_id}, using title only")
            page = None
        except Exception as e:
            logger.warning(f"Content extraction failed for tab {tab_id}, using title only: {e}")
            page = None
        return page or PageContent(title=title)

    async def _route_result(self, tab_id: int, url: str, result: ClassificationResult, keywords: str) -> None:
        if result.requires_grace_period:
            self.grace.start(tab_id, url, result, keywords)
        elif result.is_block:
            logger.info(f"Blocking page immediately: {url}")
            self._notify_block(tab_id, url, result.reason, result.score)
            try:
                await self.statistics.record_block()
            except (StorageQuotaError, OSError) as e:
                logger.error(f"Could not count block for {url}: {e}")
        else:
            self._notify_clear_ui(tab_id)

    def _leave_page(self, tab_id: int) -> None:
        self.grace.cancel(tab_id)
        self._notify_clear_ui(tab_id)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(config.CACHE_SWEEP_INTERVAL_SECONDS)
            try:
                removed = await self.cache.clear_expired()
                if removed:
                    logger.info(f"Hourly sweep removed {removed} expired cache entries")
            except (StorageQuotaError, OSError) as e:
                logger.error(f"Cache sweep failed: {e}")

    # ------------------------------------------------------------------
    # Callback helpers
    # ------------------------------------------------------------------

    def _notify_block(self, tab_id: int, url: str, reason: str, score: int) -> None:
        if self.on_block:
            try:
                self.on_block(tab_id, url, reason, score)
            except Exception as e:
                logger.debug(f"on_block callback error: {e}")

    def _notify_forced_block(self, tab_id: int, url: str, reason: str, score: int) -> None:
        if self.on_forced_block:
            try:
                self.on_forced_block(tab_id, url, reason, score)
            except Exception as e:
                logger.debug(f"on_forced_block callback error: {e}")

    def _notify_grace_started(self, tab_id: int, url: str, seconds: int, message: str) -> None:
        if self.on_grace_started:
            try:
                self.on_grace_started(tab_id, url, seconds, message)
            except Exception as e:
                logger.debug(f"on_grace_started callback error: {e}")

    def _notify_clear_ui(self, tab_id: int) -> None:
        if self.on_clear_ui:
            try:
                self.on_clear_ui(tab_id)
            except Exception as e:
                logger.debug(f"on_clear_ui callback error: {e}")

    def _notify_state_change(self, snapshot: Dict[str, Any]) -> None:
        if self.on_state_change:
            try:
                self.on_state_change(snapshot)
            except Exception as e:
                logger.debug(f"on_state_change callback error: {e}")
