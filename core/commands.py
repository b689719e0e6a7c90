"""
Commands accepted by the engine.

Each browser message `{"action": ..., ...}` parses into exactly one
command class. The engine keeps a handler per class and refuses to start
if one is missing, so a new command can never silently do nothing.
"""

from dataclasses import dataclass, fields
from typing import Any, ClassVar, Dict, Optional, Tuple, Type


class UnknownCommandError(ValueError):
    """Raised for a payload whose action is not a known command."""


class InvalidCommandError(ValueError):
    """Raised for a known action with missing or mistyped fields."""


@dataclass(frozen=True)
class Command:
    ACTION: ClassVar[str] = ""
    ALIASES: ClassVar[Tuple[str, ...]] = ()

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> 'Command':
        """
        Parse a message payload into its command.

        Raises:
            UnknownCommandError: If the action is missing or unknown.
            InvalidCommandError: If a required field is missing or has the wrong type.
        """
        if not isinstance(payload, dict):
            raise InvalidCommandError("Command payload must be an object")
        action = payload.get("action")
        command_cls = _REGISTRY.get(action) if isinstance(action, str) else None
        if command_cls is None:
            raise UnknownCommandError(f"Unknown action: {action!r}")
        return command_cls._parse(payload)

    @classmethod
    def _parse(cls, payload: Dict[str, Any]) -> 'Command':
        kwargs = {}
        for f in fields(cls):
            if f.name in payload:
                kwargs[f.name] = payload[f.name]
        try:
            return cls(**kwargs)
        except TypeError as e:
            raise InvalidCommandError(f"{cls.ACTION}: {e}") from e


def _require_str(action: str, name: str, value: Any) -> None:
    if not isinstance(value, str) or not value.strip():
        raise InvalidCommandError(f"{action}: '{name}' must be a non-empty string")


def _require_tab(action: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidCommandError(f"{action}: 'tab_id' must be an integer")


# ----------------------------------------------------------------------
# Scheduler
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class InitFocus(Command):
    ACTION: ClassVar[str] = "init_focus"
    keywords: str

    def __post_init__(self):
        _require_str(self.ACTION, "keywords", self.keywords)


@dataclass(frozen=True)
class PauseFocus(Command):
    ACTION: ClassVar[str] = "pause_focus"


@dataclass(frozen=True)
class ResumeFocus(Command):
    ACTION: ClassVar[str] = "resume_focus"


@dataclass(frozen=True)
class StopFocus(Command):
    ACTION: ClassVar[str] = "stop_focus"


@dataclass(frozen=True)
class EndFocus(Command):
    ACTION: ClassVar[str] = "end_focus"
    ALIASES: ClassVar[Tuple[str, ...]] = ("start_break",)


@dataclass(frozen=True)
class EndBreak(Command):
    ACTION: ClassVar[str] = "end_break"


@dataclass(frozen=True)
class SkipBreak(Command):
    ACTION: ClassVar[str] = "skip_break"
    ALIASES: ClassVar[Tuple[str, ...]] = ("start_focus",)


@dataclass(frozen=True)
class MarkTaskComplete(Command):
    ACTION: ClassVar[str] = "mark_task_complete"
    next: Optional[str] = None


@dataclass(frozen=True)
class SetKeywords(Command):
    ACTION: ClassVar[str] = "set_keywords"
    keywords: str

    def __post_init__(self):
        _require_str(self.ACTION, "keywords", self.keywords)


# ----------------------------------------------------------------------
# Relevance and tabs
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class CheckRelevance(Command):
    """
    Classify the page shown in a tab.

    `content` is what the page's content script extracted, if anything:
    {"title", "content_snippet", "h1", "description", "body_text"}.
    """

    ACTION: ClassVar[str] = "check_relevance"
    tab_id: int
    url: str
    title: str = ""
    content: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        _require_tab(self.ACTION, self.tab_id)
        _require_str(self.ACTION, "url", self.url)
        if self.content is not None and not isinstance(self.content, dict):
            raise InvalidCommandError(f"{self.ACTION}: 'content' must be an object")


@dataclass(frozen=True)
class TabNavigated(Command):
    ACTION: ClassVar[str] = "tab_navigated"
    tab_id: int
    url: str

    def __post_init__(self):
        _require_tab(self.ACTION, self.tab_id)
        _require_str(self.ACTION, "url", self.url)


@dataclass(frozen=True)
class TabClosed(Command):
    ACTION: ClassVar[str] = "tab_closed"
    tab_id: int

    def __post_init__(self):
        _require_tab(self.ACTION, self.tab_id)


# ----------------------------------------------------------------------
# Cache and status
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class ClearCache(Command):
    ACTION: ClassVar[str] = "clear_cache"


@dataclass(frozen=True)
class GetCacheStats(Command):
    ACTION: ClassVar[str] = "get_cache_stats"


@dataclass(frozen=True)
class GetPopupState(Command):
    ACTION: ClassVar[str] = "get_popup_state"
    tab_id: Optional[int] = None


@dataclass(frozen=True)
class GetStatus(Command):
    ACTION: ClassVar[str] = "get_status"


COMMAND_TYPES: Tuple[Type[Command], ...] = (
    InitFocus,
    PauseFocus,
    ResumeFocus,
    StopFocus,
    EndFocus,
    EndBreak,
    SkipBreak,
    MarkTaskComplete,
    SetKeywords,
    CheckRelevance,
    TabNavigated,
    TabClosed,
    ClearCache,
    GetCacheStats,
    GetPopupState,
    GetStatus,
)

_REGISTRY: Dict[str, Type[Command]] = {}
for _cls in COMMAND_TYPES:
    for _action in (_cls.ACTION,) + _cls.ALIASES:
        _REGISTRY[_action] = _cls
