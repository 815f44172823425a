"""
Canonical transcript model.

A Transcript is an immutable, ordered sequence of Turns. Array order is the
conversation order; later turns may correct earlier ones.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple


class Speaker(Enum):
    """Speaker role of a turn."""

    AGENT = "agent"
    USER = "user"
    TOOL_EVENT = "system-tool-event"


@dataclass(frozen=True)
class ToolResult:
    """
    Structured payload returned by a backend lookup during the call.

    Attributes:
        tool_name: Tool that produced the result (e.g. identificar_cliente)
        payload: Parsed JSON object, None if the raw value was not valid JSON
        raw: Raw result value as received
        is_error: Tool reported an error
    """

    tool_name: str
    payload: Optional[Dict[str, Any]]
    raw: str = ""
    is_error: bool = False


@dataclass(frozen=True)
class ToolCall:
    """Tool invocation requested by the agent."""

    tool_name: str
    parameters: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Turn:
    """
    One dialogue turn.

    Attributes:
        index: Position in the canonical sequence
        speaker: Speaker role
        text: Message text (tool markers removed)
        timestamp: Seconds from call start, if known
        tool_results: Tool results attached to this turn
        tool_calls: Tool calls attached to this turn
    """

    index: int
    speaker: Speaker
    text: str
    timestamp: Optional[float] = None
    tool_results: Tuple[ToolResult, ...] = ()
    tool_calls: Tuple[ToolCall, ...] = ()

    @property
    def is_user(self) -> bool:
        return self.speaker is Speaker.USER

    @property
    def is_agent(self) -> bool:
        return self.speaker is Speaker.AGENT


@dataclass(frozen=True)
class Transcript:
    """Ordered, immutable sequence of turns for one call."""

    call_id: str
    turns: Tuple[Turn, ...] = ()

    def __iter__(self) -> Iterator[Turn]:
        return iter(self.turns)

    def __len__(self) -> int:
        return len(self.turns)

    def user_turns(self) -> List[Turn]:
        return [t for t in self.turns if t.is_user]

    def agent_turns(self) -> List[Turn]:
        return [t for t in self.turns if t.is_agent]

    def tool_results(self) -> List[Tuple[int, ToolResult]]:
        """All tool results in conversation order, with their turn index."""
        return [(t.index, result) for t in self.turns for result in t.tool_results]

    def full_text(self, speaker: Optional[Speaker] = None) -> str:
        """Concatenated text, optionally restricted to one speaker."""
        return "\n".join(t.text for t in self.turns if t.text and (speaker is None or t.speaker is speaker))

    @property
    def duration_seconds(self) -> Optional[float]:
        stamps = [t.timestamp for t in self.turns if t.timestamp is not None]
        if len(stamps) < 2:
            return None
        return max(stamps) - min(stamps)
