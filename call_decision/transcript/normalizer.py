"""
Transcript Normalizer

Converts the raw turn list received from the voice gateway into a canonical
Transcript:
- [Tool Call: x] / [Tool Result: x] markers are lifted out of the text into
  structured records on the originating turn
- consecutive turns from the same speaker stay separate
- empty turns are dropped (unless they carry tool records)
- array order is authoritative; timestamps only fail the transcript when they
  run backwards by more than the tolerance
"""

import json
import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..core.exceptions import MalformedTranscriptError
from ..utils.text_utils import clean_text
from .models import Speaker, ToolCall, ToolResult, Transcript, Turn


logger = logging.getLogger(__name__)


SPEAKER_ALIASES = {
    "agent": Speaker.AGENT,
    "agente": Speaker.AGENT,
    "assistant": Speaker.AGENT,
    "bot": Speaker.AGENT,
    "ai": Speaker.AGENT,
    "user": Speaker.USER,
    "usuario": Speaker.USER,
    "client": Speaker.USER,
    "cliente": Speaker.USER,
    "customer": Speaker.USER,
    "caller": Speaker.USER,
    "system": Speaker.TOOL_EVENT,
    "tool": Speaker.TOOL_EVENT,
    "tool_event": Speaker.TOOL_EVENT,
    "system-tool-event": Speaker.TOOL_EVENT,
}

TEXT_KEYS = ("message", "text", "content")
TIMESTAMP_KEYS = ("timestamp", "time_in_call_secs", "segment_start_time", "start_time")

# [Tool Call: identificar_cliente] or [Tool Result: identificar_cliente]
TOOL_MARKER_PATTERN = re.compile(r"\[\s*Tool\s+(Call|Result)\s*:\s*([\w.\-]+)\s*\]", re.IGNORECASE)


class TranscriptNormalizer:
    """
    Build canonical transcripts from raw turn dictionaries.

    Usage:
        normalizer = TranscriptNormalizer(timestamp_tolerance=2.0)
        transcript = normalizer.normalize(raw_turns, call_id="conv_123")
    """

    def __init__(self, timestamp_tolerance: float = 2.0):
        """
        Args:
            timestamp_tolerance: Seconds a timestamp may run backwards before
                the transcript is rejected
        """
        self.timestamp_tolerance = timestamp_tolerance

    def normalize(self, raw_turns: Sequence[Dict[str, Any]], call_id: str = "") -> Transcript:
        """
        Normalize a raw turn list.

        Args:
            raw_turns: Ordered list of raw turn mappings
            call_id: Opaque call identifier (provenance only)

        Returns:
            Canonical Transcript

        Raises:
            MalformedTranscriptError: On unknown speakers, bad timestamps or
                non-list input
        """
        if not isinstance(raw_turns, (list, tuple)):
            raise MalformedTranscriptError(f"transcript must be a list of turns, got {type(raw_turns).__name__}")

        turns: List[Turn] = []
        latest_timestamp: Optional[float] = None
        dropped = 0

        for position, raw in enumerate(raw_turns):
            if not isinstance(raw, dict):
                raise MalformedTranscriptError(f"turn is not a mapping ({type(raw).__name__})", position)

            speaker = self._parse_speaker(raw, position)
            timestamp = self._parse_timestamp(raw, position)

            if timestamp is not None:
                if latest_timestamp is not None and timestamp < latest_timestamp - self.timestamp_tolerance:
                    raise MalformedTranscriptError(
                        f"timestamp {timestamp:.2f}s goes back more than {self.timestamp_tolerance}s "
                        f"(latest seen {latest_timestamp:.2f}s)",
                        position,
                    )
                latest_timestamp = timestamp if latest_timestamp is None else max(latest_timestamp, timestamp)

            text, marker_calls, marker_results = self._lift_markers(self._raw_text(raw))
            tool_calls = marker_calls + self._parse_tool_calls(raw.get("tool_calls"))
            tool_results = marker_results + self._parse_tool_results(raw.get("tool_results"))

            if not text:
                if not tool_calls and not tool_results:
                    dropped += 1
                    continue
                speaker = Speaker.TOOL_EVENT

            turns.append(
                Turn(
                    index=len(turns),
                    speaker=speaker,
                    text=text,
                    timestamp=timestamp,
                    tool_results=tuple(tool_results),
                    tool_calls=tuple(tool_calls),
                )
            )

        logger.debug(f"[{call_id}] normalized {len(turns)} turns ({dropped} empty dropped)")
        return Transcript(call_id=call_id, turns=tuple(turns))

    def _parse_speaker(self, raw: Dict[str, Any], position: int) -> Speaker:
        value = raw.get("speaker", raw.get("role"))
        if not isinstance(value, str) or not value.strip():
            raise MalformedTranscriptError("missing speaker role", position)

        speaker = SPEAKER_ALIASES.get(value.strip().lower())
        if speaker is None:
            raise MalformedTranscriptError(f"unrecognized speaker role {value!r}", position)
        return speaker

    def _parse_timestamp(self, raw: Dict[str, Any], position: int) -> Optional[float]:
        value = None
        for key in TIMESTAMP_KEYS:
            if raw.get(key) is not None:
                value = raw[key]
                break
        if value is None:
            return None

        if isinstance(value, bool):
            raise MalformedTranscriptError(f"invalid timestamp {value!r}", position)
        if isinstance(value, (int, float)):
            return float(value)
        if isinstance(value, str):
            try:
                return float(value)
            except ValueError:
                pass
            try:
                return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
            except ValueError:
                pass
        raise MalformedTranscriptError(f"invalid timestamp {value!r}", position)

    @staticmethod
    def _raw_text(raw: Dict[str, Any]) -> str:
        for key in TEXT_KEYS:
            value = raw.get(key)
            if value is not None:
                return str(value)
        return ""

    def _lift_markers(self, text: str) -> Tuple[str, List[ToolCall], List[ToolResult]]:
        """
        Remove tool markers from text and turn them into records.

        A JSON object directly after a marker is taken as its payload.
        """
        calls: List[ToolCall] = []
        results: List[ToolResult] = []
        if not text or "[" not in text:
            return clean_text(text), calls, results

        pieces: List[str] = []
        cursor = 0
        decoder = json.JSONDecoder()

        for match in TOOL_MARKER_PATTERN.finditer(text):
            if match.start() < cursor:
                continue  # inside a payload we already consumed
            pieces.append(text[cursor:match.start()])
            kind, tool_name = match.group(1).lower(), match.group(2)
            cursor = match.end()

            payload: Optional[Any] = None
            raw_payload = ""
            rest = text[cursor:]
            stripped = rest.lstrip()
            if stripped.startswith("{"):
                offset = len(rest) - len(stripped)
                try:
                    payload, consumed = decoder.raw_decode(stripped)
                    raw_payload = stripped[:consumed]
                    cursor += offset + consumed
                except json.JSONDecodeError:
                    payload = None

            if kind == "call":
                calls.append(ToolCall(tool_name=tool_name, parameters=payload if isinstance(payload, dict) else {}))
            else:
                results.append(
                    ToolResult(
                        tool_name=tool_name,
                        payload=payload if isinstance(payload, dict) else None,
                        raw=raw_payload,
                    )
                )

        pieces.append(text[cursor:])
        return clean_text(" ".join(pieces)), calls, results

    @staticmethod
    def _parse_tool_calls(raw_calls: Any) -> List[ToolCall]:
        calls = []
        for item in raw_calls or []:
            if not isinstance(item, dict):
                continue
            name = item.get("tool_name") or item.get("name") or "unknown"
            params = item.get("params_as_json") or item.get("parameters") or item.get("params") or {}
            if isinstance(params, str):
                try:
                    params = json.loads(params)
                except json.JSONDecodeError:
                    params = {"raw": params}
            calls.append(ToolCall(tool_name=str(name), parameters=params if isinstance(params, dict) else {}))
        return calls

    @staticmethod
    def _parse_tool_results(raw_results: Any) -> List[ToolResult]:
        results = []
        for item in raw_results or []:
            if not isinstance(item, dict):
                continue
            name = item.get("tool_name") or item.get("name") or "unknown"
            value = None
            for key in ("result_value", "result", "payload"):
                if item.get(key) is not None:
                    value = item[key]
                    break

            payload = None
            raw = ""
            if isinstance(value, dict):
                payload = value
                raw = json.dumps(value, ensure_ascii=False)
            elif isinstance(value, str):
                raw = value
                try:
                    parsed = json.loads(value)
                    payload = parsed if isinstance(parsed, dict) else None
                except json.JSONDecodeError:
                    payload = None

            results.append(
                ToolResult(tool_name=str(name), payload=payload, raw=raw, is_error=bool(item.get("is_error", False)))
            )
        return results
