"""Marker parsing for agent output.

The agent reports its state with ``<promise>`` tags embedded in free text:

* ``<promise>COMPLETE</promise>``
* ``<promise>BLOCKED: reason</promise>``
* ``<promise>DECIDE: question</promise>``

A complete marker always takes precedence over blocked/decide markers, no
matter where each appears in the text.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from ralphloop.agent.models import Signal, SignalKind

_COMPLETE_PATTERN = re.compile(r"<promise>\s*COMPLETE\s*</promise>", re.IGNORECASE)
_PAYLOAD_PATTERNS = (
    (SignalKind.BLOCKED, re.compile(r"<promise>\s*BLOCKED:\s*(.+?)\s*</promise>", re.IGNORECASE)),
    (SignalKind.DECIDE, re.compile(r"<promise>\s*DECIDE:\s*(.+?)\s*</promise>", re.IGNORECASE)),
)
_ANY_MARKER_PATTERN = re.compile(r"<promise>(.+?)</promise>", re.IGNORECASE)
_COMMIT_MESSAGE_PATTERN = re.compile(
    r"<commit_message>(.*?)</commit_message>", re.IGNORECASE | re.DOTALL
)
COMMIT_MESSAGE_MAX_CHARS = 200


@dataclass(frozen=True, slots=True)
class ParsedTags:
    signal: Signal
    commit_message: str | None


def parse_signal(output: str) -> Signal:
    """Return the single signal carried by ``output``."""
    complete = _COMPLETE_PATTERN.search(output)
    if complete:
        return Signal(kind=SignalKind.COMPLETE, detail=None, raw=complete.group(0))

    for kind, pattern in _PAYLOAD_PATTERNS:
        match = pattern.search(output)
        if match:
            return Signal(kind=kind, detail=match.group(1).strip(), raw=match.group(0))

    return Signal.none()


def parse_commit_message(output: str) -> str | None:
    match = _COMMIT_MESSAGE_PATTERN.search(output)
    if not match:
        return None
    message = re.sub(r"\n+", " ", match.group(1).strip())
    return message[:COMMIT_MESSAGE_MAX_CHARS] or None


def parse_all(output: str) -> ParsedTags:
    return ParsedTags(signal=parse_signal(output), commit_message=parse_commit_message(output))


def contains_completion_signal(output: str, signal: str | None) -> bool:
    """True when the custom completion string or a complete marker is present."""
    if signal and signal in output:
        return True
    return _COMPLETE_PATTERN.search(output) is not None


def resolve_signal(output: str, completion_signal: str | None) -> Signal:
    """Parse ``output``, treating the custom completion string as a complete marker."""
    signal = parse_signal(output)
    if signal.kind is SignalKind.COMPLETE:
        return signal
    if completion_signal and contains_completion_signal(output, completion_signal):
        return Signal(kind=SignalKind.COMPLETE, detail=None, raw=completion_signal)
    return signal


def find_all_markers(output: str) -> list[str]:
    """List every ``<promise>`` tag in ``output``; for diagnostics only."""
    return [match.group(0) for match in _ANY_MARKER_PATTERN.finditer(output)]


def requires_user_intervention(signal: Signal | None) -> bool:
    return signal is not None and signal.kind in {SignalKind.BLOCKED, SignalKind.DECIDE}


def indicates_completion(signal: Signal | None) -> bool:
    return signal is not None and signal.kind is SignalKind.COMPLETE


def describe_signal(signal: Signal | None) -> str:
    kind = signal.kind if signal else SignalKind.NONE
    if kind is SignalKind.COMPLETE:
        return "Task completed successfully"
    if kind is SignalKind.BLOCKED:
        return f"Blocked: {signal.detail or 'Unknown reason'}"
    if kind is SignalKind.DECIDE:
        return f"Decision needed: {signal.detail or 'Unknown question'}"
    return "No status tag found"
