from __future__ import annotations

import pytest

from ralphloop.agent.models import Signal, SignalKind
from ralphloop.agent.signals import (
    contains_completion_signal,
    describe_signal,
    find_all_markers,
    indicates_completion,
    parse_all,
    parse_commit_message,
    parse_signal,
    requires_user_intervention,
    resolve_signal,
)


def test_parse_signal_detects_complete_marker() -> None:
    signal = parse_signal("Finished everything.\n<promise>COMPLETE</promise>\n")

    assert signal.kind is SignalKind.COMPLETE
    assert signal.detail is None
    assert signal.raw == "<promise>COMPLETE</promise>"


@pytest.mark.parametrize(
    ("output", "kind", "detail"),
    [
        ("<promise>BLOCKED: need API key</promise>", SignalKind.BLOCKED, "need API key"),
        ("<promise>DECIDE: REST or GraphQL?</promise>", SignalKind.DECIDE, "REST or GraphQL?"),
        ("<promise>  blocked:   spaced out  </promise>", SignalKind.BLOCKED, "spaced out"),
        ("<PROMISE> Complete </PROMISE>", SignalKind.COMPLETE, None),
    ],
)
def test_parse_signal_kinds(output: str, kind: SignalKind, detail: str | None) -> None:
    signal = parse_signal(output)

    assert signal.kind is kind
    assert signal.detail == detail


def test_complete_marker_takes_precedence_regardless_of_position() -> None:
    output = (
        "<promise>BLOCKED: tests failing</promise>\n"
        "<promise>DECIDE: keep going?</promise>\n"
        "<promise>COMPLETE</promise>"
    )

    assert parse_signal(output).kind is SignalKind.COMPLETE


def test_blocked_checked_before_decide() -> None:
    output = "<promise>DECIDE: which db?</promise> <promise>BLOCKED: no network</promise>"

    signal = parse_signal(output)

    assert signal.kind is SignalKind.BLOCKED
    assert signal.detail == "no network"


@pytest.mark.parametrize(
    "output",
    ["", "working on it", "<promise></promise>", "<promise>BLOCKED:</promise>", "COMPLETE"],
)
def test_parse_signal_returns_none_without_marker(output: str) -> None:
    signal = parse_signal(output)

    assert signal == Signal.none()
    assert not signal.found


def test_parse_signal_is_deterministic() -> None:
    output = "text <promise>DECIDE: yes or no?</promise> more"

    assert parse_signal(output) == parse_signal(output)


def test_resolve_signal_accepts_custom_completion_string() -> None:
    signal = resolve_signal("all tests green: SHIP IT", "SHIP IT")

    assert signal.kind is SignalKind.COMPLETE
    assert signal.raw == "SHIP IT"


def test_resolve_signal_prefers_standard_marker() -> None:
    signal = resolve_signal("<promise>COMPLETE</promise>", "SHIP IT")

    assert signal.raw == "<promise>COMPLETE</promise>"


def test_resolve_signal_keeps_blocked_when_custom_string_absent() -> None:
    signal = resolve_signal("<promise>BLOCKED: stuck</promise>", "SHIP IT")

    assert signal.kind is SignalKind.BLOCKED


def test_contains_completion_signal() -> None:
    assert contains_completion_signal("done: SHIP IT", "SHIP IT")
    assert contains_completion_signal("<promise>COMPLETE</promise>", None)
    assert not contains_completion_signal("still going", "SHIP IT")


def test_find_all_markers_lists_every_tag_in_order() -> None:
    output = "<promise>BLOCKED: a</promise> noise <promise>COMPLETE</promise>"

    assert find_all_markers(output) == [
        "<promise>BLOCKED: a</promise>",
        "<promise>COMPLETE</promise>",
    ]


def test_parse_commit_message_collapses_newlines_and_truncates() -> None:
    assert parse_commit_message("<commit_message>\nAdd\nparser\n</commit_message>") == "Add parser"
    assert parse_commit_message("no tag here") is None
    assert parse_commit_message("<commit_message>   </commit_message>") is None
    long_message = parse_commit_message(f"<commit_message>{'x' * 500}</commit_message>")
    assert long_message is not None and len(long_message) == 200


def test_parse_all_returns_signal_and_commit_message() -> None:
    tags = parse_all("<commit_message>Fix bug</commit_message><promise>COMPLETE</promise>")

    assert tags.signal.kind is SignalKind.COMPLETE
    assert tags.commit_message == "Fix bug"


def test_signal_helpers() -> None:
    blocked = Signal(kind=SignalKind.BLOCKED, detail="no creds")
    complete = Signal(kind=SignalKind.COMPLETE)

    assert requires_user_intervention(blocked)
    assert requires_user_intervention(Signal(kind=SignalKind.DECIDE))
    assert not requires_user_intervention(complete)
    assert not requires_user_intervention(None)
    assert indicates_completion(complete)
    assert not indicates_completion(blocked)


def test_describe_signal() -> None:
    assert describe_signal(Signal(kind=SignalKind.COMPLETE)) == "Task completed successfully"
    assert describe_signal(Signal(kind=SignalKind.BLOCKED, detail="x")) == "Blocked: x"
    assert describe_signal(Signal(kind=SignalKind.DECIDE)) == "Decision needed: Unknown question"
    assert describe_signal(None) == "No status tag found"


def test_signal_dict_round_trip_tolerates_unknown_kind() -> None:
    signal = Signal(
        kind=SignalKind.DECIDE, detail="which?", raw="<promise>DECIDE: which?</promise>"
    )

    assert Signal.from_dict(signal.to_dict()) == signal
    assert Signal.from_dict({"kind": "EXPLODED"}) == Signal.none()
    assert Signal.from_dict(None) == Signal.none()
