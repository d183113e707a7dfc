from __future__ import annotations

import pytest

from ralphloop.agent.prompt import SUFFIX_HEADER, completion_suffix, load_prompt, prepare_prompt


def test_prepare_prompt_appends_suffix_with_signal() -> None:
    prompt = prepare_prompt("Build the thing", "<promise>COMPLETE</promise>")

    assert prompt.startswith("Build the thing\n\n---\n")
    assert SUFFIX_HEADER in prompt
    assert "<promise>COMPLETE</promise>" in prompt
    assert "<promise>BLOCKED: [brief reason why you're blocked]</promise>" in prompt
    assert "<promise>DECIDE: [brief question for the user]</promise>" in prompt
    assert prompt.endswith("---")


def test_prepare_prompt_is_pure() -> None:
    first = prepare_prompt("Same input", "DONE")
    second = prepare_prompt("Same input", "DONE")

    assert first == second


def test_suffix_mentions_commit_message_only_with_auto_commit() -> None:
    with_commit = completion_suffix("DONE", auto_commit=True)
    without_commit = completion_suffix("DONE", auto_commit=False)

    assert "<commit_message>" in with_commit
    assert "1. If you made code changes" in with_commit
    assert "<commit_message>" not in without_commit
    assert "1. If ALL tasks are fully complete" in without_commit
    assert "3. If you need a DECISION" in without_commit


def test_load_prompt_returns_literal_text() -> None:
    assert load_prompt("Fix the failing tests") == ("Fix the failing tests", False)


def test_load_prompt_reads_file(tmp_path) -> None:
    prompt_file = tmp_path / "PROMPT.md"
    prompt_file.write_text("# Task\nDo it\n", encoding="utf-8")

    assert load_prompt(str(prompt_file)) == ("# Task\nDo it\n", True)


def test_load_prompt_resolves_relative_to_base_dir(tmp_path) -> None:
    (tmp_path / "task.txt").write_text("from base dir", encoding="utf-8")

    assert load_prompt("task.txt", base_dir=tmp_path) == ("from base dir", True)


def test_load_prompt_treats_directories_as_text(tmp_path) -> None:
    assert load_prompt(str(tmp_path)) == (str(tmp_path), False)


@pytest.mark.parametrize("value", ["", "   "])
def test_load_prompt_passes_blank_values_through(value: str) -> None:
    assert load_prompt(value) == (value, False)
