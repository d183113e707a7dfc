"""Prompt preparation.

Prompts are static: the same text is submitted on every iteration with only a
fixed instructional suffix appended. Progress lives in files the agent manages
inside the project, so nothing iteration-specific is injected here.
"""

from __future__ import annotations

from pathlib import Path

SUFFIX_HEADER = "IMPORTANT INSTRUCTIONS FOR RALPH LOOP:"

COMMIT_MESSAGE_INSTRUCTION = (
    "If you made code changes that should be committed, provide a commit message:\n"
    "   <commit_message>Brief description of changes</commit_message>"
)


def completion_suffix(signal: str, *, auto_commit: bool = True) -> str:
    """Instructions that teach the agent the marker formats."""
    steps: list[str] = []
    if auto_commit:
        steps.append(COMMIT_MESSAGE_INSTRUCTION)
    steps.extend(
        [
            f"If ALL tasks are fully complete, output:\n   {signal}",
            (
                "If you are BLOCKED and cannot continue without human intervention, output:\n"
                "   <promise>BLOCKED: [brief reason why you're blocked]</promise>"
            ),
            (
                "If you need a DECISION from the user before continuing, output:\n"
                "   <promise>DECIDE: [brief question for the user]</promise>"
            ),
        ]
    )
    numbered = "\n\n".join(f"{idx}. {step}" for idx, step in enumerate(steps, start=1))
    return "\n".join(
        [
            "",
            "",
            "---",
            SUFFIX_HEADER,
            "",
            "When you have completed work in this iteration:",
            "",
            numbered,
            "",
            (
                "Do not output promise tags until you've attempted to complete the tasks"
                " or determined you cannot proceed."
            ),
            "---",
        ]
    )


def prepare_prompt(prompt: str, signal: str, *, auto_commit: bool = True) -> str:
    return f"{prompt}{completion_suffix(signal, auto_commit=auto_commit)}"


def load_prompt(value: str, *, base_dir: str | Path | None = None) -> tuple[str, bool]:
    """Return ``(prompt, from_file)``; ``value`` may be literal text or a file path."""
    if not value.strip():
        return value, False
    candidate = Path(value).expanduser()
    if base_dir is not None and not candidate.is_absolute():
        candidate = Path(base_dir) / candidate
    try:
        is_file = candidate.is_file()
    except OSError:
        # Long prompt text is not a valid path on some platforms.
        return value, False
    if not is_file:
        return value, False
    return candidate.read_text(encoding="utf-8"), True
