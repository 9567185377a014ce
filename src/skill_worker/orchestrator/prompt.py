"""Prompt document assembly from skills and free-form context."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path

from skill_worker.orchestrator.models import Skill

logger = logging.getLogger(__name__)

PROMPT_FILE_NAME = ".prompt.md"
SKILL_SEPARATOR = "\n\n---\n\n"


def build_prompt(skills: Sequence[Skill], context: str | None) -> str:
    """Concatenate skills in order followed by the task context."""

    parts: list[str] = []
    for skill in skills:
        parts.append(f"# SKILL: {skill.name}\n\n")
        parts.append(skill.content)
        parts.append(SKILL_SEPARATOR)
    parts.append("# CONTEXT\n\n")
    parts.append(context or "")
    return "".join(parts)


@contextmanager
def prompt_document(workdir: Path, text: str) -> Iterator[Path]:
    """Write the prompt into ``workdir`` and remove it on every exit path."""

    path = workdir / PROMPT_FILE_NAME
    path.write_text(text, "utf-8")
    logger.info("  Prompt file: %s (%d chars)", path, len(text))
    try:
        yield path
    finally:
        try:
            path.unlink(missing_ok=True)
        except OSError as error:
            logger.warning("  [WARN] Could not remove prompt file %s: %s", path, error)
