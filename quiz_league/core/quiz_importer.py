"""Utilities for importing questions from a human-friendly text format.

Format (repeat blocks separated by blank lines or '---'):

    Q: Question text (supports markdown + LaTeX). Additional lines until the
       next marker are treated as part of the question.
    A: First option text
    B: Second option text
    ...         (two to six options, A-F, in order)
    CORRECT: A|B|C|D|E|F
    TIMELIMIT: seconds   (optional, defaults to 30)
    POINTS: integer      (optional, defaults to 10)
    PENALTY: integer     (optional, defaults to 0)
    CATEGORY: label      (optional, defaults to General)
    DIFFICULTY: easy|medium|hard (optional, defaults to medium)

Example:

    Q: What is $2 + 2$?
    A: 3
    B: 4
    C: 5
    CORRECT: B
    TIMELIMIT: 20
    POINTS: 15
"""

from __future__ import annotations

from quiz_league.constants.quiz_constants import (
    DEFAULT_NEGATIVE_POINTS,
    DEFAULT_POSITIVE_POINTS,
    DEFAULT_TIME_LIMIT_SECONDS,
    MAX_OPTION_COUNT,
    MIN_OPTION_COUNT,
)
from quiz_league.core.errors import ValidationError
from quiz_league.core.models import Difficulty, Question


class QuizImportError(ValidationError):
    """Raised when a question block cannot be parsed."""


_OPTION_ORDER = ["A", "B", "C", "D", "E", "F"][:MAX_OPTION_COUNT]
_INTEGER_MARKERS = ("TIMELIMIT", "POINTS", "PENALTY")


def parse_questions(text: str) -> list[Question]:
    """Parse every block in ``text`` into an unsaved question draft."""
    blocks: list[str] = []
    current_block: list[str] = []
    for raw_line in (text or "").splitlines():
        stripped = raw_line.strip()
        if stripped == "---":
            if current_block:
                blocks.append("\n".join(current_block).strip())
                current_block = []
            continue
        if stripped:
            current_block.append(raw_line)
        elif current_block:
            blocks.append("\n".join(current_block).strip())
            current_block = []
    if current_block:
        blocks.append("\n".join(current_block).strip())

    questions: list[Question] = []
    for number, block in enumerate(blocks, start=1):
        try:
            questions.append(_parse_block(block))
        except QuizImportError as exc:
            raise QuizImportError(f"Question {number}: {exc.message}") from exc
    if not questions:
        raise QuizImportError("Import did not contain any questions.")
    return questions


def _parse_block(block: str) -> Question:
    question_lines: list[str] = []
    options: dict[str, str] = {}
    correct_letter: str | None = None
    numbers: dict[str, int] = {}
    category = "General"
    difficulty = Difficulty.MEDIUM
    current_section: str | None = None

    for raw_line in block.splitlines():
        line = raw_line.strip()
        if not line:
            continue

        marker, separator, value = line.partition(":")
        marker = marker.strip().upper()
        value = value.strip()

        if marker == "Q":
            question_lines = [value]
            current_section = "Q"
            continue

        if marker == "CORRECT":
            correct_letter = value.upper()
            current_section = None
            continue

        if marker in _INTEGER_MARKERS:
            numbers[marker] = _parse_integer(marker, value)
            current_section = None
            continue

        if marker == "CATEGORY":
            category = value or "General"
            current_section = None
            continue

        if marker == "DIFFICULTY":
            try:
                difficulty = Difficulty(value.lower())
            except ValueError as exc:
                raise QuizImportError("DIFFICULTY must be easy, medium or hard.") from exc
            current_section = None
            continue

        if separator and len(marker) == 1 and marker in _OPTION_ORDER:
            options[marker] = value
            current_section = marker
            continue

        if current_section == "Q":
            question_lines.append(line)
        elif current_section in _OPTION_ORDER:
            options[current_section] = options[current_section] + f"\n{line}"
        else:
            raise QuizImportError(f"Encountered text outside of a known section: '{line}'.")

    question_text = "\n".join(question_lines).strip()
    if not question_text:
        raise QuizImportError("Question text missing (Q: ...)")

    letters = _OPTION_ORDER[: len(options)]
    if sorted(options) != letters:
        raise QuizImportError("Options must be lettered consecutively starting at A.")
    if not MIN_OPTION_COUNT <= len(letters) <= MAX_OPTION_COUNT:
        raise QuizImportError(
            f"Each question must define between {MIN_OPTION_COUNT} and {MAX_OPTION_COUNT} options."
        )
    option_list = [options[letter].strip() for letter in letters]
    if any(not option for option in option_list):
        raise QuizImportError("Option text cannot be empty.")

    if correct_letter is None:
        raise QuizImportError("CORRECT is required.")
    if correct_letter not in letters:
        raise QuizImportError(f"CORRECT must be one of {', '.join(letters)}.")

    return Question(
        id="",  # assigned when the question is stored
        text=question_text,
        options=option_list,
        correct_answer=letters.index(correct_letter),
        category=category,
        difficulty=difficulty,
        positive_points=numbers.get("POINTS", DEFAULT_POSITIVE_POINTS),
        negative_points=numbers.get("PENALTY", DEFAULT_NEGATIVE_POINTS),
        time_limit_seconds=numbers.get("TIMELIMIT", DEFAULT_TIME_LIMIT_SECONDS),
    )


def _parse_integer(marker: str, raw_value: str) -> int:
    if not raw_value:
        raise QuizImportError(f"{marker} must include an integer value.")
    try:
        parsed_value = int(raw_value)
    except ValueError as exc:
        raise QuizImportError(f"{marker} must be an integer.") from exc
    if parsed_value < 0 or (parsed_value == 0 and marker != "PENALTY"):
        raise QuizImportError(f"{marker} must be a positive integer.")
    return parsed_value
