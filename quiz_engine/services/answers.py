"""Option-letter answer sets.

Answers travel as strings such as ``"A"`` or ``"B, d"``. They are parsed once at
the boundary into a frozenset of :class:`OptionLetter`; comparison happens on
sets, so ordering, whitespace and case never affect grading.
"""
import enum
from typing import FrozenSet, Iterable, Optional, Union

from quiz_engine.core.errors import InvalidAnswer


class OptionLetter(str, enum.Enum):
    A = "A"
    B = "B"
    C = "C"
    D = "D"
    E = "E"


AnswerSet = FrozenSet[OptionLetter]


def parse_answer(raw: Union[str, Iterable[str], None]) -> Optional[AnswerSet]:
    """Parse a raw answer; ``None`` means the question was skipped."""
    if raw is None:
        return None
    parts = raw.split(",") if isinstance(raw, str) else list(raw)
    letters = set()
    for part in parts:
        token = part.strip().upper()
        if not token:
            continue
        try:
            letters.add(OptionLetter(token))
        except ValueError:
            raise InvalidAnswer(f"'{part.strip()}' is not an option letter (A-E)")
    return frozenset(letters) or None


def format_answer(letters: Optional[AnswerSet]) -> Optional[str]:
    """Canonical storage form: sorted letters joined by commas."""
    if not letters:
        return None
    return ",".join(sorted(letter.value for letter in letters))


def normalize_answer(raw: Union[str, Iterable[str], None]) -> Optional[str]:
    return format_answer(parse_answer(raw))
