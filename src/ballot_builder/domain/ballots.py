"""Domain models for ballot drafts."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import StrEnum

EDIT_STEPS = (1, 2, 3)


class QuestionKind(StrEnum):
    """Supported ballot question types."""

    SINGLE_CHOICE = "single_choice"
    MULTIPLE_CHOICE = "multiple_choice"
    RANK_CHOICE = "rank_choice"
    FREE_TEXT = "free_text"

    @property
    def is_choice(self) -> bool:
        """Return True when voters pick among listed options."""
        return self is not QuestionKind.FREE_TEXT


class ValidationIssue(StrEnum):
    """Reasons a wizard step is incomplete."""

    MISSING_TITLE = "missing_title"
    NO_QUESTIONS = "no_questions"
    EMPTY_QUESTION_TITLE = "empty_question_title"
    TOO_FEW_OPTIONS = "too_few_options"
    MISSING_DATES = "missing_dates"
    END_NOT_AFTER_START = "end_not_after_start"
    SEAT_COUNT_NOT_POSITIVE = "seat_count_not_positive"


@dataclass(frozen=True)
class Question:
    """A single ballot question with its options."""

    title: str
    options: tuple[str, ...] = ()
    allow_write_in: bool = False
    kind: QuestionKind = QuestionKind.SINGLE_CHOICE

    def filled_options(self) -> tuple[str, ...]:
        """Return option labels that are not blank."""
        return tuple(option for option in self.options if option.strip())

    @property
    def min_options(self) -> int:
        return 2 if self.kind.is_choice else 1


@dataclass(frozen=True)
class VotingWindow:
    """Start and end of the voting period."""

    start_at: datetime | None = None
    end_at: datetime | None = None


@dataclass(frozen=True)
class BallotDraft:
    """In-progress election definition built by the wizard.

    The draft is an immutable value: edits produce a new draft, so any
    reference held elsewhere is a stable snapshot.
    """

    title: str = ""
    description: str | None = None
    questions: tuple[Question, ...] = ()
    duration: VotingWindow = field(default_factory=VotingWindow)
    seat_count: int | None = None

    def validate_content_step(self) -> ValidationIssue | None:
        """Check the title and questions entered on step 1."""
        if not self.title.strip():
            return ValidationIssue.MISSING_TITLE
        if not self.questions:
            return ValidationIssue.NO_QUESTIONS
        for question in self.questions:
            if not question.title.strip():
                return ValidationIssue.EMPTY_QUESTION_TITLE
            if len(question.filled_options()) < question.min_options:
                return ValidationIssue.TOO_FEW_OPTIONS
        return None

    def validate_duration_step(self) -> ValidationIssue | None:
        """Check the voting window entered on step 2."""
        start_at = self.duration.start_at
        end_at = self.duration.end_at
        if start_at is None or end_at is None:
            return ValidationIssue.MISSING_DATES
        if _as_utc(end_at) <= _as_utc(start_at):
            return ValidationIssue.END_NOT_AFTER_START
        return None

    def validate_participants_step(self) -> ValidationIssue | None:
        """Check the seat count entered on step 3."""
        seat_count = self.seat_count
        if (
            not isinstance(seat_count, int)
            or isinstance(seat_count, bool)
            or seat_count <= 0
        ):
            return ValidationIssue.SEAT_COUNT_NOT_POSITIVE
        return None

    def validate_step(self, step: int) -> ValidationIssue | None:
        """Validate a wizard step by number."""
        if step == 1:
            return self.validate_content_step()
        if step == 2:  # noqa: PLR2004
            return self.validate_duration_step()
        if step == 3:  # noqa: PLR2004
            return self.validate_participants_step()
        raise ValueError(f"Unknown ballot step: {step}")

    def first_issue(self) -> ValidationIssue | None:
        """Return the first failing step's issue, if any."""
        for step in EDIT_STEPS:
            issue = self.validate_step(step)
            if issue is not None:
                return issue
        return None

    def canonical_payload(self) -> dict[str, object]:
        """Return a deterministic JSON-compatible representation."""
        return {
            "title": self.title,
            "description": self.description,
            "questions": [
                {
                    "title": question.title,
                    "kind": question.kind.value,
                    "options": list(question.options),
                    "allow_write_in": question.allow_write_in,
                }
                for question in self.questions
            ],
            "start_at": _isoformat(self.duration.start_at),
            "end_at": _isoformat(self.duration.end_at),
            "seat_count": self.seat_count,
        }


@dataclass(frozen=True)
class Pricing:
    """Per-deployment seat pricing."""

    price_per_seat: Decimal
    currency: str = "usd"
    exponent: int = 2

    def amount_for(self, seat_count: int) -> int:
        """Return the charge for a seat count in currency minor units."""
        scale = Decimal(10) ** self.exponent
        total = Decimal(seat_count) * self.price_per_seat * scale
        return int(total.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _isoformat(value: datetime | None) -> str | None:
    if value is None:
        return None
    return _as_utc(value).isoformat()
