"""Pydantic schemas: task configuration / answer / verdict unions and API payloads.

Every union is discriminated by a literal tag so that stored JSON round-trips
to the right variant and a config/answer pair can be matched by tag alone.
"""

from datetime import datetime
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, model_validator

TASK_TITLE_MAX_LENGTH = 50
EXAM_NAME_MAX_LENGTH = 200
SHORT_TEXT_MAX_CHARS_LIMIT = 1000
LONG_TEXT_MAX_CHARS_LIMIT = 100_000

TaskType = Literal[
    "single_choice",
    "multiple_choice",
    "short_text",
    "long_text",
    "ordering",
    "file_upload",
    "ctfd",
]


def _check_options(options: List[str], label: str = "options") -> None:
    if not options:
        raise ValueError(f"{label} must not be empty")
    if any(not o.strip() for o in options):
        raise ValueError(f"{label} must not contain blank entries")
    if len(set(options)) != len(options):
        raise ValueError(f"{label} must be unique")


def _check_max_chars(value: int, limit: int) -> None:
    if value < 1 or value > limit:
        raise ValueError(f"max_chars_count must be between 1 and {limit}")


# ===================== TASK CONFIGURATION =====================


class SingleChoiceConfig(BaseModel):
    name: Literal["single_choice"] = "single_choice"
    options: List[str]
    correct: int
    shuffle: bool = False

    @model_validator(mode="after")
    def _validate(self):
        _check_options(self.options)
        if not 0 <= self.correct < len(self.options):
            raise ValueError("correct must index one of the options")
        return self


class MultipleChoiceConfig(BaseModel):
    name: Literal["multiple_choice"] = "multiple_choice"
    options: List[str]
    correct: List[int]
    shuffle: bool = False
    partial_score: bool = False

    @model_validator(mode="after")
    def _validate(self):
        _check_options(self.options)
        if not self.correct:
            raise ValueError("correct must contain at least one option index")
        if len(set(self.correct)) != len(self.correct):
            raise ValueError("correct must not repeat an option index")
        if any(not 0 <= i < len(self.options) for i in self.correct):
            raise ValueError("correct must only index existing options")
        return self


class ShortTextConfig(BaseModel):
    name: Literal["short_text"] = "short_text"
    auto_grade: bool = True
    case_sensitive: bool = False
    max_chars_count: int
    answers: List[str] = []

    @model_validator(mode="after")
    def _validate(self):
        _check_max_chars(self.max_chars_count, SHORT_TEXT_MAX_CHARS_LIMIT)
        if self.auto_grade and not self.answers:
            raise ValueError("auto graded short text needs at least one accepted answer")
        return self


class LongTextConfig(BaseModel):
    name: Literal["long_text"] = "long_text"
    max_chars_count: int

    @model_validator(mode="after")
    def _validate(self):
        _check_max_chars(self.max_chars_count, LONG_TEXT_MAX_CHARS_LIMIT)
        return self


class OrderingConfig(BaseModel):
    name: Literal["ordering"] = "ordering"
    items: List[str]
    answers: List[List[int]]

    @model_validator(mode="after")
    def _validate(self):
        _check_options(self.items, "items")
        if not self.answers:
            raise ValueError("ordering needs at least one accepted permutation")
        expected = list(range(len(self.items)))
        for permutation in self.answers:
            if sorted(permutation) != expected:
                raise ValueError("every accepted ordering must be a permutation of item indices")
        return self


class FileUploadConfig(BaseModel):
    name: Literal["file_upload"] = "file_upload"
    max_size: str


class CTFdConfig(BaseModel):
    name: Literal["ctfd"] = "ctfd"
    task_id: int = Field(ge=1)


TaskConfig = Annotated[
    Union[
        SingleChoiceConfig,
        MultipleChoiceConfig,
        ShortTextConfig,
        LongTextConfig,
        OrderingConfig,
        FileUploadConfig,
        CTFdConfig,
    ],
    Field(discriminator="name"),
]
TASK_CONFIG_ADAPTER = TypeAdapter(TaskConfig)


def parse_task_config(data: dict) -> TaskConfig:
    return TASK_CONFIG_ADAPTER.validate_python(data)


def public_config(config: TaskConfig) -> dict:
    """Project a configuration onto what a student may see (no grading data)."""
    if isinstance(config, SingleChoiceConfig):
        return {"name": config.name, "options": list(config.options)}
    if isinstance(config, MultipleChoiceConfig):
        return {
            "name": config.name,
            "options": list(config.options),
            "partial_score": config.partial_score,
        }
    if isinstance(config, (ShortTextConfig, LongTextConfig)):
        return {"name": config.name, "max_chars_count": config.max_chars_count}
    if isinstance(config, OrderingConfig):
        return {"name": config.name, "items": list(config.items)}
    if isinstance(config, FileUploadConfig):
        return {"name": config.name, "max_size": config.max_size}
    if isinstance(config, CTFdConfig):
        return {"name": config.name, "task_id": config.task_id}
    raise TypeError(f"unknown task configuration {type(config).__name__}")


# ===================== TASK ANSWERS =====================


class SingleChoiceAnswer(BaseModel):
    name: Literal["single_choice"] = "single_choice"
    answer: str


class MultipleChoiceAnswer(BaseModel):
    name: Literal["multiple_choice"] = "multiple_choice"
    answers: List[str]


class ShortTextAnswer(BaseModel):
    name: Literal["short_text"] = "short_text"
    answer: str


class LongTextAnswer(BaseModel):
    name: Literal["long_text"] = "long_text"
    answer: str


class OrderingAnswer(BaseModel):
    name: Literal["ordering"] = "ordering"
    answer: List[str]


class FileUploadAnswer(BaseModel):
    name: Literal["file_upload"] = "file_upload"
    file_id: str


class CTFdAnswer(BaseModel):
    """Marker answer: present only when the remote platform reports the task solved."""

    name: Literal["ctfd"] = "ctfd"


TaskAnswer = Annotated[
    Union[
        SingleChoiceAnswer,
        MultipleChoiceAnswer,
        ShortTextAnswer,
        LongTextAnswer,
        OrderingAnswer,
        FileUploadAnswer,
        CTFdAnswer,
    ],
    Field(discriminator="name"),
]
TASK_ANSWER_ADAPTER = TypeAdapter(TaskAnswer)


def parse_task_answer(data: dict) -> TaskAnswer:
    return TASK_ANSWER_ADAPTER.validate_python(data)


# ===================== VERDICTS =====================


class FullScore(BaseModel):
    verdict: Literal["full_score"] = "full_score"
    score: float
    max_score: float
    comment: Optional[str] = None


class PartialScore(BaseModel):
    verdict: Literal["partial_score"] = "partial_score"
    score: float
    max_score: float
    comment: Optional[str] = None


class Incorrect(BaseModel):
    verdict: Literal["incorrect"] = "incorrect"
    score: float = 0.0
    max_score: float
    comment: Optional[str] = None


class OnReview(BaseModel):
    """Not graded yet; waits for a teacher."""

    verdict: Literal["on_review"] = "on_review"


TaskVerdict = Annotated[
    Union[FullScore, PartialScore, Incorrect, OnReview],
    Field(discriminator="verdict"),
]


def verdict_score(verdict: TaskVerdict) -> float:
    if isinstance(verdict, OnReview):
        return 0.0
    return verdict.score


class ScoringData(BaseModel):
    show_results: bool = False
    results: Dict[int, TaskVerdict] = {}

    def total_score(self) -> float:
        return sum(verdict_score(v) for v in self.results.values())

    def has_pending_review(self) -> bool:
        return any(isinstance(v, OnReview) for v in self.results.values())


# ===================== REQUEST / RESPONSE PAYLOADS =====================


class LoginIn(BaseModel):
    email: str
    password: str


class UserOut(BaseModel):
    id: int
    name: str
    email: str
    role: str


class TaskUpsertIn(BaseModel):
    title: str = Field(min_length=1, max_length=TASK_TITLE_MAX_LENGTH)
    description: Optional[str] = None
    task_type: TaskType
    points: int = Field(ge=0)
    configuration: TaskConfig

    @model_validator(mode="after")
    def _type_matches_configuration(self):
        if self.task_type != self.configuration.name:
            raise ValueError("task_type must match the configuration variant")
        return self


class TaskOut(BaseModel):
    id: int
    title: str
    description: Optional[str] = None
    task_type: str
    points: int
    configuration: dict


class ExamUpsertIn(BaseModel):
    topic_id: int
    name: str = Field(min_length=1, max_length=EXAM_NAME_MAX_LENGTH)
    description: Optional[str] = None
    tries_count: int = Field(default=0, ge=0)
    duration: int = Field(default=0, ge=0)
    type: Literal["instant", "delayed"] = "instant"
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _window_is_ordered(self):
        if self.starts_at and self.ends_at and self.starts_at >= self.ends_at:
            raise ValueError("starts_at must be before ends_at")
        return self


class ExamOut(BaseModel):
    id: int
    topic_id: int
    name: str
    description: Optional[str] = None
    tries_count: int
    duration: int
    type: str
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None


class TaskRef(BaseModel):
    type: Literal["task"] = "task"
    id: int


class TextRef(BaseModel):
    type: Literal["text"] = "text"
    id: int


EntityRef = Annotated[Union[TaskRef, TextRef], Field(discriminator="type")]


class EntitiesIn(BaseModel):
    entities: List[EntityRef]


class TextIn(BaseModel):
    text: str = Field(min_length=1)


class TextOut(BaseModel):
    id: int
    text: str


class AnswerIn(BaseModel):
    task_id: int
    answer: TaskAnswer


class AttemptOut(BaseModel):
    """Student-facing attempt; score fields are null while results are hidden."""

    id: int
    exam_id: int
    user_id: int
    started_at: datetime
    ends_at: datetime
    active: bool
    answer_data: Dict[int, dict]
    scoring_data: Optional[ScoringData] = None
    score: Optional[float] = None
    max_score: int


class AttemptListOut(BaseModel):
    attempts: List[AttemptOut]
    attempts_left: Optional[int] = None
    ran_out_of_attempts: bool


class AdminAttemptOut(BaseModel):
    id: int
    exam_id: int
    user_id: int
    started_at: datetime
    ends_at: datetime
    active: bool
    answer_data: Dict[int, dict]
    scoring_data: ScoringData
    scored_at: Optional[datetime] = None
    pending_review: bool
    score: float
    max_score: int


class VerdictPatchIn(BaseModel):
    task_id: int
    verdict: TaskVerdict


class VisibilityPatchIn(BaseModel):
    show_results: bool
