# examlock/models/schemas.py
"""
Typed records for tests, results and users plus request/response schemas.
Field names are snake_case in Python and camelCase on the wire and on disk.
"""

from datetime import datetime, timezone
from typing import List, Optional, Dict, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

NOT_ANSWERED = "Not answered"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> Dict[str, Any]:
        """Serialize with wire aliases, ready for JSON files or MongoDB"""
        return self.model_dump(mode="json", by_alias=True)


# ==================== Domain Records ====================

class Question(CamelModel):
    id: str
    question: str = Field(min_length=1)
    options: List[str] = Field(min_length=1)
    correct_answer: str = Field(min_length=1)
    points: int = Field(gt=0)

    @field_validator("question", "correct_answer")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value

    @field_validator("options")
    @classmethod
    def _options_not_blank(cls, value: List[str]) -> List[str]:
        if any(not option.strip() for option in value):
            raise ValueError("options must not be blank")
        return value

    @model_validator(mode="after")
    def _correct_answer_is_option(self) -> "Question":
        if self.correct_answer not in self.options:
            raise ValueError("correctAnswer must be one of the options")
        return self


class Test(CamelModel):
    __test__ = False

    id: str
    title: str = Field(min_length=1)
    description: str = ""
    questions: List[Question] = Field(default_factory=list)
    time_limit: int = Field(gt=0)
    department: str = Field(min_length=1)

    @property
    def total_points(self) -> int:
        return sum(q.points for q in self.questions)


class Answer(CamelModel):
    question_id: str
    selected_option: str = NOT_ANSWERED


class TestResult(CamelModel):
    __test__ = False

    id: Optional[str] = None
    user_id: str
    first_name: str
    last_name: str
    department: str
    test_id: str
    test_title: str
    score: int = Field(ge=0)
    total_points: int = Field(ge=0)
    answers: List[Answer] = Field(default_factory=list)
    submitted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    auto_submit_reason: Optional[str] = None

    @field_validator("submitted_at")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @model_validator(mode="after")
    def _score_within_total(self) -> "TestResult":
        if self.score > self.total_points:
            raise ValueError("score cannot exceed totalPoints")
        return self


class User(CamelModel):
    id: str
    email: str
    password: str
    first_name: str
    last_name: str
    department: str

    def public(self) -> "UserPublic":
        return UserPublic(**self.model_dump(exclude={"password"}))


class UserPublic(CamelModel):
    id: str
    email: str
    first_name: str
    last_name: str
    department: str


# ==================== Public Projections ====================

class PublicQuestion(CamelModel):
    """Question as shown to a test taker, without the correct answer"""
    id: str
    question: str
    options: List[str]
    points: int


class PublicTest(CamelModel):
    id: str
    title: str
    description: str
    time_limit: int
    department: str
    question_count: int
    total_points: int
    questions: List[PublicQuestion] = Field(default_factory=list)

    @classmethod
    def from_test(cls, test: Test, include_questions: bool = True) -> "PublicTest":
        return cls(
            id=test.id,
            title=test.title,
            description=test.description,
            time_limit=test.time_limit,
            department=test.department,
            question_count=len(test.questions),
            total_points=test.total_points,
            questions=[
                PublicQuestion(id=q.id, question=q.question, options=q.options, points=q.points)
                for q in test.questions
            ] if include_questions else []
        )


# ==================== Requests ====================

class QuestionInput(CamelModel):
    question: str
    options: List[str]
    correct_answer: str
    points: int


class CreateTestRequest(CamelModel):
    title: str
    time_limit: int
    department: str
    description: Optional[str] = None
    questions: List[QuestionInput]


class SignupRequest(CamelModel):
    email: str = ""
    password: str = ""
    first_name: str = ""
    last_name: str = ""
    department: str = ""


class LoginRequest(CamelModel):
    email: str = ""
    password: str = ""


class CreateSessionRequest(CamelModel):
    test_id: str
    user_id: str


class StartSessionRequest(CamelModel):
    fullscreen: bool = True


class SelectAnswerRequest(CamelModel):
    question_id: str
    option: str


class NavigateRequest(CamelModel):
    direction: int


class HostEventRequest(CamelModel):
    event: Literal["hidden", "visible", "blur", "focus"]


# ==================== Responses ====================

class AnswerBreakdown(CamelModel):
    question_id: str
    question: str
    selected_option: str
    correct_answer: str
    points: int
    is_correct: bool


class ResultDetails(CamelModel):
    result: TestResult
    test: Optional[PublicTest] = None
    breakdown: List[AnswerBreakdown] = Field(default_factory=list)
