"""JSON quiz import.

Accepts documents of the form::

    {
      "title": "Algebra quiz",
      "description": "optional",
      "duration": 30,
      "questions": [
        {"type": "mcq", "question": "2 + 2 = ?", "options": ["2", "4"],
         "correctAnswer": "4", "marks": 1, "solution": "optional"},
        {"type": "written", "question": "Prove ...", "marks": 3}
      ]
    }

and turns them into :class:`QuestionInput` rows ready for
:func:`examroom.services.exam_service.create_exam`.
"""

import json
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from examroom.services.exam_service import ExamInput, QuestionInput


class QuizImportError(ValueError):
    """Raised for malformed quiz JSON; ``errors`` lists ``{field, message}``."""

    def __init__(self, errors: List[dict]):
        self.errors = errors
        super().__init__(
            "Invalid quiz JSON: " + "; ".join(f"{e['field']}: {e['message']}" for e in errors)
        )

    @property
    def missing_fields(self) -> List[str]:
        return [e["field"] for e in self.errors if e["message"] == "Field required"]


class QuizImportQuestion(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[int] = None
    type: Literal["mcq", "written"]
    question: str = Field(min_length=1)
    image: Optional[str] = None
    options: Optional[List[str]] = None
    correct_answer: Optional[str] = Field(default=None, alias="correctAnswer")
    marks: int = Field(ge=1)
    solution: Optional[str] = None

    @model_validator(mode="after")
    def _check_mcq(self):
        if self.type == "mcq":
            options = [o.strip() for o in (self.options or []) if o and o.strip()]
            if len(options) < 2:
                raise ValueError("mcq questions need at least two options")
            if not self.correct_answer or self.correct_answer.strip() not in options:
                raise ValueError("correctAnswer must be one of the options")
        return self


class QuizImport(BaseModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    duration: int = Field(ge=1)
    questions: List[QuizImportQuestion] = Field(min_length=1)


def _field_path(loc) -> str:
    return ".".join(str(part) for part in loc) or "(root)"


def parse_quiz_json(raw: str) -> QuizImport:
    """Parse and validate a quiz document.

    Raises:
        QuizImportError: on invalid JSON or any schema violation.
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise QuizImportError([{"field": "(root)", "message": f"Invalid JSON: {exc.msg}"}]) from exc

    try:
        return QuizImport.model_validate(data)
    except ValidationError as exc:
        errors = [
            {"field": _field_path(err["loc"]), "message": err["msg"]}
            for err in exc.errors()
        ]
        raise QuizImportError(errors) from exc


def to_exam_input(quiz: QuizImport) -> ExamInput:
    return ExamInput(
        title=quiz.title,
        description=quiz.description,
        duration_minutes=quiz.duration,
        questions=[
            QuestionInput(
                type=q.type,
                question_text=q.question,
                image_url=q.image,
                options=q.options,
                correct_answer=q.correct_answer,
                marks=q.marks,
                solution=q.solution,
            )
            for q in quiz.questions
        ],
    )
