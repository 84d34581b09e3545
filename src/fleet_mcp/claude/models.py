"""Models describing Claude CLI results and interactive questions."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

ASK_USER_QUESTION = "AskUserQuestion"


class QuestionOption(BaseModel):
    """One selectable answer offered with an interactive question."""

    label: str
    description: str = ""


class AskQuestion(BaseModel):
    """A question the CLI wants a human to answer before continuing."""

    model_config = ConfigDict(populate_by_name=True)

    question: str
    header: str = ""
    options: list[QuestionOption] = Field(default_factory=list)
    multi_select: bool = Field(default=False, alias="multiSelect")


def parse_questions(raw: object) -> list[AskQuestion]:
    """Validate a raw ``questions`` payload, dropping entries that do not fit."""

    if not isinstance(raw, list):
        return []
    questions: list[AskQuestion] = []
    for item in raw:
        try:
            questions.append(AskQuestion.model_validate(item))
        except ValidationError:
            logger.debug("Skipping malformed question", extra={"question": item})
    return questions


class PermissionDenial(BaseModel):
    """A tool invocation the CLI refused to run in non-interactive mode."""

    tool_name: str
    tool_use_id: str = ""
    tool_input: dict[str, Any] = Field(default_factory=dict)

    @property
    def questions(self) -> list[AskQuestion]:
        return parse_questions(self.tool_input.get("questions"))


class ClaudeResult(BaseModel):
    """Outcome of one Claude CLI run."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    output: str = ""
    session_id: str = ""
    duration_ms: float = 0
    cost_usd: float = 0.0
    is_error: bool = False
    permission_denials: list[PermissionDenial] = Field(default_factory=list)

    def question_denial(self) -> PermissionDenial | None:
        """Return the first denied AskUserQuestion call that carries questions."""

        for denial in self.permission_denials:
            if denial.tool_name == ASK_USER_QUESTION and denial.questions:
                return denial
        return None


__all__ = [
    "ASK_USER_QUESTION",
    "AskQuestion",
    "ClaudeResult",
    "PermissionDenial",
    "QuestionOption",
    "parse_questions",
]
