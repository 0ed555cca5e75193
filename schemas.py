"""Request payload schemas (camelCase on the wire)."""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RegisterPayload(CamelModel):
    user_name: str = Field(min_length=1, max_length=255)
    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1)
    appellation: str = Field(min_length=1, max_length=32)


class LoginPayload(CamelModel):
    email: str
    password: str


class QrLoginPayload(CamelModel):
    email: str
    password: str
    token: str
    pc_id: str


class QuestionItem(CamelModel):
    question: str
    options: List[str]


class FormDefinition(CamelModel):
    form_name: str = Field(min_length=1, max_length=255)
    is_single_choice: bool
    is_randomized: bool
    questions: List[QuestionItem]
    correct_answer: List[List[int]]


class UploadPayload(CamelModel):
    form: FormDefinition


class VerifyPayload(CamelModel):
    """Answers are given per presented question, as presented option indices."""

    fid: int
    answers: List[List[int]]
    form_index: str
