from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, StrictStr

MAX_OUTLINE_CHARS = 4000


class CreateLessonRequest(BaseModel):
  """Submission payload: an outline, or the title/description/type variant."""

  outline: StrictStr | None = Field(default=None, max_length=MAX_OUTLINE_CHARS, description="Natural-language lesson outline.", examples=["A 3-question quiz on fractions"])
  title: StrictStr | None = Field(default=None, max_length=300)
  description: StrictStr | None = Field(default=None, max_length=MAX_OUTLINE_CHARS)
  content_type: StrictStr | None = Field(default=None, alias="type", max_length=100)
  model_config = ConfigDict(populate_by_name=True, extra="ignore")


class GenerateLessonRequest(BaseModel):
  """Payload accepted by the internal generation surface."""

  lesson_id: StrictStr = Field(alias="lessonId", min_length=1)
  outline: StrictStr | None = Field(default=None, max_length=MAX_OUTLINE_CHARS)
  model_config = ConfigDict(populate_by_name=True)


class GenerateLessonResponse(BaseModel):
  success: bool
  lesson_id: str = Field(serialization_alias="lessonId")
  message: str


class LessonTimeoutRequest(BaseModel):
  """Client-declared timeout; `seconds` is how long the client waited."""

  seconds: float | None = Field(default=None, gt=0)
