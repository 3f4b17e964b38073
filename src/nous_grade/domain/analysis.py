"""Models for structured model output."""

from pydantic import BaseModel, Field, model_validator


class TextExtract(BaseModel):
    """Structured output for text extraction."""

    text: str
    confidence: float = Field(ge=0.0, le=1.0)
    has_math: bool = False
    has_handwriting: bool = False


class RubricScore(BaseModel):
    """Single rubric criterion from the scoring model."""

    criterion: str
    points_awarded: float = Field(ge=0.0)
    points_possible: float = Field(ge=0.0)
    justification: str


class ScoringExtract(BaseModel):
    """Structured output for answer scoring."""

    score: float = Field(ge=0.0)
    max_score: float = Field(gt=0.0)
    confidence: float = Field(ge=0.0, le=1.0)
    feedback_summary: str
    suggested_message: str
    strengths: list[str]
    weaknesses: list[str]
    rubric_breakdown: list[RubricScore]

    @model_validator(mode="after")
    def _score_within_bounds(self) -> "ScoringExtract":
        if self.score > self.max_score:
            raise ValueError("score must not exceed max_score")
        return self


class TextExtraction(BaseModel):
    """Validated extraction together with call diagnostics."""

    text: str
    confidence: float = Field(ge=0.0, le=1.0)
    processing_time_ms: int = Field(ge=0)
    model: str


class AnswerScore(BaseModel):
    """Validated score together with call diagnostics."""

    result: ScoringExtract
    processing_time_ms: int = Field(ge=0)
    model: str
