"""Answer scoring service comparing a student answer to a reference."""

import time
from dataclasses import dataclass

from nous_grade.domain.analysis import AnswerScore, ScoringExtract
from nous_grade.services.extraction import StructuredOutputClient

SCORING_SCHEMA: dict[str, object] = {
    "type": "object",
    "properties": {
        "score": {"type": "number", "minimum": 0},
        "max_score": {"type": "number", "exclusiveMinimum": 0},
        "confidence": {"type": "number", "minimum": 0.0, "maximum": 1.0},
        "feedback_summary": {"type": "string"},
        "suggested_message": {"type": "string"},
        "strengths": {"type": "array", "items": {"type": "string"}},
        "weaknesses": {"type": "array", "items": {"type": "string"}},
        "rubric_breakdown": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "criterion": {"type": "string"},
                    "points_awarded": {"type": "number", "minimum": 0},
                    "points_possible": {"type": "number", "minimum": 0},
                    "justification": {"type": "string"},
                },
                "required": [
                    "criterion",
                    "points_awarded",
                    "points_possible",
                    "justification",
                ],
                "additionalProperties": False,
            },
        },
    },
    "required": [
        "score",
        "max_score",
        "confidence",
        "feedback_summary",
        "suggested_message",
        "strengths",
        "weaknesses",
        "rubric_breakdown",
    ],
    "additionalProperties": False,
}


@dataclass
class AnswerScoringService:
    """Service that grades a student answer against a reference answer."""

    client: StructuredOutputClient
    model: str
    reasoning_effort: str | None
    store: bool
    max_score: int = 10

    async def score(self, subject_text: str, reference_text: str) -> AnswerScore:
        """Score the subject text and validate the structured result.

        Raises a pydantic ``ValidationError`` when the model returns a score
        outside ``[0, max_score]`` or a payload that does not match the schema.
        """
        started = time.monotonic()
        raw = await self.client.generate(
            model=self.model,
            reasoning_effort=self.reasoning_effort,
            store=self.store,
            prompt=_build_prompt(subject_text, reference_text, self.max_score),
            schema=SCORING_SCHEMA,
            schema_name="answer_score",
        )
        result = ScoringExtract.model_validate(raw)
        if result.max_score != self.max_score:
            raise ValueError(
                f"Expected max_score {self.max_score}, got {result.max_score}"
            )
        return AnswerScore(
            result=result,
            processing_time_ms=round((time.monotonic() - started) * 1000),
            model=self.model,
        )


def _build_prompt(subject_text: str, reference_text: str, max_score: int) -> str:
    return (
        "You are grading a student's answer against the professor's model answer.\n\n"
        f"PROFESSOR'S MODEL ANSWER:\n{reference_text}\n\n"
        f"STUDENT'S ANSWER:\n{subject_text}\n\n"
        f"Score the student out of {max_score} points (set max_score to "
        f"{max_score}). Judge correctness, method and clarity against the model "
        "answer. Break the score down by criterion so the awarded points add up "
        "to the score. Write feedback_summary for the professor and "
        "suggested_message as a short, encouraging note addressed to the student "
        "that can be sent as is."
    )
