"""Drawing analysis: the metered consumer of analysis quota."""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

import openai
from sqlalchemy.orm import Session

from ilyzlist.core import models
from ilyzlist.core.errors import AnalysisEngineError
from ilyzlist.core.logging import get_logger
from ilyzlist.core.settings import Settings, get_settings
from ilyzlist.services.analysis_parser import needs_repair, parse_analysis
from ilyzlist.services.quota import QuotaExhausted, QuotaService, can_consume
from ilyzlist.services.profiles import ProfileStore

logger = get_logger(__name__)

SYSTEM_PROMPT = " ".join(
    [
        "You are a child-development specialist and art therapist writing to caring parents.",
        "Write warmly and vividly. Tie each insight to what is visible in the drawing:",
        "layout, spacing, color warmth, pressure, repetition, perspective and proportions.",
        "No diagnoses. Obey the requested word ranges and avoid repetition.",
    ]
)

REPAIR_PROMPT = "You fix and expand JSON analyses to match the required schema and word ranges."


def analysis_schema(age: str) -> str:
    return (
        "Return STRICT JSON with these keys:\n"
        "{\n"
        '  "summary": "2-3 sentences (40-80 words).",\n'
        '  "emotional": "150-200 words with 3-4 concrete observations tied to the picture.",\n'
        f'  "cognitive": "150-200 words on planning, spatial reasoning and detail for age {age}.",\n'
        '  "creative": "150-200 words on imagination, symbolism and story choices.",\n'
        '  "recommendations": "150-200 words with 4-6 actionable ideas written inline using •.",\n'
        '  "flags": "40-90 words of neutral watchouts. If none, \'None noted for now.\'",\n'
        '  "confidence": "high | medium | low"\n'
        "}"
    )


class DrawingAnalyzer(Protocol):
    def analyze(self, image_url: str, child_age: int | None) -> str: ...

    def repair(self, previous: str, child_age: int | None) -> str: ...


class OpenAIDrawingAnalyzer:
    """Vision-language model client returning raw JSON text."""

    def __init__(self, settings: Settings | None = None, client: openai.OpenAI | None = None) -> None:
        self.settings = settings or get_settings()
        self._client = client

    @property
    def client(self) -> openai.OpenAI:
        if self._client is None:
            if not self.settings.openai_api_key:
                logger.error("openai_not_configured")
                raise AnalysisEngineError("OpenAI API key is not configured")
            self._client = openai.OpenAI(
                api_key=self.settings.openai_api_key,
                timeout=self.settings.openai_timeout_seconds,
            )
        return self._client

    def _complete(self, messages: list[dict[str, Any]], temperature: float, max_tokens: int) -> str:
        try:
            response = self.client.chat.completions.create(
                model=self.settings.openai_model,
                temperature=temperature,
                max_tokens=max_tokens,
                response_format={"type": "json_object"},
                messages=messages,
            )
        except openai.APIError as exc:
            logger.warning("analysis_model_failed", error=str(exc))
            raise AnalysisEngineError(f"OpenAI call failed: {exc}") from exc
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    def analyze(self, image_url: str, child_age: int | None) -> str:
        age = str(child_age) if child_age is not None else "unknown"
        prompt = f"Analyze this child's drawing (age: {age}). {analysis_schema(age)}\nOutput JSON ONLY (no markdown)."
        return self._complete(
            [
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {"type": "image_url", "image_url": {"url": image_url, "detail": "high"}},
                    ],
                },
            ],
            temperature=0.85,
            max_tokens=2400,
        )

    def repair(self, previous: str, child_age: int | None) -> str:
        age = str(child_age) if child_age is not None else "unknown"
        prompt = (
            "Here is the previous output (which was empty or short). Expand and repair it to match "
            f"the schema exactly.\n\n---\n{previous}\n\nSchema:\n{analysis_schema(age)}"
        )
        return self._complete(
            [
                {"role": "system", "content": REPAIR_PROMPT},
                {"role": "user", "content": prompt},
            ],
            temperature=0.6,
            max_tokens=2000,
        )


@dataclass(slots=True)
class AnalysisOutcome:
    drawing: models.Drawing
    analysis: dict[str, Any]
    from_cache: bool = False
    remaining: int | None = None


class DrawingAnalysisService:
    """Gate, run, meter and store one drawing analysis."""

    def __init__(
        self,
        analyzer: DrawingAnalyzer | None = None,
        quota: QuotaService | None = None,
        store: ProfileStore | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.quota = quota or QuotaService()
        self.store = store or self.quota.store
        self.analyzer = analyzer or OpenAIDrawingAnalyzer(self.settings)

    def analyze_drawing(
        self,
        db: Session,
        user_id: str,
        image_url: str,
        child_age: int | None = None,
        child_name: str | None = None,
        drawing_id: uuid.UUID | None = None,
    ) -> AnalysisOutcome | QuotaExhausted:
        drawing = db.get(models.Drawing, drawing_id) if drawing_id else None
        if drawing is not None and drawing.user_id != user_id:
            drawing, drawing_id = None, None
        if drawing is not None and drawing.analysis_result:
            return AnalysisOutcome(drawing=drawing, analysis=drawing.analysis_result, from_cache=True)

        profile = self.store.get_or_create(db, user_id)
        if not can_consume(profile):
            logger.warning("analysis_blocked_by_quota", user_id=user_id, plan=profile.plan_id)
            return QuotaExhausted(plan=profile.plan_id)

        raw = self.analyzer.analyze(image_url, child_age)
        parsed = parse_analysis(raw)
        if needs_repair(parsed):
            logger.info("analysis_repair_requested", user_id=user_id)
            raw = self.analyzer.repair(raw, child_age) or raw
            parsed = parse_analysis(raw)

        if drawing is None:
            drawing = models.Drawing(
                id=drawing_id or uuid.uuid4(),
                user_id=user_id,
                image_url=image_url,
                child_name=child_name,
                child_age=child_age,
            )
            db.add(drawing)
        drawing.analysis_result = parsed
        drawing.analyzed_at = datetime.utcnow()

        result = self.quota.consume(db, user_id)
        if isinstance(result, QuotaExhausted):
            # Lost a race for the last unit; the result is discarded.
            db.rollback()
            return result

        db.commit()
        logger.info("analysis_stored", user_id=user_id, drawing_id=str(drawing.id), remaining=result.remaining)
        return AnalysisOutcome(drawing=drawing, analysis=parsed, remaining=result.remaining)


__all__ = [
    "AnalysisOutcome",
    "DrawingAnalysisService",
    "DrawingAnalyzer",
    "OpenAIDrawingAnalyzer",
]
