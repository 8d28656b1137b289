"""OpenAI model service: tutor text and evaluation calls."""

import logging
from typing import Optional, Sequence

from openai import OpenAI

from proof_engine.config import settings
from proof_engine.models import Message
from proof_engine.prompts import get_tutor_prompt

log = logging.getLogger(__name__)


class LLMService:
    def __init__(self, client: Optional[OpenAI] = None):
        self.client = client or OpenAI(api_key=settings.OPENAI_API_KEY)
        self.tutor_model = settings.TUTOR_MODEL
        self.evaluation_model = settings.EVALUATION_MODEL

    def _format_history(self, history: Sequence[Message]) -> list[dict]:
        window = list(history)[-settings.HISTORY_WINDOW:]
        return [
            {"role": m.role, "content": m.content}
            for m in window
            if m.role in ("user", "assistant") and m.content
        ]

    def call_tutor(self, message: str, recent_messages: Sequence[Message], grade_level: int) -> str:
        """Next tutoring message for the student's grade band."""
        messages = [{"role": "system", "content": get_tutor_prompt(grade_level)}]
        messages.extend(self._format_history(recent_messages))
        messages.append({"role": "user", "content": message})
        response = self.client.chat.completions.create(
            model=self.tutor_model,
            messages=messages,
            temperature=0.7,
        )
        return response.choices[0].message.content or ""

    def call_evaluation(self, prompt: str) -> str:
        """Deterministic evaluation call used by the classifier, prompt generator and validator."""
        response = self.client.chat.completions.create(
            model=self.evaluation_model,
            messages=[{"role": "user", "content": prompt}],
            temperature=0,
        )
        text = response.choices[0].message.content or ""
        log.debug(f"Evaluation model returned {len(text)} chars")
        return text
