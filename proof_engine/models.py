"""Pydantic models for type safety."""

import uuid
from datetime import datetime, timezone
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

Classification = Literal["pass", "partial", "retry"]
CLASSIFICATIONS = ("pass", "partial", "retry")

Mode = Literal["teaching", "checkpoint"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MessageMetadata(BaseModel):
    """Classifier hints set by upstream layers. Take precedence over inference."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    is_teaching_exchange: Optional[bool] = None
    is_proof_checkpoint: bool = False
    is_proof_attempt: bool = False
    is_validation_feedback: bool = False
    is_celebration: bool = False
    concept: Optional[str] = None


class Message(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str = ""
    metadata: Optional[MessageMetadata] = None


class ValidationResult(BaseModel):
    """Validator verdict for one checkpoint attempt. Immutable once produced."""
    model_config = ConfigDict(frozen=True)

    classification: Classification
    key_concepts: List[str] = []
    relationships: List[str] = []
    misconceptions: List[str] = []
    depth_assessment: str = ""
    guidance: str = ""
    is_parroting: bool = False
    is_keyword_stuffing: bool = False
    is_vague_acknowledgment: bool = False
    diagnostic_hint: str = ""  # One sentence on what is missing, retry only


# Fields that upstream storage may hand us as null; null means "use the default".
_NON_NULLABLE_STATE_FIELDS = {
    "mode",
    "teaching_exchange_count",
    "is_in_checkpoint_mode",
    "last_three_validation_results",
    "validation_history",
    "next_checkpoint_target",
    "checkpoint_target",
    "concepts_proven_this_session",
    "concepts_proven",
    "concepts_proven_count",
    "grade_level",
}


class ConversationState(BaseModel):
    """Per-chat checkpoint state. Read, copied, and returned once per turn.

    Accepts both snake_case names and the camelCase keys used by the chat
    store, so partially persisted payloads load with defaults instead of
    failing.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    mode: Mode = "teaching"
    teaching_exchange_count: int = Field(default=0, ge=0)
    is_in_checkpoint_mode: bool = False
    last_checkpoint_at_exchange: Optional[int] = None
    last_checkpoint_at: Optional[datetime] = None
    current_checkpoint_concept: Optional[str] = None
    last_checkpoint_prompt: Optional[str] = None
    last_three_validation_results: List[Classification] = []
    validation_history: List[Classification] = []
    next_checkpoint_target: int = 3
    checkpoint_target: int = 3
    concepts_proven_this_session: List[str] = []
    concepts_proven: List[str] = []
    concepts_proven_count: int = 0
    grade_level: int = 8

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        cleaned = {}
        for key, value in data.items():
            name = key if key in cls.model_fields else _snake(key)
            if value is None and name in _NON_NULLABLE_STATE_FIELDS:
                continue
            cleaned[key] = value
        return cleaned

    @field_validator("last_three_validation_results", "validation_history", mode="before")
    @classmethod
    def _known_classifications(cls, value: Any) -> Any:
        if not isinstance(value, (list, tuple)):
            return []
        return [v for v in value if v in CLASSIFICATIONS]

    @field_validator("last_three_validation_results")
    @classmethod
    def _cap_history(cls, value: List[Classification]) -> List[Classification]:
        return list(value[-3:])

    @field_validator("next_checkpoint_target", "checkpoint_target")
    @classmethod
    def _clamp_target(cls, value: int) -> int:
        return max(2, min(5, value))

    @field_validator("teaching_exchange_count", mode="before")
    @classmethod
    def _non_negative(cls, value: Any) -> Any:
        if isinstance(value, int) and value < 0:
            return 0
        return value

    @field_validator("concepts_proven_this_session", "concepts_proven")
    @classmethod
    def _dedupe(cls, value: List[str]) -> List[str]:
        return list(dict.fromkeys(value))

    @model_validator(mode="after")
    def _sync_mode(self) -> "ConversationState":
        in_checkpoint = self.is_in_checkpoint_mode or self.mode == "checkpoint"
        self.is_in_checkpoint_mode = in_checkpoint
        self.mode = "checkpoint" if in_checkpoint else "teaching"
        self.concepts_proven_count = max(self.concepts_proven_count, len(self.concepts_proven))
        return self


def _snake(name: str) -> str:
    out = []
    for ch in name:
        if ch.isupper():
            out.append("_")
            out.append(ch.lower())
        else:
            out.append(ch)
    return "".join(out)


class ProofEvent(BaseModel):
    """One persisted checkpoint attempt. Append-only."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    chat_id: str
    student_id: str
    concept: str
    prompt: str
    student_response: str
    student_response_excerpt: str
    response_hash: str
    validation_result: ValidationResult
    classification: Classification
    created_at: datetime = Field(default_factory=_utcnow)


class ProofStats(BaseModel):
    total_attempts: int = 0
    pass_count: int = 0
    partial_count: int = 0
    retry_count: int = 0
    pass_rate: float = 0.0
    concepts_proven: List[str] = []


class ProofReceipt(BaseModel):
    """Dashboard-facing record of a concept the student has proven."""
    concept: str
    date_proven: datetime
    retries_before_pass: int
    method: str = "Explain-back checkpoint"


class TeachingExchangeClassification(BaseModel):
    is_teaching: bool
    confidence: Literal["high", "low"]
    reason: str
    used_ai: bool = False


class CheckpointDecision(BaseModel):
    trigger: bool
    next_target: int
    reason: str


class ExplainBackPrompt(BaseModel):
    prompt: str
    is_open_ended: bool
    referenced_concepts: List[str] = []
    used_ai: bool = False


class AdaptiveResponse(BaseModel):
    content: str
    should_advance: bool
    should_reteach: bool
    metadata: MessageMetadata
    follow_up_prompt: Optional[str] = None  # Renewed explain-back ask, retry only


class ProcessedResponse(BaseModel):
    assistant_text: str
    state: ConversationState
    metadata: dict[str, Any] = {}


# ---------------------------------------------------------------------------
# Evaluation-model output schemas. Strict: any shape mismatch is rejected and
# the caller falls back to its deterministic path.
# ---------------------------------------------------------------------------

class _StrictModelOutput(BaseModel):
    model_config = ConfigDict(strict=True, extra="ignore")


class ClassifierOutput(_StrictModelOutput):
    is_teaching: bool
    reason: str = ""


class PromptCandidateOutput(_StrictModelOutput):
    prompt: str
    referenced_concepts: List[str] = []


class InsufficientResponseOutput(_StrictModelOutput):
    is_insufficient: bool
    is_parroting: bool
    is_keyword_stuffing: bool
    is_vague_acknowledgment: bool
    reason: str = ""


class ComprehensionOutput(_StrictModelOutput):
    key_concepts: List[str]
    relationships: List[str]
    misconceptions: List[str]
    depth_assessment: str


class PassResponseOutput(_StrictModelOutput):
    celebration: str
    progress_message: str
    transition_message: str


class PartialResponseOutput(_StrictModelOutput):
    encouragement: str
    targeted_hint: str
    clarifying_question: str


class RetryResponseOutput(_StrictModelOutput):
    supportive_opening: str
    reteaching_content: str
    new_explain_back_prompt: str
