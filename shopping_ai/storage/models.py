"""
Data models for storage layer.

Defines the persisted interaction record.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from shopping_ai.core.prompts import TaskKind


@dataclass(frozen=True)
class InteractionRecord:
    """Immutable record of one completed AI call.

    Created exactly once per successful dispatch and never modified after.
    Records can be deleted from the display history, but the ledger totals
    they contributed to stay untouched.
    """
    timestamp: datetime
    task_kind: TaskKind
    prompt_text: str
    response_text: str
    cost: float
    input_tokens: int
    output_tokens: int
    provider_name: str
    model_id: str
    subject_name: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self):
        """Validate cost and token counts."""
        if self.cost < 0:
            raise ValueError("cost cannot be negative")
        if self.input_tokens < 0 or self.output_tokens < 0:
            raise ValueError("token counts cannot be negative")

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "type": self.task_kind.value,
            "prompt": self.prompt_text,
            "response": self.response_text,
            "estimatedCost": self.cost,
            "inputTokens": self.input_tokens,
            "outputTokens": self.output_tokens,
            "itemName": self.subject_name,
            "aiService": self.provider_name,
            "model": self.model_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InteractionRecord":
        """Rebuild a record from its stored form.

        Raises:
            KeyError: If a required field is missing
            ValueError: If a field has an invalid value
        """
        return cls(
            id=data["id"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            task_kind=TaskKind(data["type"]),
            prompt_text=data["prompt"],
            response_text=data["response"],
            cost=float(data["estimatedCost"]),
            input_tokens=int(data["inputTokens"]),
            output_tokens=int(data["outputTokens"]),
            subject_name=data.get("itemName"),
            provider_name=data["aiService"],
            model_id=data["model"],
        )
