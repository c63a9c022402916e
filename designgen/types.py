"""Call-scoped data structures for one generation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict


@dataclass(frozen=True)
class Prompt:
    system_text: str
    user_text: str


@dataclass(frozen=True)
class GenerationRequest:
    prompt: Prompt
    credential: str
    model: str

    def payload(self) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": self.prompt.system_text},
                {"role": "user", "content": self.prompt.user_text},
            ],
        }

    def __repr__(self) -> str:
        # Keep the credential out of logs and tracebacks.
        return f"GenerationRequest(model={self.model!r}, credential='***')"


@dataclass
class AttemptBudget:
    max_attempts: int = 3
    backoff_base_ms: int = 1000
    attempts_made: int = 0

    @property
    def exhausted(self) -> bool:
        return self.attempts_made >= self.max_attempts

    def delay_for(self, attempt_index: int) -> float:
        """Seconds to wait after the 0-based attempt ``attempt_index``."""
        return self.backoff_base_ms * (2 ** attempt_index) / 1000.0
