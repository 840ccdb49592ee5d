"""
Token counting and usage tracking.

Extracts token usage from backend responses in either the Gemini
(``usageMetadata``) or the OpenAI (``usage``) shape.
"""

from dataclasses import dataclass
from typing import Any, Optional

# (container, prompt field, candidate field, total field), tried in order
_USAGE_SHAPES = (
    ("usage_metadata", "prompt_token_count", "candidates_token_count", "total_token_count"),
    ("usageMetadata", "promptTokenCount", "candidatesTokenCount", "totalTokenCount"),
    ("usage", "prompt_tokens", "completion_tokens", "total_tokens"),
)


def _is_count(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _field(source: Any, name: str) -> Any:
    if source is None:
        return None
    if isinstance(source, dict):
        return source.get(name)
    return getattr(source, name, None)


@dataclass(frozen=True)
class TokenUsage:
    """Token usage data for cost calculation.

    Contains exact token counts reported by the backend, no estimation.
    """
    prompt_tokens: int
    candidate_tokens: int
    reported_total: Optional[int] = None

    @property
    def total_tokens(self) -> int:
        """Total tokens, as reported or prompt + candidate."""
        if self.reported_total is not None:
            return self.reported_total
        return self.prompt_tokens + self.candidate_tokens

    @classmethod
    def from_response(cls, response: Any) -> Optional["TokenUsage"]:
        """Extract usage from a raw backend response.

        Returns None unless both prompt and candidate counts are numeric.
        """
        for container, prompt_name, candidate_name, total_name in _USAGE_SHAPES:
            usage = _field(response, container)
            prompt = _field(usage, prompt_name)
            candidate = _field(usage, candidate_name)
            if _is_count(prompt) and _is_count(candidate):
                total = _field(usage, total_name)
                return cls(
                    prompt_tokens=int(prompt),
                    candidate_tokens=int(candidate),
                    reported_total=int(total) if _is_count(total) else None,
                )
        return None
