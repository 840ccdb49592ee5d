"""
Model fallback chain.

Maps a model to its next-weaker substitute, used when the backend
reports quota exhaustion for the current model.
"""

from dataclasses import dataclass
from typing import Dict, Optional


@dataclass(frozen=True)
class FallbackChain:
    """Static downgrade mapping; None marks the end of a chain."""
    mapping: Dict[str, Optional[str]]

    def __post_init__(self):
        """Reject chains that loop back on themselves."""
        for start in self.mapping:
            seen = {start}
            current = self.mapping.get(start)
            while current:
                if current in seen:
                    raise ValueError(f"fallback chain starting at '{start}' is cyclic")
                seen.add(current)
                current = self.mapping.get(current)

    def next_model(self, model: str) -> Optional[str]:
        """Return the fallback for model, or None if there is none."""
        return self.mapping.get(model)


DEFAULT_FALLBACK_CHAIN = FallbackChain({
    "gemini-2.5-pro": "gemini-2.5-flash",
    "gemini-2.5-flash": "gemini-flash-latest",
    "gemini-flash-latest": None,
    "gemini-2.5-flash-image": None,  # image models never fall back
    "gpt-4o": "gpt-4o-mini",
    "gpt-4o-mini": None,
})
