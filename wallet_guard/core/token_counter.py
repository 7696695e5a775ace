"""
Token counting and usage tracking.

Holds reported upstream usage and the rough pre-call token estimate.
"""

import math
from dataclasses import dataclass


@dataclass(frozen=True)
class TokenUsage:
    """Token usage reported by an upstream or estimated before the call.

    Counts default to zero when an upstream omits them. cached_prompt_tokens
    is the part of prompt_tokens served from the provider's prompt cache.
    """
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cached_prompt_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        """Total tokens used (prompt + completion)."""
        return self.prompt_tokens + self.completion_tokens


def estimate_tokens(message: str) -> TokenUsage:
    """Estimate usage for a prompt: ~4 characters per token, reply 1.5x the prompt."""
    prompt_tokens = math.ceil(len(message) / 4)
    return TokenUsage(
        prompt_tokens=prompt_tokens,
        completion_tokens=math.ceil(prompt_tokens * 1.5),
    )
