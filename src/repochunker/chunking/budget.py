"""
Token estimation and position-dependent character budgets.
"""

import math

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_TOKENS_PER_CHAR = 0.25  # ~4 chars per token


class BudgetConfigError(ValueError):
    """Raised when the reservation constants leave no room for content."""


def estimate_tokens(text: str, tokens_per_char: float = DEFAULT_TOKENS_PER_CHAR) -> int:
    """Estimate tokens from character length using a fixed ratio."""
    return math.ceil(len(text) * tokens_per_char)


class ChunkBudget(BaseModel):
    """Reservation constants for one chunking call.

    All sizes are in tokens; budgets are converted to characters with the
    fixed ``tokens_per_char`` ratio. Position 0 gets the larger budget, every
    later position gives up ``reserved_context_tokens`` for the carried summary.
    """

    model_config = ConfigDict(frozen=True)

    max_context_tokens: int = Field(gt=0)
    reserved_response_tokens: int = Field(gt=0)
    reserved_prompt_tokens: int = Field(gt=0)
    reserved_context_tokens: int = Field(gt=0)
    tokens_per_char: float = Field(default=DEFAULT_TOKENS_PER_CHAR, gt=0)

    @property
    def first_chunk_tokens(self) -> int:
        return (
            self.max_context_tokens
            - self.reserved_response_tokens
            - self.reserved_prompt_tokens
        )

    @property
    def later_chunk_tokens(self) -> int:
        return self.first_chunk_tokens - self.reserved_context_tokens

    @property
    def first_chunk_chars(self) -> int:
        return math.floor(self.first_chunk_tokens / self.tokens_per_char)

    @property
    def later_chunk_chars(self) -> int:
        return math.floor(self.later_chunk_tokens / self.tokens_per_char)

    def chars_for_position(self, index: int) -> int:
        """Character budget for the chunk at ``index``."""
        return self.first_chunk_chars if index == 0 else self.later_chunk_chars

    def estimate(self, text: str) -> int:
        return estimate_tokens(text, self.tokens_per_char)

    def ensure_positive(self) -> None:
        """Reject configurations whose budgets leave no room for content.

        Raises:
            BudgetConfigError: if either character budget is not positive
        """
        if self.first_chunk_chars <= 0:
            raise BudgetConfigError(
                f"First chunk budget is {self.first_chunk_chars} chars: "
                f"max_context_tokens={self.max_context_tokens} leaves nothing after "
                f"response ({self.reserved_response_tokens}) and prompt "
                f"({self.reserved_prompt_tokens}) reservations"
            )
        if self.later_chunk_chars <= 0:
            raise BudgetConfigError(
                f"Later chunk budget is {self.later_chunk_chars} chars: "
                f"reserved_context_tokens={self.reserved_context_tokens} exceeds "
                f"the {self.first_chunk_tokens} tokens left for content"
            )
