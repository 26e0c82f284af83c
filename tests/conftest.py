"""Global test configuration for repochunker tests."""

import pytest
import structlog

from repochunker.chunking import ChunkBudget


@pytest.fixture(autouse=True)
def reset_logging():
    """Drop any structlog configuration a CLI test bound to a closed stream."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def small_budget():
    """3000 chars for the first chunk, 2000 chars for every later one."""
    return ChunkBudget(
        max_context_tokens=1000,
        reserved_response_tokens=100,
        reserved_prompt_tokens=150,
        reserved_context_tokens=250,
    )


@pytest.fixture
def make_file():
    """Build a file block of an exact character size.

    Body lines are 39 characters wide so line splits are easy to predict.
    """

    def _make_file(path: str, size: int | None = None, body: str | None = None) -> str:
        header = f"## File: {path}"
        if body is not None:
            return f"{header}\n{body}"
        if size is None:
            size = len(header) + 1 + 39
        body_len = size - len(header) - 1
        assert body_len >= 0, "size too small for header"
        lines = "\n".join("y" * 39 for _ in range(body_len // 40 + 1))
        return f"{header}\n{lines[:body_len]}"

    return _make_file
