"""
Chunk assurance and quality reporting.
"""

import statistics
from typing import Dict, List

from .budget import ChunkBudget
from .engine import ChunkResult, ChunkStrategy
from .verify import verify_chunk_result


def _stats(values: List[int]) -> Dict[str, int]:
    return {
        "min": min(values) if values else 0,
        "median": int(statistics.median(values)) if values else 0,
        "p95": int(statistics.quantiles(values, n=20)[18])
        if len(values) > 20
        else (max(values) if values else 0),
        "max": max(values) if values else 0,
    }


def build_chunk_assurance(
    result: ChunkResult, budget: ChunkBudget, content: str | None = None
) -> Dict:
    """
    Build a chunk assurance report for one chunking call.

    Args:
        result: Output of chunk_content
        budget: Budget the result was produced with
        content: Original document, forwarded to verification when given

    Returns:
        Assurance report dictionary
    """
    token_counts = [chunk.estimated_tokens for chunk in result.chunks]
    char_counts = [len(chunk.content) for chunk in result.chunks]

    strategies = {strategy.value: 0 for strategy in ChunkStrategy}
    for chunk in result.chunks:
        if chunk.strategy in strategies:
            strategies[chunk.strategy] += 1

    # Share of each position's budget actually used
    utilization = [
        len(chunk.content) / chunk.char_budget
        for chunk in result.chunks
        if chunk.char_budget > 0
    ]

    token_stats = _stats(token_counts)
    token_stats["total"] = result.total_estimated_tokens

    verification = verify_chunk_result(result, budget, content)

    return {
        "budget": {
            "maxContextTokens": budget.max_context_tokens,
            "reservedResponseTokens": budget.reserved_response_tokens,
            "reservedPromptTokens": budget.reserved_prompt_tokens,
            "reservedContextTokens": budget.reserved_context_tokens,
            "tokensPerChar": budget.tokens_per_char,
            "firstChunkChars": budget.first_chunk_chars,
            "laterChunkChars": budget.later_chunk_chars,
        },
        "chunkCount": len(result.chunks),
        "tokenStats": token_stats,
        "charStats": _stats(char_counts),
        "strategies": strategies,
        "utilization": {
            "mean": round(statistics.fmean(utilization), 4) if utilization else 0.0,
            "max": round(max(utilization), 4) if utilization else 0.0,
        },
        "overflows": {
            "count": len(result.diagnostics),
            "examples": [diag._asdict() for diag in result.diagnostics[:10]],
        },
        "verification": verification,
        "status": verification["status"],
    }
