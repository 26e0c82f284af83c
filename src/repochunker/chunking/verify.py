"""
Chunk result verification utilities.
"""

import json
from pathlib import Path
from typing import Dict, List, Optional

from .boundaries import (
    BLOCK_SEPARATOR,
    FENCE,
    count_fences,
    group_by_module,
    parse_file_blocks,
)
from .budget import ChunkBudget
from .engine import Chunk, ChunkResult, ChunkStrategy, chunk_from_dict


def reassemble_content(result: ChunkResult) -> str:
    """Rebuild the chunked text, dropping repeated headers and inserted fences.

    For documents whose modules are contiguous this gives back the input from
    its first file header onward.
    """
    parts: List[str] = []
    split_path: Optional[str] = None

    for chunk in result.chunks:
        content = chunk.content
        if chunk.closed_fence:
            content = content[: -(len(FENCE) + 1)]

        if chunk.strategy == ChunkStrategy.FILE_SPLIT.value:
            path = chunk.files[0] if chunk.files else None
            if path is not None and path == split_path:
                # Continuation fragment: drop the repeated header line
                body = content.split("\n", 1)[1] if "\n" in content else ""
                parts[-1] = f"{parts[-1]}\n{body}"
                continue
            split_path = path
        else:
            split_path = None

        parts.append(content)

    return BLOCK_SEPARATOR.join(parts)


def _file_sequence(chunks: List[Chunk]) -> List[str]:
    """Files in chunk order, with line-split fragments counted once."""
    sequence: List[str] = []
    previous_split: Optional[str] = None

    for chunk in chunks:
        if chunk.strategy == ChunkStrategy.FILE_SPLIT.value and chunk.files:
            path = chunk.files[0]
            if path != previous_split:
                sequence.append(path)
            previous_split = path
            continue
        previous_split = None
        sequence.extend(chunk.files)

    return sequence


def verify_chunk_result(
    result: ChunkResult,
    budget: ChunkBudget,
    content: Optional[str] = None,
) -> Dict:
    """
    Check a chunk result against the chunker's guarantees.

    Args:
        result: Output of chunk_content
        budget: Budget the result was produced with
        content: Original document; enables completeness and ordering checks

    Returns:
        Verification report dictionary with a PASS/FAIL status
    """
    chunks = result.chunks
    total = len(chunks)

    index_errors = []
    totals_mismatch = []
    budget_breaches = []
    flagged_overflows = []
    fence_imbalanced = []

    for position, chunk in enumerate(chunks):
        if chunk.chunk_index != position:
            index_errors.append(
                {"position": position, "chunk_index": chunk.chunk_index}
            )

        if chunk.total_chunks != total:
            totals_mismatch.append(
                {"chunk_index": chunk.chunk_index, "total_chunks": chunk.total_chunks}
            )

        limit = budget.chars_for_position(position)
        if len(chunk.content) > limit:
            breach = {
                "chunk_index": chunk.chunk_index,
                "char_count": len(chunk.content),
                "char_budget": limit,
                "strategy": chunk.strategy,
            }
            if chunk.overflow is not None:
                flagged_overflows.append(breach)
            else:
                budget_breaches.append(breach)

        if chunk.strategy != ChunkStrategy.WHOLE_DOCUMENT.value:
            if count_fences(chunk.content) % 2:
                fence_imbalanced.append(chunk.chunk_index)

    token_total = sum(chunk.estimated_tokens for chunk in chunks)

    report: Dict = {
        "chunkCount": total,
        "budgets": {
            "firstChunkChars": budget.first_chunk_chars,
            "laterChunkChars": budget.later_chunk_chars,
        },
        "indexErrors": index_errors,
        "totalsMismatch": totals_mismatch,
        "budgetBreaches": {"count": len(budget_breaches), "examples": budget_breaches[:10]},
        "flaggedOverflows": {
            "count": len(flagged_overflows),
            "examples": flagged_overflows[:10],
        },
        "fenceImbalanced": fence_imbalanced,
        "tokenTotalMatches": token_total == result.total_estimated_tokens,
    }

    problems = bool(
        index_errors
        or totals_mismatch
        or budget_breaches
        or fence_imbalanced
        or token_total != result.total_estimated_tokens
    )

    if content is not None:
        records = parse_file_blocks(content)
        whole = total == 1 and chunks[0].strategy == ChunkStrategy.WHOLE_DOCUMENT.value
        if whole:
            expected = [record.path for record in records]
        else:
            expected = [
                record.path
                for bucket in group_by_module(records)
                for record in bucket.files
            ]
        actual = _file_sequence(chunks)

        missing = [path for path in expected if path not in actual]
        unexpected = [path for path in actual if path not in expected]
        duplicates = sorted(
            {path for path in actual if actual.count(path) > expected.count(path)}
        )

        report["files"] = {
            "expected": len(expected),
            "actual": len(actual),
            "missing": missing,
            "unexpected": unexpected,
            "duplicates": duplicates,
            "orderMatches": actual == expected,
        }
        problems = problems or actual != expected

    report["status"] = "FAIL" if problems else "PASS"
    return report


def load_chunks(chunks_file: Path) -> ChunkResult:
    """Load chunks.ndjson back into a ChunkResult."""
    chunks: List[Chunk] = []
    with open(chunks_file, "r") as f:
        for line in f:
            if not line.strip():
                continue
            chunks.append(chunk_from_dict(json.loads(line)))

    return ChunkResult(
        chunks=chunks,
        total_estimated_tokens=sum(chunk.estimated_tokens for chunk in chunks),
        diagnostics=[chunk.overflow for chunk in chunks if chunk.overflow is not None],
    )


def verify_chunks_file(chunks_file: Path, budget: ChunkBudget) -> Dict:
    """Verify a chunks.ndjson file written by the chunk command."""
    return verify_chunk_result(load_chunks(chunks_file), budget)
