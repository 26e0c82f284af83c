"""
Main chunking engine: greedy module packing with file and line fallbacks.
"""

from __future__ import annotations

from enum import Enum
from typing import Callable, List, NamedTuple, Optional

from ..core.logging import log
from .boundaries import (
    BLOCK_SEPARATOR,
    FENCE,
    FileRecord,
    ModuleBucket,
    balance_fences,
    count_fences,
    group_by_module,
    is_fence,
    parse_file_blocks,
)
from .budget import ChunkBudget, estimate_tokens

BudgetFn = Callable[[int], int]


class ChunkStrategy(Enum):
    """How a chunk was produced."""

    WHOLE_DOCUMENT = "whole-document"
    MODULE_BASED = "module-based"
    FILE_SPLIT = "file-split"


class OverflowPolicy(Enum):
    """What to do with chunks that exceed their position's budget."""

    ALLOW = "allow"
    ERROR = "error"


class OverflowDiagnostic(NamedTuple):
    """Why a chunk is larger than its budget."""

    chunk_index: int
    path: Optional[str]
    line_number: Optional[int]
    line_length: int
    char_budget: int
    reason: str  # "single-line", "fence-close" or "whole-document"


class ChunkOverflowError(RuntimeError):
    """Raised under OverflowPolicy.ERROR when any chunk exceeds its budget."""

    def __init__(self, diagnostics: List[OverflowDiagnostic]):
        self.diagnostics = diagnostics
        first = diagnostics[0]
        super().__init__(
            f"{len(diagnostics)} chunk(s) exceed their budget; first is chunk "
            f"{first.chunk_index} ({first.reason}, {first.path or 'document'}, "
            f"budget {first.char_budget} chars)"
        )


class Chunk(NamedTuple):
    """A bounded fragment of the source document with reassembly metadata."""

    content: str
    chunk_index: int
    total_chunks: int = 0
    strategy: str = ChunkStrategy.MODULE_BASED.value
    modules: List[str] = []
    files: List[str] = []
    estimated_tokens: int = 0
    char_budget: int = 0
    overflow: Optional[OverflowDiagnostic] = None
    closed_fence: bool = False


class ChunkResult(NamedTuple):
    chunks: List[Chunk]
    total_estimated_tokens: int
    diagnostics: List[OverflowDiagnostic] = []


class _Accumulator:
    """Content pieces, modules and files gathered for the next chunk."""

    def __init__(self) -> None:
        self.pieces: List[str] = []
        self.modules: List[str] = []
        self.files: List[str] = []
        self.size = 0
        self.fences = 0

    @property
    def empty(self) -> bool:
        return not self.pieces

    def _raw_size_with(self, text: str) -> int:
        if self.empty:
            return len(text)
        return self.size + len(BLOCK_SEPARATOR) + len(text)

    def size_with(self, text: str) -> int:
        """Size after adding ``text``, counting the closing fence it would need."""
        size = self._raw_size_with(text)
        if (self.fences + count_fences(text)) % 2:
            size += 1 + len(FENCE)
        return size

    def add(self, text: str, modules: List[str], files: List[str]) -> None:
        self.size = self._raw_size_with(text)
        self.fences += count_fences(text)
        self.pieces.append(text)
        for module in modules:
            if module not in self.modules:
                self.modules.append(module)
        self.files.extend(files)

    def seal(self, chunk_index: int, char_budget: int, tokens_per_char: float) -> Chunk:
        raw = BLOCK_SEPARATOR.join(self.pieces)
        content = balance_fences(raw)
        return Chunk(
            content=content,
            chunk_index=chunk_index,
            strategy=ChunkStrategy.MODULE_BASED.value,
            modules=list(self.modules),
            files=list(self.files),
            estimated_tokens=estimate_tokens(content, tokens_per_char),
            char_budget=char_budget,
            closed_fence=content != raw,
        )


def chunk_content(
    content: str,
    budget: ChunkBudget,
    overflow_policy: OverflowPolicy = OverflowPolicy.ALLOW,
) -> ChunkResult:
    """
    Split a concatenated source document into budget-bounded chunks.

    Strategy order:
    1. Whole document when it fits the first chunk (or has no file headers)
    2. Greedy packing of whole module buckets
    3. Greedy packing of whole files within an oversized module
    4. Line splitting of an oversized file, header repeated per fragment

    Args:
        content: Document made of "## File: path" blocks
        budget: Reservation constants for this call
        overflow_policy: Whether over-budget chunks are returned flagged or rejected

    Returns:
        ChunkResult with finalized chunks, token total and overflow diagnostics

    Raises:
        BudgetConfigError: if the budget leaves no room for content
        ChunkOverflowError: under OverflowPolicy.ERROR when a chunk overflows
    """
    budget.ensure_positive()

    records = parse_file_blocks(content)
    first_budget = budget.chars_for_position(0)

    if not records or len(content) <= first_budget:
        chunks = [_whole_document_chunk(content, records, budget)]
    else:
        buckets = group_by_module(records)
        log.info(
            "chunk.modules_found",
            files=len(records),
            modules=len(buckets),
            chars=len(content),
            first_budget=first_budget,
            later_budget=budget.chars_for_position(1),
        )
        chunks = pack_modules(
            buckets,
            0,
            budget.chars_for_position,
            tokens_per_char=budget.tokens_per_char,
        )

    result = finalize_chunks(chunks)

    if result.diagnostics and overflow_policy is OverflowPolicy.ERROR:
        raise ChunkOverflowError(result.diagnostics)

    log.info(
        "chunk.complete",
        chunks=len(result.chunks),
        total_estimated_tokens=result.total_estimated_tokens,
        overflows=len(result.diagnostics),
    )
    return result


def _whole_document_chunk(
    content: str, records: List[FileRecord], budget: ChunkBudget
) -> Chunk:
    char_budget = budget.chars_for_position(0)
    overflow = None
    if len(content) > char_budget:
        # Only reachable without file headers: nothing to split on
        overflow = OverflowDiagnostic(
            chunk_index=0,
            path=None,
            line_number=None,
            line_length=len(content),
            char_budget=char_budget,
            reason="whole-document",
        )
        log.warning(
            "chunk.whole_document_overflow",
            chars=len(content),
            char_budget=char_budget,
        )
    else:
        log.info("chunk.whole_document", chars=len(content), files=len(records))

    return Chunk(
        content=content,
        chunk_index=0,
        strategy=ChunkStrategy.WHOLE_DOCUMENT.value,
        modules=[bucket.key for bucket in group_by_module(records)],
        files=[record.path for record in records],
        estimated_tokens=budget.estimate(content),
        char_budget=char_budget,
        overflow=overflow,
    )


def pack_modules(
    buckets: List[ModuleBucket],
    start_index: int,
    budget_for: BudgetFn,
    tokens_per_char: float = 0.25,
) -> List[Chunk]:
    """Greedily place whole module buckets into chunks.

    A bucket that does not fit even a fresh chunk is handed to split_module.
    """
    chunks: List[Chunk] = []
    acc = _Accumulator()

    for bucket in buckets:
        index = start_index + len(chunks)
        limit = budget_for(index)
        bucket_content = bucket.content

        if acc.size_with(bucket_content) <= limit:
            acc.add(bucket_content, [bucket.key], bucket.paths)
            continue

        if not acc.empty:
            chunks.append(acc.seal(index, limit, tokens_per_char))
            acc = _Accumulator()
            index = start_index + len(chunks)
            limit = budget_for(index)

        if acc.size_with(bucket_content) <= limit:
            acc.add(bucket_content, [bucket.key], bucket.paths)
        else:
            chunks.extend(
                split_module(bucket, index, budget_for, tokens_per_char=tokens_per_char)
            )

    if not acc.empty:
        index = start_index + len(chunks)
        chunks.append(acc.seal(index, budget_for(index), tokens_per_char))

    return chunks


def split_module(
    bucket: ModuleBucket,
    start_index: int,
    budget_for: BudgetFn,
    tokens_per_char: float = 0.25,
) -> List[Chunk]:
    """Greedily place whole files of one oversized module into chunks.

    The budget is looked up again after every seal since positions after 0
    have a smaller allotment. A file too large for a fresh chunk is handed
    to split_file.
    """
    chunks: List[Chunk] = []
    acc = _Accumulator()

    for record in bucket.files:
        index = start_index + len(chunks)
        limit = budget_for(index)

        if acc.size_with(record.content) <= limit:
            acc.add(record.content, [bucket.key], [record.path])
            continue

        if not acc.empty:
            chunks.append(acc.seal(index, limit, tokens_per_char))
            acc = _Accumulator()
            index = start_index + len(chunks)
            limit = budget_for(index)

        if acc.size_with(record.content) <= limit:
            acc.add(record.content, [bucket.key], [record.path])
        else:
            chunks.extend(
                split_file(
                    record, bucket.key, index, budget_for, tokens_per_char=tokens_per_char
                )
            )

    if not acc.empty:
        index = start_index + len(chunks)
        chunks.append(acc.seal(index, budget_for(index), tokens_per_char))

    log.info(
        "chunk.module_split",
        module=bucket.key,
        files=len(bucket.files),
        chunks=len(chunks),
    )
    return chunks


class _Fragment:
    """Lines of one file fragment, always starting with the file header."""

    def __init__(self, header: str) -> None:
        self.lines = [header]
        self.size = len(header)
        self.fences = 1 if is_fence(header) else 0
        self.overflow_line: Optional[int] = None
        self.overflow_length = 0
        self.overflow_reason = "single-line"

    @property
    def has_body(self) -> bool:
        return len(self.lines) > 1

    def size_with(self, line: str) -> int:
        """Size after adding ``line``, counting the closing fence it would need."""
        size = self.size + 1 + len(line)
        fences = self.fences + (1 if is_fence(line) else 0)
        if fences % 2:
            size += 1 + len(FENCE)
        return size

    def add(self, line: str) -> None:
        self.lines.append(line)
        self.size += 1 + len(line)
        if is_fence(line):
            self.fences += 1


def split_file(
    record: FileRecord,
    module: str,
    start_index: int,
    budget_for: BudgetFn,
    tokens_per_char: float = 0.25,
) -> List[Chunk]:
    """Split one oversized file on line boundaries.

    Every fragment repeats the file header and has its code fences balanced.
    A line longer than a fresh fragment's whole budget is kept intact; that
    fragment overflows and carries a single-line diagnostic. A line that fits
    but leaves no room for the closing fence it opens gets a fence-close one.
    """
    lines = record.content.split("\n")
    header, body = lines[0], lines[1:]
    chunks: List[Chunk] = []

    def seal(fragment: _Fragment) -> None:
        index = start_index + len(chunks)
        limit = budget_for(index)
        raw = "\n".join(fragment.lines)
        content = balance_fences(raw)
        overflow = None
        if len(content) > limit:
            if fragment.overflow_line is None:
                # The header alone is over budget
                fragment.overflow_line = 1
                fragment.overflow_length = len(header)
            overflow = OverflowDiagnostic(
                chunk_index=index,
                path=record.path,
                line_number=fragment.overflow_line,
                line_length=fragment.overflow_length,
                char_budget=limit,
                reason=fragment.overflow_reason,
            )
            log.warning(
                "chunk.line_overflow",
                path=record.path,
                chunk_index=index,
                line_number=fragment.overflow_line,
                line_length=fragment.overflow_length,
                char_budget=limit,
                reason=fragment.overflow_reason,
            )
        chunks.append(
            Chunk(
                content=content,
                chunk_index=index,
                strategy=ChunkStrategy.FILE_SPLIT.value,
                modules=[module],
                files=[record.path],
                estimated_tokens=estimate_tokens(content, tokens_per_char),
                char_budget=limit,
                overflow=overflow,
                closed_fence=content != raw,
            )
        )

    fragment = _Fragment(header)
    for line_number, line in enumerate(body, start=2):
        limit = budget_for(start_index + len(chunks))
        if fragment.size_with(line) <= limit:
            fragment.add(line)
            continue

        if fragment.has_body:
            seal(fragment)
            fragment = _Fragment(header)
            limit = budget_for(start_index + len(chunks))
            if fragment.size_with(line) <= limit:
                fragment.add(line)
                continue

        # Fresh fragment and the line still does not fit: never split mid-line
        fragment.overflow_line = line_number
        fragment.overflow_length = len(line)
        if fragment.size + 1 + len(line) <= limit:
            # The line fits; only the closing fence it leaves open does not
            fragment.overflow_reason = "fence-close"
        fragment.add(line)

    if fragment.has_body or not chunks:
        seal(fragment)

    log.info("chunk.file_split", path=record.path, fragments=len(chunks))
    return chunks


def finalize_chunks(chunks: List[Chunk]) -> ChunkResult:
    """Backfill total_chunks and sum token estimates."""
    total = len(chunks)
    finalized = [chunk._replace(total_chunks=total) for chunk in chunks]
    return ChunkResult(
        chunks=finalized,
        total_estimated_tokens=sum(chunk.estimated_tokens for chunk in finalized),
        diagnostics=[chunk.overflow for chunk in finalized if chunk.overflow is not None],
    )


def chunk_to_dict(chunk: Chunk) -> dict:
    """Serialize a chunk for chunks.ndjson."""
    return {
        "chunk_index": chunk.chunk_index,
        "total_chunks": chunk.total_chunks,
        "strategy": chunk.strategy,
        "modules": list(chunk.modules),
        "files": list(chunk.files),
        "char_count": len(chunk.content),
        "char_budget": chunk.char_budget,
        "estimated_tokens": chunk.estimated_tokens,
        "closed_fence": chunk.closed_fence,
        "overflow": chunk.overflow._asdict() if chunk.overflow else None,
        "content": chunk.content,
    }


def chunk_from_dict(data: dict) -> Chunk:
    overflow = data.get("overflow")
    return Chunk(
        content=data.get("content", ""),
        chunk_index=data.get("chunk_index", 0),
        total_chunks=data.get("total_chunks", 0),
        strategy=data.get("strategy", ChunkStrategy.MODULE_BASED.value),
        modules=list(data.get("modules", [])),
        files=list(data.get("files", [])),
        estimated_tokens=data.get("estimated_tokens", 0),
        char_budget=data.get("char_budget", 0),
        overflow=OverflowDiagnostic(**overflow) if overflow else None,
        closed_fence=bool(data.get("closed_fence", False)),
    )
