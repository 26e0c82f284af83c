"""
Repochunker Chunking Package

Splits a concatenated repository document into position-budgeted chunks,
falling back from whole modules to whole files to line fragments.
"""

from .assurance import build_chunk_assurance
from .boundaries import (
    FileRecord,
    ModuleBucket,
    balance_fences,
    count_fences,
    extract_file_list,
    group_by_module,
    module_key,
    parse_file_blocks,
)
from .budget import BudgetConfigError, ChunkBudget, estimate_tokens
from .engine import (
    Chunk,
    ChunkOverflowError,
    ChunkResult,
    ChunkStrategy,
    OverflowDiagnostic,
    OverflowPolicy,
    chunk_content,
    finalize_chunks,
    pack_modules,
    split_file,
    split_module,
)
from .verify import reassemble_content, verify_chunk_result, verify_chunks_file

__all__ = [
    "BudgetConfigError",
    "Chunk",
    "ChunkBudget",
    "ChunkOverflowError",
    "ChunkResult",
    "ChunkStrategy",
    "FileRecord",
    "ModuleBucket",
    "OverflowDiagnostic",
    "OverflowPolicy",
    "balance_fences",
    "build_chunk_assurance",
    "chunk_content",
    "count_fences",
    "estimate_tokens",
    "extract_file_list",
    "finalize_chunks",
    "group_by_module",
    "module_key",
    "pack_modules",
    "parse_file_blocks",
    "reassemble_content",
    "split_file",
    "split_module",
    "verify_chunk_result",
    "verify_chunks_file",
]
