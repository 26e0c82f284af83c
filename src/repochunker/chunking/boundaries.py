"""
File boundary detection, module grouping and code fence balancing.
"""

import re
from typing import Dict, List, NamedTuple, Tuple

FILE_HEADER_RE = re.compile(r"^#{1,6}\s*File:\s*(\S.*)$", re.IGNORECASE)
FENCE = "```"

# Joins file blocks and module buckets; a single newline keeps the
# concatenation identical to the parsed document.
BLOCK_SEPARATOR = "\n"

TOP_LEVEL_DIRS = ("src", "lib", "packages", "components", "modules", "app", "pages")


class FileRecord(NamedTuple):
    """One file block of the source document, header line included."""

    path: str
    header: str
    content: str

    @property
    def size(self) -> int:
        return len(self.content)


class ModuleBucket(NamedTuple):
    """File records sharing a module key, in document order."""

    key: str
    files: Tuple[FileRecord, ...]

    @property
    def content(self) -> str:
        return BLOCK_SEPARATOR.join(record.content for record in self.files)

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def paths(self) -> List[str]:
        return [record.path for record in self.files]


def match_file_header(line: str) -> str | None:
    """Return the path announced by a file header line, or None."""
    match = FILE_HEADER_RE.match(line)
    if not match:
        return None
    return match.group(1).strip()


def parse_file_blocks(content: str) -> List[FileRecord]:
    """Split a concatenated document into file records.

    Lines before the first header are dropped. A document without headers
    yields an empty list.
    """
    records: List[FileRecord] = []
    current_path: str | None = None
    current_lines: List[str] = []

    for line in content.split("\n"):
        path = match_file_header(line)
        if path is not None:
            if current_path is not None:
                records.append(
                    FileRecord(current_path, current_lines[0], "\n".join(current_lines))
                )
            current_path = path
            current_lines = [line]
        elif current_path is not None:
            current_lines.append(line)

    if current_path is not None:
        records.append(
            FileRecord(current_path, current_lines[0], "\n".join(current_lines))
        )

    return records


def extract_file_list(content: str) -> List[str]:
    """List header paths in document order."""
    files = []
    for line in content.split("\n"):
        path = match_file_header(line)
        if path is not None:
            files.append(path)
    return files


def module_key(path: str) -> str:
    """Derive a directory-based module key from a file path.

    Paths under a conventional top-level directory (src, lib, packages, ...)
    group by that directory plus the next level; other nested paths group by
    their first two directories; root files share the ``root`` key.
    """
    parts = [p for p in path.replace("\\", "/").split("/") if p and p != "."]

    if len(parts) <= 1:
        return "root"

    directories = parts[:-1]
    for i, part in enumerate(directories):
        if part in TOP_LEVEL_DIRS:
            if i + 1 < len(directories):
                return f"{part}/{directories[i + 1]}"
            return part

    if len(parts) > 2:
        return f"{parts[0]}/{parts[1]}"

    return parts[-2]


def group_by_module(records: List[FileRecord]) -> List[ModuleBucket]:
    """Bucket records by module key, ordered by first occurrence."""
    order: List[str] = []
    members: Dict[str, List[FileRecord]] = {}

    for record in records:
        key = module_key(record.path)
        if key not in members:
            order.append(key)
            members[key] = []
        members[key].append(record)

    return [ModuleBucket(key, tuple(members[key])) for key in order]


def is_fence(line: str) -> bool:
    return line.startswith(FENCE)


def count_fences(content: str) -> int:
    """Count code fence marker lines."""
    return sum(1 for line in content.split("\n") if is_fence(line))


def balance_fences(content: str) -> str:
    """Close a dangling code fence by appending a closing marker line."""
    if count_fences(content) % 2:
        return f"{content}\n{FENCE}"
    return content
