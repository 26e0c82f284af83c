import json
from pathlib import Path
from typing import Any, Dict, Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from ..chunking import (
    BudgetConfigError,
    ChunkBudget,
    ChunkOverflowError,
    OverflowPolicy,
    build_chunk_assurance,
    chunk_content,
    verify_chunks_file,
)
from ..chunking.engine import chunk_to_dict
from ..core import config as config_module
from ..core.config import Settings
from ..core.logging import log, setup_logging

app = typer.Typer(add_completion=False, help="Repochunker CLI")
console = Console()


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    config_file: Optional[str] = typer.Option(
        None, "--config", help="Config file (.yaml/.yml/.toml); auto-discovers .repochunker.*"
    ),
) -> None:
    """Load settings and configure logging before any command runs."""
    settings = Settings.load_config(config_file)
    config_module.SETTINGS = settings
    setup_logging(settings.LOG_FORMAT)  # type: ignore[arg-type]

    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())


def _resolve_budget(
    settings: Settings,
    max_context_tokens: Optional[int] = None,
    response_tokens: Optional[int] = None,
    prompt_tokens: Optional[int] = None,
    context_tokens: Optional[int] = None,
) -> ChunkBudget:
    """Apply command-line overrides on top of the configured budget."""
    overrides = {
        "max_context_tokens": max_context_tokens,
        "reserved_response_tokens": response_tokens,
        "reserved_prompt_tokens": prompt_tokens,
        "reserved_context_tokens": context_tokens,
    }
    try:
        values: Dict[str, Any] = settings.chunk_budget().model_dump()
        values.update({k: v for k, v in overrides.items() if v is not None})
        budget = ChunkBudget(**values)
        budget.ensure_positive()
    except (ValidationError, BudgetConfigError) as e:
        typer.echo(f"❌ Invalid chunk budget: {e}", err=True)
        raise typer.Exit(1) from e
    return budget


@app.command()
def version() -> None:
    from .. import __version__

    typer.echo(__version__)


@app.command()
def config(
    as_json: bool = typer.Option(False, "--json", help="Print settings as JSON"),
) -> None:
    """Show the effective settings."""
    settings = config_module.SETTINGS
    if as_json:
        typer.echo(json.dumps(settings.model_dump(), indent=2))
        return
    for k, v in settings.model_dump().items():
        typer.echo(f"{k}={v}")


@app.command()
def budget(
    max_context_tokens: Optional[int] = typer.Option(None, "--max-context-tokens"),
    response_tokens: Optional[int] = typer.Option(None, "--response-tokens"),
    prompt_tokens: Optional[int] = typer.Option(None, "--prompt-tokens"),
    context_tokens: Optional[int] = typer.Option(None, "--context-tokens"),
) -> None:
    """Show the character budget for the first and later chunk positions."""
    chunk_budget = _resolve_budget(
        config_module.SETTINGS,
        max_context_tokens,
        response_tokens,
        prompt_tokens,
        context_tokens,
    )

    table = Table(title="Chunk Budget")
    table.add_column("Position", style="bold cyan")
    table.add_column("Tokens", style="bold green", justify="right")
    table.add_column("Chars", style="bold green", justify="right")
    table.add_row(
        "0 (first)",
        str(chunk_budget.first_chunk_tokens),
        str(chunk_budget.first_chunk_chars),
    )
    table.add_row(
        "1+ (with summary)",
        str(chunk_budget.later_chunk_tokens),
        str(chunk_budget.later_chunk_chars),
    )
    console.print(table)


@app.command()
def chunk(
    input_file: Path = typer.Argument(
        ..., exists=True, dir_okay=False, readable=True, help="Concatenated repository document"
    ),
    out: Optional[Path] = typer.Option(
        None, "--out", help="Directory for chunks.ndjson and chunk_assurance.json"
    ),
    max_context_tokens: Optional[int] = typer.Option(None, "--max-context-tokens"),
    response_tokens: Optional[int] = typer.Option(None, "--response-tokens"),
    prompt_tokens: Optional[int] = typer.Option(None, "--prompt-tokens"),
    context_tokens: Optional[int] = typer.Option(None, "--context-tokens"),
    overflow_policy: Optional[str] = typer.Option(
        None, "--overflow-policy", help="allow|error for chunks that exceed their budget"
    ),
    as_json: bool = typer.Option(False, "--json", help="Print chunks as JSON to stdout"),
) -> None:
    """
    Split a concatenated repository document into budget-bounded chunks.

    Files are introduced by "## File: path" headers. Whole modules are packed
    first, oversized modules are packed file by file, and oversized files are
    split by line with the header repeated on every fragment.

    Example:
        repochunker chunk repo.md --out var/chunks
        repochunker chunk repo.md --max-context-tokens 32000 --json
    """
    settings = config_module.SETTINGS
    chunk_budget = _resolve_budget(
        settings, max_context_tokens, response_tokens, prompt_tokens, context_tokens
    )

    policy_name = overflow_policy or settings.CHUNKING_OVERFLOW_POLICY
    try:
        policy = OverflowPolicy(policy_name)
    except ValueError as e:
        typer.echo(f"❌ Unknown overflow policy: {policy_name}", err=True)
        raise typer.Exit(1) from e

    content = input_file.read_text(encoding="utf-8")

    try:
        result = chunk_content(content, chunk_budget, policy)
    except ChunkOverflowError as e:
        typer.echo(f"❌ Chunking rejected: {e}", err=True)
        for diag in e.diagnostics:
            typer.echo(
                f"   chunk {diag.chunk_index}: {diag.reason} "
                f"{diag.path or ''} line {diag.line_number} "
                f"({diag.line_length} chars, budget {diag.char_budget})",
                err=True,
            )
        raise typer.Exit(1) from e

    if out is not None:
        out.mkdir(parents=True, exist_ok=True)
        chunks_file = out / "chunks.ndjson"
        with open(chunks_file, "w") as f:
            for item in result.chunks:
                f.write(json.dumps(chunk_to_dict(item)) + "\n")

        assurance = build_chunk_assurance(result, chunk_budget, content)
        with open(out / "chunk_assurance.json", "w") as f:
            json.dump(assurance, f, indent=2)

        log.info(
            "chunk.artifacts_written",
            out=str(out),
            chunks=len(result.chunks),
            status=assurance["status"],
        )

    if as_json:
        typer.echo(
            json.dumps(
                {
                    "chunks": [chunk_to_dict(item) for item in result.chunks],
                    "totalEstimatedTokens": result.total_estimated_tokens,
                    "diagnostics": [diag._asdict() for diag in result.diagnostics],
                },
                indent=2,
            )
        )
        return

    table = Table(title=f"Chunks for {input_file.name}")
    table.add_column("#", style="bold cyan", justify="right")
    table.add_column("Strategy")
    table.add_column("Chars", justify="right")
    table.add_column("Budget", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Files", justify="right")
    table.add_column("Modules")
    for item in result.chunks:
        over = " ⚠️" if item.overflow else ""
        table.add_row(
            str(item.chunk_index),
            item.strategy,
            f"{len(item.content)}{over}",
            str(item.char_budget),
            str(item.estimated_tokens),
            str(len(item.files)),
            ", ".join(item.modules),
        )
    console.print(table)

    typer.echo(
        f"✅ {len(result.chunks)} chunk(s), ~{result.total_estimated_tokens} tokens",
        err=True,
    )
    if result.diagnostics:
        typer.echo(
            f"⚠️  {len(result.diagnostics)} chunk(s) exceed their budget", err=True
        )
    if out is not None:
        typer.echo(f"📁 Artifacts written to: {out}", err=True)


@app.command()
def verify(
    chunks_file: Path = typer.Argument(
        ..., exists=True, dir_okay=False, readable=True, help="chunks.ndjson to verify"
    ),
    max_context_tokens: Optional[int] = typer.Option(None, "--max-context-tokens"),
    response_tokens: Optional[int] = typer.Option(None, "--response-tokens"),
    prompt_tokens: Optional[int] = typer.Option(None, "--prompt-tokens"),
    context_tokens: Optional[int] = typer.Option(None, "--context-tokens"),
) -> None:
    """Check a chunks.ndjson file for budget, fence and numbering guarantees."""
    chunk_budget = _resolve_budget(
        config_module.SETTINGS,
        max_context_tokens,
        response_tokens,
        prompt_tokens,
        context_tokens,
    )

    try:
        report = verify_chunks_file(chunks_file, chunk_budget)
    except (json.JSONDecodeError, TypeError) as e:
        typer.echo(f"❌ Could not read {chunks_file}: {e}", err=True)
        raise typer.Exit(1) from e

    typer.echo(json.dumps(report, indent=2))
    if report["status"] != "PASS":
        typer.echo("❌ Verification failed", err=True)
        raise typer.Exit(1)
    typer.echo("✅ Verification passed", err=True)


if __name__ == "__main__":
    app()
