"""CLI integration tests for the chunk, verify and budget commands."""

import json

import pytest
from typer.testing import CliRunner

from repochunker.cli.main import app

pytestmark = pytest.mark.unit

runner = CliRunner()

SMALL_BUDGET_ARGS = [
    "--max-context-tokens",
    "1000",
    "--response-tokens",
    "100",
    "--prompt-tokens",
    "150",
    "--context-tokens",
    "250",
]


@pytest.fixture(autouse=True)
def isolated_cwd(tmp_path, monkeypatch):
    """Run every command away from any real .repochunker config or .env."""
    monkeypatch.chdir(tmp_path)
    for key in ("MAX_CONTEXT_TOKENS", "CHUNKING_OVERFLOW_POLICY", "LOG_FORMAT"):
        monkeypatch.delenv(key, raising=False)
    return tmp_path


@pytest.fixture
def repo_doc(tmp_path, make_file):
    path = tmp_path / "repo.md"
    path.write_text(
        "\n".join(
            [
                make_file("README.md", size=400),
                make_file("src/api/routes.py", size=1800),
                make_file("src/api/models.py", size=900),
                make_file("src/core/big.py", size=4500),
            ]
        ),
        encoding="utf-8",
    )
    return path


@pytest.fixture
def overflow_doc(tmp_path):
    path = tmp_path / "overflow.md"
    path.write_text(
        "\n".join(["## File: src/app/a.py", "short", "z" * 3500, "tail"]),
        encoding="utf-8",
    )
    return path


def test_no_command_shows_help():
    result = runner.invoke(app, [])
    assert result.exit_code == 0
    assert "chunk" in result.output
    assert "verify" in result.output


def test_version():
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert "0.1.0" in result.output


def test_budget_defaults():
    result = runner.invoke(app, ["budget"])
    assert result.exit_code == 0
    assert "460000" in result.output
    assert "428000" in result.output


def test_budget_overrides():
    result = runner.invoke(app, ["budget", *SMALL_BUDGET_ARGS])
    assert result.exit_code == 0
    assert "3000" in result.output
    assert "2000" in result.output


def test_budget_rejects_reservations_larger_than_context():
    result = runner.invoke(
        app, ["budget", "--max-context-tokens", "1000", "--response-tokens", "2000"]
    )
    assert result.exit_code == 1
    assert "Invalid chunk budget" in result.output


def test_budget_rejects_negative_reservation():
    result = runner.invoke(app, ["budget", "--prompt-tokens", "-5"])
    assert result.exit_code == 1
    assert "Invalid chunk budget" in result.output


def test_config_json():
    result = runner.invoke(app, ["config", "--json"])
    assert result.exit_code == 0
    settings = json.loads(result.output)
    assert settings["MAX_CONTEXT_TOKENS"] == 128000
    assert settings["CHUNKING_OVERFLOW_POLICY"] == "allow"


def test_config_file_is_discovered(isolated_cwd):
    (isolated_cwd / ".repochunker.yaml").write_text("MAX_CONTEXT_TOKENS: 64000\n")

    result = runner.invoke(app, ["budget"])

    assert result.exit_code == 0
    # (64000 - 10000 - 3000) * 4
    assert "204000" in result.output


def test_chunk_prints_table(repo_doc):
    result = runner.invoke(app, ["chunk", str(repo_doc), *SMALL_BUDGET_ARGS])
    assert result.exit_code == 0
    assert "Chunks for repo.md" in result.output
    assert "file-split" in result.output


def test_chunk_json_output(repo_doc):
    result = runner.invoke(app, ["chunk", str(repo_doc), "--json", *SMALL_BUDGET_ARGS])
    assert result.exit_code == 0
    assert '"totalEstimatedTokens"' in result.output
    assert '"chunk_index": 0' in result.output


def test_chunk_writes_artifacts(repo_doc, tmp_path):
    out = tmp_path / "out"
    result = runner.invoke(app, ["chunk", str(repo_doc), "--out", str(out), *SMALL_BUDGET_ARGS])
    assert result.exit_code == 0

    lines = (out / "chunks.ndjson").read_text().splitlines()
    chunks = [json.loads(line) for line in lines]
    assert len(chunks) > 1
    assert [c["chunk_index"] for c in chunks] == list(range(len(chunks)))
    assert {c["total_chunks"] for c in chunks} == {len(chunks)}
    assert all(c["char_count"] <= c["char_budget"] for c in chunks)

    assurance = json.loads((out / "chunk_assurance.json").read_text())
    assert assurance["status"] == "PASS"
    assert assurance["chunkCount"] == len(chunks)


def test_chunk_overflow_allowed_by_default(overflow_doc):
    result = runner.invoke(app, ["chunk", str(overflow_doc), *SMALL_BUDGET_ARGS])
    assert result.exit_code == 0
    assert "exceed their budget" in result.output


def test_chunk_overflow_rejected_under_error_policy(overflow_doc, tmp_path):
    out = tmp_path / "rejected"
    result = runner.invoke(
        app,
        [
            "chunk",
            str(overflow_doc),
            "--overflow-policy",
            "error",
            "--out",
            str(out),
            *SMALL_BUDGET_ARGS,
        ],
    )
    assert result.exit_code == 1
    assert "Chunking rejected" in result.output
    assert "src/app/a.py" in result.output
    assert not out.exists()


def test_chunk_error_policy_from_config(overflow_doc, isolated_cwd):
    (isolated_cwd / ".repochunker.yaml").write_text("CHUNKING_OVERFLOW_POLICY: error\n")

    result = runner.invoke(app, ["chunk", str(overflow_doc), *SMALL_BUDGET_ARGS])

    assert result.exit_code == 1
    assert "Chunking rejected" in result.output


def test_chunk_unknown_policy(repo_doc):
    result = runner.invoke(app, ["chunk", str(repo_doc), "--overflow-policy", "truncate"])
    assert result.exit_code == 1
    assert "Unknown overflow policy" in result.output


def test_chunk_missing_input(tmp_path):
    result = runner.invoke(app, ["chunk", str(tmp_path / "missing.md")])
    assert result.exit_code != 0


def test_verify_written_chunks(repo_doc, tmp_path):
    out = tmp_path / "out"
    runner.invoke(app, ["chunk", str(repo_doc), "--out", str(out), *SMALL_BUDGET_ARGS])

    result = runner.invoke(app, ["verify", str(out / "chunks.ndjson"), *SMALL_BUDGET_ARGS])

    assert result.exit_code == 0
    assert '"status": "PASS"' in result.output


def test_verify_detects_tampering(repo_doc, tmp_path):
    out = tmp_path / "out"
    runner.invoke(app, ["chunk", str(repo_doc), "--out", str(out), *SMALL_BUDGET_ARGS])
    chunks_file = out / "chunks.ndjson"
    lines = chunks_file.read_text().splitlines()
    chunks_file.write_text("\n".join(lines[:-1]) + "\n")

    result = runner.invoke(app, ["verify", str(chunks_file), *SMALL_BUDGET_ARGS])

    assert result.exit_code == 1
    assert '"status": "FAIL"' in result.output


def test_verify_rejects_malformed_file(tmp_path):
    chunks_file = tmp_path / "chunks.ndjson"
    chunks_file.write_text("not json\n")

    result = runner.invoke(app, ["verify", str(chunks_file)])

    assert result.exit_code == 1
    assert "Could not read" in result.output
