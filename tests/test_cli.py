"""Tests for sinphase/cli.py - commands, JSON output and exit codes."""
import json

import pytest
import yaml

from sinphase.cli import main
from sinphase.config import DEFAULT_CONFIG_FILENAME, THRESHOLD_ENV
from sinphase.signing import SIGNING_KEY_ENV

from conftest import artifact_paths, run_git


@pytest.fixture
def cli_repo(git_repo, monkeypatch):
    """git repo with ten built artifacts and a config file; HMAC key in the environment."""
    (git_repo / "dist").mkdir()
    for i, rel in enumerate(artifact_paths()):
        (git_repo / rel).write_text(f"artifact {i}\n")
    (git_repo / DEFAULT_CONFIG_FILENAME).write_text(yaml.safe_dump({
        "artifacts": list(artifact_paths()),
        "governance_ref": "GOV-CLI-001",
    }))
    monkeypatch.setenv(SIGNING_KEY_ENV, "cli-secret")
    monkeypatch.delenv(THRESHOLD_ENV, raising=False)
    return git_repo


def run_cli(capsys, *argv):
    with pytest.raises(SystemExit) as exc:
        main(list(argv))
    out = capsys.readouterr().out
    return exc.value.code, json.loads(out) if out.strip().startswith("{") else out


def test_no_command_prints_help(capsys):
    code, out = run_cli(capsys)
    assert code == 2
    assert "usage:" in out


def test_verify(cli_repo, capsys):
    code, out = run_cli(capsys, "--root", str(cli_repo), "verify")
    assert code == 0
    assert out["verification"]["present_count"] == 10


def test_verify_missing_is_advisory(cli_repo, capsys):
    (cli_repo / "dist" / "artifact_2.bin").unlink()
    code, out = run_cli(capsys, "--root", str(cli_repo), "verify")
    assert code == 1
    assert out["error"]["code"] == "ARTIFACT_MISSING"
    assert out["verification"]["missing"] == ["dist/artifact_2.bin"]


def test_metric(cli_repo, capsys):
    code, out = run_cli(capsys, "--root", str(cli_repo), "metric", "--passed", "45", "--total", "50")
    assert code == 0
    assert out["metric"]["sinphase"] == 0.9
    assert out["tier"] == "release"


def test_metric_needs_both_counts(cli_repo, capsys):
    with pytest.raises(SystemExit) as exc:
        main(["--root", str(cli_repo), "metric", "--passed", "45"])
    assert exc.value.code == 2


def test_metric_zero_total(cli_repo, capsys):
    code, out = run_cli(capsys, "--root", str(cli_repo), "metric", "--passed", "0", "--total", "0")
    assert code == 2
    assert out["error"]["code"] == "NO_TEST_DATA"


def test_tag_then_inspect(cli_repo, capsys):
    code, out = run_cli(capsys, "--root", str(cli_repo), "tag", "--passed", "45", "--total", "50")
    assert code == 0
    assert out["tag"] == "v0.0.1-release"
    assert run_git(cli_repo, "tag", "-l") == "v0.0.1-release"

    code, out = run_cli(capsys, "--root", str(cli_repo), "inspect", "v0.0.1-release")
    assert code == 0
    assert out["seal_valid"] is True
    assert out["manifest"]["governance_ref"] == "GOV-CLI-001"


def test_inspect_with_rotated_key(cli_repo, capsys, monkeypatch):
    run_cli(capsys, "--root", str(cli_repo), "tag", "--passed", "45", "--total", "50")
    monkeypatch.setenv(SIGNING_KEY_ENV, "rotated-secret")
    code, out = run_cli(capsys, "--root", str(cli_repo), "inspect", "v0.0.1-release")
    assert code == 2
    assert out["error"]["code"] == "SEAL_INVALID"


def test_tag_dry_run(cli_repo, capsys):
    code, out = run_cli(
        capsys, "--root", str(cli_repo), "tag", "--dry-run", "--passed", "45", "--total", "50",
    )
    assert code == 0
    assert out["dry_run"] is True
    assert out["tag"] == "v0.0.1-release"
    assert run_git(cli_repo, "tag", "-l") == ""


def test_tag_below_threshold_override(cli_repo, capsys):
    code, out = run_cli(
        capsys, "--root", str(cli_repo), "tag", "--threshold", "0.95", "--passed", "45", "--total", "50",
    )
    assert code == 2
    assert out["error"]["code"] == "BELOW_THRESHOLD"
    assert out["error"]["context"] == {"metric": 0.9, "threshold": 0.95}
    assert run_git(cli_repo, "tag", "-l") == ""


def test_tag_without_key(cli_repo, capsys, monkeypatch):
    monkeypatch.delenv(SIGNING_KEY_ENV)
    code, out = run_cli(capsys, "--root", str(cli_repo), "tag", "--passed", "45", "--total", "50")
    assert code == 2
    assert out["error"]["code"] == "CONFIG_ERROR"


def test_missing_config(tmp_path, capsys):
    code, out = run_cli(capsys, "--root", str(tmp_path), "verify")
    assert code == 2
    assert out["error"]["code"] == "CONFIG_ERROR"


def test_keygen(tmp_path, capsys):
    code, out = run_cli(capsys, "keygen", "--output", str(tmp_path / "keys"))
    assert code == 0
    assert (tmp_path / "keys" / "private_key.pem").exists()
    assert out["public_key_b64"]

    code, out = run_cli(capsys, "keygen", "--output", str(tmp_path / "keys"))
    assert code == 2
    assert out["error"]["code"] == "CONFIG_ERROR"


def test_tag_nan_threshold_flag(cli_repo, capsys):
    code, out = run_cli(
        capsys, "--root", str(cli_repo), "tag", "--threshold", "nan", "--passed", "1", "--total", "50",
    )
    assert code == 2
    assert out["error"]["code"] == "CONFIG_ERROR"
    assert run_git(cli_repo, "tag", "-l") == ""


def test_tag_nan_threshold_env(cli_repo, capsys, monkeypatch):
    monkeypatch.setenv(THRESHOLD_ENV, "nan")
    code, out = run_cli(capsys, "--root", str(cli_repo), "tag", "--passed", "1", "--total", "50")
    assert code == 2
    assert out["error"]["code"] == "CONFIG_ERROR"
    assert run_git(cli_repo, "tag", "-l") == ""
