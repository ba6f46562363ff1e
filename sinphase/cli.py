"""CLI entrypoint for the governance tagger.

Every command prints one JSON document on stdout and exits with
0 (success), 1 (advisory failure) or 2 (fatal failure).
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Optional

from sinphase.config import DEFAULT_CONFIG_FILENAME, TaggerConfig, load_config
from sinphase.engine import TagEngine
from sinphase.models import ConfigError, ExitStatus, SinphaseError, TestSummary
from sinphase.signing import SignatureError, generate_keypair, load_signer
from sinphase.vcs import GitBackend, repository_lock


def _emit(payload: dict) -> None:
    print(json.dumps(payload, indent=2))


def _fail(command: str, error: SinphaseError) -> int:
    _emit({
        "command": command,
        "status": ExitStatus.FATAL.name,
        "exit_status": int(ExitStatus.FATAL),
        "error": error.to_dict(),
    })
    return int(ExitStatus.FATAL)


def _load(args: argparse.Namespace) -> TaggerConfig:
    root = Path(args.root).resolve() if args.root else None
    config = load_config(args.config, base_dir=root)
    if getattr(args, "threshold", None) is not None:
        config = replace(config, threshold=args.threshold)
    return config


def _engine(args: argparse.Namespace, config: TaggerConfig, with_signer: bool) -> TagEngine:
    signer = None
    if with_signer:
        try:
            signer = load_signer(config.signing_algorithm, config.signing_key)
        except SignatureError as e:
            raise ConfigError(str(e)) from e
    return TagEngine(config, GitBackend(config.base_dir), signer)


def _summary(args: argparse.Namespace, parser: argparse.ArgumentParser) -> Optional[TestSummary]:
    if args.passed is None and args.total is None:
        return None
    if args.passed is None or args.total is None:
        parser.error("--passed and --total must be given together")
    try:
        return TestSummary(passed=args.passed, total=args.total)
    except ValueError as e:
        parser.error(str(e))


def cmd_verify(args: argparse.Namespace) -> int:
    """Check that the declared artifacts exist."""
    try:
        engine = _engine(args, _load(args), with_signer=False)
    except SinphaseError as e:
        return _fail("verify", e)
    outcome = engine.verify()
    _emit(outcome.to_dict())
    return int(outcome.exit_status)


def cmd_metric(args: argparse.Namespace) -> int:
    """Compute sinphase and the stability tier."""
    try:
        engine = _engine(args, _load(args), with_signer=False)
    except SinphaseError as e:
        return _fail("metric", e)
    outcome = engine.compute_metric(args.summary)
    _emit(outcome.to_dict())
    return int(outcome.exit_status)


def cmd_tag(args: argparse.Namespace) -> int:
    """Run the full pipeline and create the governance tag."""
    try:
        engine = _engine(args, _load(args), with_signer=True)
        if args.dry_run:
            outcome = engine.tag(args.summary, dry_run=True)
        else:
            with repository_lock(engine.backend.git_dir):
                outcome = engine.tag(args.summary)
    except SinphaseError as e:
        return _fail("tag", e)
    _emit(outcome.to_dict())
    return int(outcome.exit_status)


def cmd_inspect(args: argparse.Namespace) -> int:
    """Verify the aura seal of an existing tag."""
    try:
        engine = _engine(args, _load(args), with_signer=True)
    except SinphaseError as e:
        return _fail("inspect", e)
    outcome = engine.inspect_tag(args.tag_name)
    _emit(outcome.to_dict())
    return int(outcome.exit_status)


def cmd_keygen(args: argparse.Namespace) -> int:
    """Generate an Ed25519 keypair for sealing."""
    try:
        private_key_path, public_key_b64 = generate_keypair(Path(args.output), force=args.force)
    except SignatureError as e:
        return _fail("keygen", ConfigError(str(e)))
    _emit({
        "command": "keygen",
        "status": ExitStatus.SUCCESS.name,
        "exit_status": int(ExitStatus.SUCCESS),
        "private_key": str(private_key_path),
        "public_key_b64": public_key_b64,
    })
    return int(ExitStatus.SUCCESS)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sinphase",
        description="Stability-gated governance tagging for builds",
    )
    parser.add_argument("--config", help=f"Config file (default: <root>/{DEFAULT_CONFIG_FILENAME})")
    parser.add_argument("--root", help="Repository root (default: current directory)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging on stderr")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("verify", help="Verify declared artifacts")

    def add_summary_args(p: argparse.ArgumentParser) -> None:
        p.add_argument("--passed", type=int, help="Passed test count (skips the test command)")
        p.add_argument("--total", type=int, help="Total test count")

    p_metric = subparsers.add_parser("metric", help="Compute sinphase and stability tier")
    add_summary_args(p_metric)

    p_tag = subparsers.add_parser("tag", help="Gate the build and create the governance tag")
    add_summary_args(p_tag)
    p_tag.add_argument("--threshold", type=float, help="Override the configured threshold")
    p_tag.add_argument("--dry-run", action="store_true", help="Stop after the gate; create nothing")

    p_inspect = subparsers.add_parser("inspect", help="Verify an existing tag's aura seal")
    p_inspect.add_argument("tag_name")

    p_keygen = subparsers.add_parser("keygen", help="Generate an Ed25519 sealing keypair")
    p_keygen.add_argument("--output", "-o", required=True, help="Output directory")
    p_keygen.add_argument("--force", "-f", action="store_true", help="Overwrite existing key")

    return parser


def main(argv: list[str] | None = None) -> None:
    """Main CLI entrypoint."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(int(ExitStatus.FATAL))

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    if args.command in ("metric", "tag"):
        args.summary = _summary(args, parser)

    dispatch = {
        "verify": cmd_verify,
        "metric": cmd_metric,
        "tag": cmd_tag,
        "inspect": cmd_inspect,
        "keygen": cmd_keygen,
    }
    exit_code = dispatch[args.command](args)
    sys.exit(exit_code)
