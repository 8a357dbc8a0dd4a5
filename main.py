"""
London liveability collector - command line entry point

    python main.py collect [--config PATH] [--out DIR]
    python main.py validate-config [--config PATH]

Configuration problems exit with status 1 before any upstream request is
made. Source failures do not change the exit status; they are reported as
warnings and recorded in the published snapshot.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from collector import collect_once
from config import config
from liveability_config import ConfigValidationError, load_validated_config
from logging_setup import setup_logging
from provenance import resolve_collector_version

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="liveability", description="London liveability collector")
    subcommands = parser.add_subparsers(dest="command", required=True)

    collect = subcommands.add_parser("collect", help="Fetch sources, score and write latest/history/meta JSON")
    collect.add_argument("--config", type=Path, default=None, help="Path to the liveability YAML config")
    collect.add_argument("--out", type=Path, default=None, help="Output directory for the JSON documents")

    validate = subcommands.add_parser("validate-config", help="Validate the liveability YAML config and exit")
    validate.add_argument("--config", type=Path, default=None, help="Path to the liveability YAML config")
    return parser


def run_validate_config(config_path: Path) -> int:
    try:
        liveability_config = load_validated_config(config_path)
    except ConfigValidationError as e:
        logger.error(str(e))
        return 1
    print(f"Config OK: {liveability_config.project.name} ({config_path})")
    return 0


def run_collect(config_path: Path, out_dir: Optional[Path]) -> int:
    try:
        liveability_config = load_validated_config(config_path)
    except ConfigValidationError as e:
        logger.error(str(e))
        return 1

    version = resolve_collector_version()
    result = asyncio.run(collect_once(liveability_config, version=version, out_dir=out_dir))

    for warning in result.latest.warnings:
        print(f"WARNING: {warning}", file=sys.stderr)
    print(
        f"Wrote {result.out_dir} - score {result.latest.liveability_score}, "
        f"{len(result.history.points)} history points"
    )
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging()
    config.log_configuration()

    config_path = args.config or config.paths.config_path
    if args.command == "validate-config":
        return run_validate_config(config_path)
    return run_collect(config_path, args.out)


if __name__ == "__main__":
    sys.exit(main())
