#!/usr/bin/env python3
"""
smoldev - Main Entry Point

Usage:
    smoldev -p "a pong game in javascript" -d ./pong
    smoldev -p prompt.md -d ./out -j 8       # read the prompt from a file
    smoldev -p prompt.md -d ./out --files-to-generate files.yaml --shared-deps deps.yaml
    smoldev --help

Stages:
    1. Ask the model for the list of files to write
    2. Ask the model for the names those files share
    3. Generate every file concurrently, streaming each one to disk

Files that already exist (and are non-empty) in the target directory are
skipped, so an interrupted run can simply be started again.
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from rich.console import Console
from rich.markup import escape

from smoldev import __version__
from smoldev.config import PipelineConfig, read_intent, MODEL_ALIASES
from smoldev.display import show_summary
from smoldev.exceptions import ConfigError, GenerationFailedError, SmolDevError
from smoldev.logging_config import logger, setup_logging
from smoldev.pipeline import run_pipeline
from smoldev.progress import RichProgressReporter


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser for CLI"""
    parser = argparse.ArgumentParser(
        prog="smoldev",
        description="Generate a complete code project from a natural-language prompt",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  smoldev -p "a chrome extension that blocks tabs" -d ./ext
  smoldev -p prompt.md -d ./out --concurrency 10
  smoldev -p prompt.md -d ./out --files-to-generate files.yaml --shared-deps deps.yaml

Override files:
  --files-to-generate and --shared-deps point at YAML files. When the file
  exists and is non-empty it is used instead of asking the model; otherwise
  the model's answer is written there so it can be edited and reused.

Environment:
  ANTHROPIC_API_KEY      API key (also read from a .env file)
  ANTHROPIC_BASE_URL     Alternative API endpoint
  SMOLDEV_MODEL          Default model
  SMOLDEV_CONCURRENCY    Default concurrency
        """
    )

    # Positional argument for prompt
    parser.add_argument(
        "prompt",
        nargs="?",
        help="Prompt to use (can be a filename)"
    )

    # Prompt flag (alternative to positional)
    parser.add_argument(
        "-p", "--prompt",
        dest="prompt_flag",
        help="Prompt to use (can be a filename)"
    )

    parser.add_argument(
        "-d", "--target-dir",
        dest="target_dir",
        help="Target directory to write files to"
    )

    parser.add_argument(
        "-j", "--concurrency",
        type=int,
        help="Number of files to generate concurrently (default: 5)"
    )

    parser.add_argument(
        "-m", "--model",
        help=f"Model to use: {', '.join(MODEL_ALIASES)} or a full model id (default: sonnet)"
    )

    parser.add_argument(
        "--max-tokens",
        type=int,
        help="Maximum tokens per response"
    )

    # Override/cache files
    parser.add_argument(
        "--files-to-generate",
        dest="files_override",
        help="YAML file containing a list of files to generate"
    )

    parser.add_argument(
        "--shared-deps",
        dest="deps_override",
        help="YAML file containing a list of shared dependencies"
    )

    parser.add_argument(
        "--no-atomic-writes",
        dest="atomic_writes",
        action="store_false",
        default=None,
        help="Stream straight into the destination file instead of a .partial file"
    )

    # Verbose mode
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        default=None,
        help="Verbose output"
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        default=None,
        help="Debug output (show prompts)"
    )

    parser.add_argument(
        "--log-file",
        help="Also write detailed logs to this file"
    )

    parser.add_argument(
        "--json-logs",
        action="store_true",
        default=None,
        help="Emit logs as JSON lines"
    )

    # Config file
    parser.add_argument(
        "--config",
        type=str,
        help="Path to JSON config file"
    )

    parser.add_argument(
        "--api-key",
        type=str,
        help="Anthropic API key (or set ANTHROPIC_API_KEY env var)"
    )

    parser.add_argument(
        "--base-url",
        type=str,
        help="Anthropic API base URL"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    return parser


def build_config(args: argparse.Namespace) -> PipelineConfig:
    """Defaults < .env/environment < --config file < command-line flags"""
    config = PipelineConfig.load_default()

    if args.config:
        config.load_from_file(args.config)

    for attr in (
        "target_dir", "concurrency", "model", "max_tokens", "files_override",
        "deps_override", "atomic_writes", "verbose", "debug", "log_file",
        "json_logs", "api_key", "base_url",
    ):
        value = getattr(args, attr)
        if value is not None:
            setattr(config, attr, value)

    return config


def log_failure(error: SmolDevError) -> None:
    """Record the structured error in the log file / JSON log stream"""
    logger.debug(f"Run failed: {error.code}", extra={"error": error.to_dict()})


def log_level(config: PipelineConfig) -> int:
    if config.debug:
        return logging.DEBUG
    if config.verbose:
        return logging.INFO
    return logging.WARNING


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    parser = create_parser()
    args = parser.parse_args(argv)

    console = Console()
    err_console = Console(stderr=True)

    try:
        config = build_config(args)
        setup_logging(log_level(config), config.log_file, config.json_logs)
        intent = read_intent(args.prompt or args.prompt_flag)

        progress = RichProgressReporter(console, spinners=not config.verbose)
        result = asyncio.run(run_pipeline(intent, config, progress=progress, console=console))

        if config.verbose:
            show_summary(console, result, config.target_dir)
        else:
            console.print(
                f"[green]✓[/green] {len(result.written)} files written, "
                f"{len(result.skipped)} skipped in {config.target_dir}"
            )
        return 0

    except ConfigError as e:
        log_failure(e)
        err_console.print(f"[red]✗ Configuration error:[/red] {escape(e.message)}", highlight=False)
        return 2
    except GenerationFailedError as e:
        log_failure(e)
        show_summary(err_console, e.result, config.target_dir)
        return 1
    except SmolDevError as e:
        log_failure(e)
        err_console.print(f"[red]✗ Error:[/red] {escape(str(e))}", highlight=False)
        return 1
    except KeyboardInterrupt:
        err_console.print("\n[yellow]Interrupted, partial files were left in place[/yellow]")
        return 130
    except Exception as e:
        if args.verbose or args.debug:
            err_console.print_exception()
        else:
            err_console.print(f"[red]✗ Error:[/red] {type(e).__name__}: {escape(str(e))}", highlight=False)
        return 1


if __name__ == "__main__":
    sys.exit(main())
