"""
Command-line interface for unibuild.

This module provides the `unibuild` CLI tool for building multi-architecture
executables.
"""

import argparse
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from unibuild import __version__
from unibuild.build import BuildOrchestrator
from unibuild.cli_utils import (
    ErrorFormatter,
    PathValidator,
    ProjectLoader,
    setup_logging,
)
from unibuild.config import ConfigurationError
from unibuild.packages import Cache


@dataclass
class BuildArgs:
    """Arguments for the build command."""

    project_dir: Path
    jobs: Optional[int] = None
    clean: bool = False
    keep_temps: bool = False
    progress: bool = True
    verbose: bool = False


@dataclass
class CleanArgs:
    """Arguments for the clean command."""

    project_dir: Path
    verbose: bool = False


def build_command(args: BuildArgs) -> None:
    """Build the project executable.

    Examples:
        unibuild build                  # Build project in current directory
        unibuild build path/to/app      # Build specific project
        unibuild build -j 8             # Compile on 8 lanes
        unibuild build --clean          # Clean build
        unibuild build --verbose        # Verbose output
    """
    print(f"unibuild v{__version__}")
    print()

    try:
        config = ProjectLoader.load(args.project_dir)
        if args.jobs is not None:
            config.jobs = args.jobs
        if args.keep_temps:
            config.keep_temps = True

        orchestrator = BuildOrchestrator(
            config,
            verbose=args.verbose,
            show_progress=args.progress and not args.verbose,
        )
        setup_logging(args.verbose, orchestrator.cache.log_file)

        if args.verbose:
            print(f"Building project: {config.project_dir}")
            print(f"Platform: {config.platform} ({', '.join(config.archs)})")
            print(f"Lanes: {config.jobs}")
            print()
        else:
            print(f"Building {config.name} for {config.platform}...")

        result = orchestrator.build(clean=args.clean)

        if result.success:
            ErrorFormatter.print_success("Build successful!")
            print()
            print(f"Executable: {result.executable}")
            if result.changed:
                print(f"Compiled {result.compiled_count} of {len(result.objects)} units, relinked")
            else:
                print(f"Compiled {result.compiled_count} of {len(result.objects)} units, executable up to date")
            print(f"Build time: {result.build_time:.2f}s")
            sys.exit(0)
        else:
            ErrorFormatter.print_error("Build failed!", result.message)
            sys.exit(1)

    except FileNotFoundError as e:
        ErrorFormatter.handle_file_not_found(e)
    except ConfigurationError as e:
        ErrorFormatter.print_error("Configuration error", str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        ErrorFormatter.handle_keyboard_interrupt()
    except Exception as e:
        ErrorFormatter.handle_unexpected_error(e, args.verbose)


def clean_command(args: CleanArgs) -> None:
    """Remove the project's build directory.

    The shared common cache is left alone.
    """
    try:
        config = ProjectLoader.load(args.project_dir)
        cache = Cache.for_project(config)
        cache.clean_build()
        ErrorFormatter.print_success(f"Removed {cache.build_dir}")
        sys.exit(0)
    except FileNotFoundError as e:
        ErrorFormatter.handle_file_not_found(e)
    except ConfigurationError as e:
        ErrorFormatter.print_error("Configuration error", str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        ErrorFormatter.handle_keyboard_interrupt()
    except Exception as e:
        ErrorFormatter.handle_unexpected_error(e, args.verbose)


def main() -> None:
    """unibuild - incremental multi-architecture build orchestrator."""
    parser = argparse.ArgumentParser(
        prog="unibuild",
        description="unibuild - incremental multi-architecture build orchestrator",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"unibuild {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Build command
    build_parser = subparsers.add_parser(
        "build",
        help="Build the project executable",
    )
    build_parser.add_argument(
        "project_dir",
        nargs="?",
        type=Path,
        default=Path.cwd(),
        help="Project directory (default: current directory)",
    )
    build_parser.add_argument(
        "-j",
        "--jobs",
        default=None,
        type=int,
        help="Number of parallel compile lanes (default: from unibuild.ini)",
    )
    build_parser.add_argument(
        "-c",
        "--clean",
        action="store_true",
        help="Clean build artifacts before building",
    )
    build_parser.add_argument(
        "--keep-temps",
        action="store_true",
        help="Keep intermediate assembly files",
    )
    build_parser.add_argument(
        "--no-progress",
        action="store_true",
        help="Don't show the progress bar",
    )
    build_parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show verbose build output",
    )

    # Clean command
    clean_parser = subparsers.add_parser(
        "clean",
        help="Remove build artifacts",
    )
    clean_parser.add_argument(
        "project_dir",
        nargs="?",
        type=Path,
        default=Path.cwd(),
        help="Project directory (default: current directory)",
    )
    clean_parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show verbose output",
    )

    parsed_args = parser.parse_args()

    if not parsed_args.command:
        parser.print_help()
        sys.exit(0)

    if hasattr(parsed_args, "project_dir"):
        PathValidator.validate_project_dir(parsed_args.project_dir)

    if parsed_args.command == "build":
        if parsed_args.jobs is not None and parsed_args.jobs < 1:
            parser.error("--jobs must be at least 1")
        build_command(BuildArgs(
            project_dir=parsed_args.project_dir,
            jobs=parsed_args.jobs,
            clean=parsed_args.clean,
            keep_temps=parsed_args.keep_temps,
            progress=not parsed_args.no_progress,
            verbose=parsed_args.verbose,
        ))
    elif parsed_args.command == "clean":
        clean_command(CleanArgs(
            project_dir=parsed_args.project_dir,
            verbose=parsed_args.verbose,
        ))


if __name__ == "__main__":
    main()
