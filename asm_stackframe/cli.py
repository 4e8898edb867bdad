"""asm_stackframe/cli.py — command-line entry point.

Usage examples
--------------
    # Frame diagram for every function in a file
    asm-stackframe prog.asm

    # Register panel and active slots for the cursor at line 14
    asm-stackframe prog.asm --function main --cursor 14

    # Findings in GCC format, with a custom configuration
    asm-stackframe prog.asm --format gcc --config stackframe.sexp

    # Machine-readable dump
    python -m asm_stackframe prog.asm --format json

Exit codes
----------
    0   Success (no error-severity findings).
    1   One or more findings with severity ERROR were reported.
    2   Infrastructure failure (missing file, bad configuration, etc.).
"""

from __future__ import annotations

import argparse
import logging
import sys
import textwrap
from pathlib import Path
from typing import List, Optional, Sequence

from asm_stackframe import __version__, package_info
from asm_stackframe.analyzer import AnalysisResult, analyze_lines, split_lines
from asm_stackframe.config import DEFAULT_CONFIG, AnalyzerConfig, ConfigError, load_config
from asm_stackframe.model import Severity
from asm_stackframe.report import RENDERERS, render_text

_log = logging.getLogger("asm_stackframe")

# Exit codes ----------------------------------------------------------------

EXIT_OK: int = 0
EXIT_ERROR: int = 1
EXIT_INFRA: int = 2


# ===========================================================================
# Utility helpers
# ===========================================================================

def _configure_logging(verbosity: int) -> None:
    """Set up the ``asm_stackframe`` logger.

    Parameters
    ----------
    verbosity:
        0 → WARNING, 1 → INFO, 2+ → DEBUG.
    """
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    root = logging.getLogger("asm_stackframe")
    root.setLevel(level)
    if not root.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s [%(levelname)-5.5s] %(name)s: %(message)s",
                datefmt="%H:%M:%S",
            )
        )
        root.addHandler(handler)


def _resolve_path(raw: str, label: str = "file") -> Path:
    """Resolve *raw* to an absolute ``Path``, raising on missing files."""
    p = Path(raw).expanduser().resolve()
    if not p.is_file():
        _log.error("%s not found: %s", label, p)
        raise SystemExit(EXIT_INFRA)
    return p


def _read_lines(path: Path) -> List[str]:
    return split_lines(path.read_text(encoding="utf-8", errors="replace"))


def _error_count(result: AnalysisResult, function: Optional[str]) -> int:
    return sum(
        1
        for name, fn in result.functions.items()
        if function is None or name == function
        for f in fn.errors
        if f.severity is Severity.ERROR
    )


# ===========================================================================
# Argument parser
# ===========================================================================

def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="asm-stackframe",
        description=(
            "Reconstruct x86-64 stack frames from assembly source and report\n"
            "out-of-bounds, uninitialized and return-address accesses."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            examples:
              asm-stackframe prog.asm
              asm-stackframe prog.asm --function main --cursor 14
              asm-stackframe prog.asm -f gcc --config stackframe.sexp
        """),
    )
    parser.add_argument(
        "files",
        nargs="+",
        metavar="FILE",
        help="Assembly source file(s) in Intel syntax.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v info, -vv debug).",
    )
    parser.add_argument(
        "-f", "--format",
        choices=sorted(RENDERERS),
        default="text",
        help="Output format (default: text).",
    )
    parser.add_argument(
        "-c", "--config",
        default=None,
        metavar="PATH",
        help="S-expression configuration file.",
    )
    parser.add_argument(
        "--function",
        default=None,
        metavar="NAME",
        help="Only report this function.",
    )
    parser.add_argument(
        "--cursor",
        type=int,
        default=None,
        metavar="LINE",
        help="Cursor line: show the register panel and active slots.",
    )
    parser.add_argument(
        "--no-color",
        action="store_true",
        help="Disable coloured text output.",
    )
    return parser


# ===========================================================================
# Main
# ===========================================================================

def run(args: argparse.Namespace) -> int:
    config: AnalyzerConfig = DEFAULT_CONFIG
    if args.config:
        try:
            config = load_config(_resolve_path(args.config, "configuration"))
        except ConfigError as exc:
            _log.error("%s", exc)
            return EXIT_INFRA

    paths = [_resolve_path(raw) for raw in args.files]
    error_count = 0
    for path in paths:
        result = analyze_lines(_read_lines(path), config)
        _log.info(
            "%s: %d function(s) with a frame", path.name, len(result.functions)
        )
        if args.format == "text":
            out = render_text(
                result,
                file=str(path),
                function=args.function,
                cursor=args.cursor,
                color=not args.no_color,
            )
        else:
            out = RENDERERS[args.format](result, file=str(path), function=args.function)
        if out:
            sys.stdout.write(out + "\n")
        error_count += _error_count(result, args.function)

    return EXIT_ERROR if error_count > 0 else EXIT_OK


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the CLI.

    Parameters
    ----------
    argv:
        Command-line arguments.  ``None`` → ``sys.argv[1:]``.

    Returns
    -------
    int
        Exit code (see module docstring for semantics).
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    _configure_logging(args.verbose)
    _log.debug("package info: %s", package_info())

    try:
        return run(args)
    except KeyboardInterrupt:
        _log.info("Interrupted by user.")
        return 130
    except SystemExit as exc:
        return exc.code if isinstance(exc.code, int) else EXIT_INFRA
    except Exception as exc:
        _log.error("Unhandled exception: %s", exc, exc_info=True)
        return EXIT_INFRA


if __name__ == "__main__":
    raise SystemExit(main())
