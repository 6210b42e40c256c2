# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: main launcher for ThreatLens: starts the web dashboard and optionally opens the browser, or scores a single
file from the command line with --analyze. the terminal shows a welcome banner and colored log lines while the
dashboard runs.
"""

from __future__ import annotations  # lets us use string annotations before classes are defined

import argparse  # for parsing command line arguments
import logging  # for the threatlens.* log output and silencing waitress
import sys  # for checking if we are frozen (packaged) and for exit codes
import threading  # for opening the browser once the server is up
import webbrowser  # for opening the dashboard in the browser
from pathlib import Path  # for working with file paths

from colorama import init as _colorama_init  # ANSI colors on Windows terminals too
from dotenv import load_dotenv  # THREATLENS_* settings from a .env file

from agent.file_source import FileSource
from algorithm.errors import EmptyInputError, FileTooLargeError, ModelNotLoadedError
from dashboard.config import load_config

CYAN = "\x1b[36m"  # ANSI code for cyan color
MAG = "\x1b[35m"  # ANSI code for magenta color
RED = "\x1b[31m"  # ANSI code for red color
YELLOW = "\x1b[33m"  # ANSI code for yellow color
GREEN = "\x1b[32m"  # ANSI code for green color
DIM = "\x1b[2m"  # ANSI code for dim/brightness
BOLD = "\x1b[1m"  # ANSI code for bold text
RESET = "\x1b[0m"  # ANSI code to reset all formatting


def _resolve_base_dir() -> Path:
    # packaged builds live next to the executable, source checkouts one level above this file
    if getattr(sys, "frozen", False):
        return Path(sys.executable).parent
    return Path(__file__).resolve().parents[1]


class ColoredLevelFormatter(logging.Formatter):
    """prefixes each message with a colored level tag, warnings yellow and errors red"""

    COLORS = {
        logging.DEBUG: DIM,
        logging.INFO: CYAN,
        logging.WARNING: YELLOW,
        logging.ERROR: RED,
        logging.CRITICAL: RED + BOLD,
    }

    def format(self, record):
        msg = super().format(record)
        color = self.COLORS.get(record.levelno, "")
        return f"{color}{record.levelname.lower():>8}{RESET} {msg}"


def setup_logging(level: str = "INFO") -> None:
    _colorama_init()  # enable ANSI color codes on Windows terminals
    handler = logging.StreamHandler()
    handler.setFormatter(ColoredLevelFormatter("%(name)s: %(message)s"))
    root = logging.getLogger("threatlens")
    root.handlers[:] = [handler]  # replace, so calling twice does not double every line
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.propagate = False  # prevent duplicate messages
    # silence waitress web server log messages so the console stays clean
    logging.getLogger("waitress").setLevel(logging.CRITICAL)
    logging.getLogger("waitress.queue").setLevel(logging.CRITICAL)


def print_banner(url: str) -> None:
    print(
        f"""
{DIM}┌──────────────────────────────────────────────┐{RESET}
{DIM}│{RESET}{CYAN}{BOLD}          T h r e a t L e n s{RESET}{DIM}                 │{RESET}
{DIM}├──────────────────────────────────────────────┤{RESET}
{MAG}   file triage · entropy · signatures · verdict{RESET}
{DIM}│{RESET}  dashboard: {CYAN}{url}{RESET}
{DIM}│{RESET}  press {CYAN}Ctrl+C{RESET} to quit
{DIM}└──────────────────────────────────────────────┘{RESET}
"""
    )


def analyze_once(path: str, save: bool = False) -> int:
    """Score one file and print the verdict. Returns a process exit code."""
    from dashboard.app import build_service

    cfg = load_config()
    service = build_service(cfg)
    source = FileSource(cfg.max_upload_bytes)
    try:
        record = service.analyze_path(path, source, save=save)
    except (OSError, FileTooLargeError, EmptyInputError) as e:
        print(f"{RED}analysis failed:{RESET} {e}")
        return 2
    except ModelNotLoadedError as e:
        print(f"{RED}no verdict:{RESET} {e}")
        return 3

    color = RED if record.verdict.is_malicious else GREEN
    print(f"{BOLD}{record.filename}{RESET} ({record.metadata.get('file_type', '?')}, {record.metadata.get('size', 0)} bytes)")
    print(f"  verdict:    {color}{record.verdict.label}{RESET} ({record.verdict.confidence:.1f}% confidence)")
    print(f"  threat:     {record.threat_level}")
    if record.degraded:
        print(f"  {YELLOW}features could not be extracted, verdict uses default features{RESET}")
    for name, value in record.verdict.attributions.items():
        print(f"  {name:<34}{value:.3f}")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="ThreatLens")  # create argument parser
    parser.add_argument(
        "--no-open",
        action="store_true",
        help="do not open the dashboard automatically",
    )
    parser.add_argument(
        "--analyze",
        metavar="PATH",
        help="score a single file, print the verdict, and exit",
    )
    parser.add_argument(
        "--save",
        action="store_true",
        help="with --analyze, also store the result in the history",
    )
    args = parser.parse_args(argv)  # parse command line arguments

    load_dotenv(_resolve_base_dir() / ".env")  # load .env file if it exists
    cfg = load_config()
    setup_logging(cfg.log_level)

    if args.analyze:
        return analyze_once(args.analyze, save=args.save)

    from dashboard.app import run_dashboard

    url = f"http://{cfg.host}:{cfg.port}"
    print_banner(url)
    if not args.no_open:
        # give the server a moment to bind before the browser asks for the page
        threading.Timer(1.0, webbrowser.open, args=(url,)).start()
    run_dashboard(cfg)
    return 0


if __name__ == "__main__":
    sys.exit(main())
