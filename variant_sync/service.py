"""
Headless runner for Variant Watcher.

Runs the sync engine in the foreground until SIGINT/SIGTERM:

    variant-watcher --input images --output output
    python -m variant_sync --config ./variant_watcher.json

Command-line folders and timings override the config file for this run
only; the file itself is left untouched.
"""

import argparse
import logging
import signal
import sys
from pathlib import Path

from variant_sync import __app_name__, __version__
from variant_sync.app import App
from variant_sync.config import Config
from variant_sync.errors import StartupError

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="variant-watcher",
        description="Watch a folder of images and keep resized variants in sync.",
    )
    parser.add_argument("--config", type=Path, help="path to the JSON config file")
    parser.add_argument("--input", dest="input_folder", help="folder to watch")
    parser.add_argument("--output", dest="output_folder", help="folder for variants")
    parser.add_argument(
        "--stable-seconds",
        type=float,
        help="seconds a new file must stay unchanged before it is processed",
    )
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--log-file", type=Path, help="override the rotating log file path")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def _apply_overrides(cfg: Config, args: argparse.Namespace) -> None:
    if args.input_folder:
        cfg.input_folder = args.input_folder
    if args.output_folder:
        cfg.output_folder = args.output_folder
    if args.stable_seconds is not None:
        cfg.stable_time = args.stable_seconds
    if args.log_level:
        cfg.log_level = args.log_level


def _run_foreground(app: App) -> None:
    """Run *app* until SIGINT/SIGTERM; the in-flight event always finishes."""

    def _handler(sig, frame):
        logger.info("Received signal %d.", sig)
        app.request_stop()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)

    print(f"{__app_name__} running (press Ctrl-C to stop)…")
    app.run()
    print(f"{__app_name__} stopped.")


def main(argv: list[str] | None = None) -> int:
    """Entry point for the console script; returns the process exit code."""
    args = _build_parser().parse_args(argv)

    cfg = Config(args.config)
    _apply_overrides(cfg, args)

    try:
        app = App(cfg)
    except ValueError as exc:
        print(f"ERROR: invalid variant configuration: {exc}", file=sys.stderr)
        return 1
    app.setup_logging(args.log_file)

    try:
        _run_foreground(app)
    except StartupError as exc:
        logger.critical("Critical: %s. Exiting.", exc)
        return 1
    except FileNotFoundError as exc:
        logger.critical("Cannot watch input folder: %s", exc)
        return 1
    except Exception:
        logger.exception("Unhandled critical error in main loop.")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
