"""Entry point for Variant Watcher.

Usage:
    python -m variant_sync [--config PATH] [--input DIR] [--output DIR]
"""

import sys


def main() -> None:
    """Run the headless service and exit with its status code."""
    from variant_sync.service import main as service_main

    sys.exit(service_main())


if __name__ == "__main__":
    main()
