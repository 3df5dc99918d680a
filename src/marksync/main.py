#!/usr/bin/env python3
"""Marksync entry point.

Usage:
    marksync serve [--port 8787]     # Run the sync server
    marksync pull                    # Pull bookmarks changed since last push
    marksync push bookmarks.json     # Push local bookmarks
    marksync sync bookmarks.json     # Push, then pull the merged collection
    python -m marksync status        # Show device and server status
"""

from __future__ import annotations

import logging
import sys
from typing import List, Optional

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def main(argv: Optional[List[str]] = None) -> int:
    """Run the command line interface.

    Returns:
        Exit code
    """
    from .cli import main as cli_main

    try:
        return cli_main(argv)
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
