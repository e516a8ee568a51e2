"""CLI entrypoint for the click reel recorder."""

import sys

from click_reel.cli import main

if __name__ == "__main__":
    sys.exit(main())
