"""Package entry point for ``python -m video_digest``.

HOW: Delegates to the CLI's main() and exits with its status.
"""

import sys

from video_digest.cli import main

if __name__ == "__main__":
    sys.exit(main())
