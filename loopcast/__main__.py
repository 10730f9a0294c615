"""Allow running loopcast via `python -m loopcast`."""

import sys

from loopcast.app import main

if __name__ == "__main__":
    sys.exit(main())
