"""
Entry point for running the gotichat CLI directly.
"""

import sys

from gotichat.cli.main import main

if __name__ == "__main__":
    sys.exit(main())
