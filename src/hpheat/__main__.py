"""Command-line interface, ``python -m hpheat``."""
import sys

from hpheat.main import main

if __name__ == "__main__":
    sys.exit(main())
