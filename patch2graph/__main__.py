"""Allow ``python -m patch2graph``."""

# Standard library imports
import sys

# Local imports
from .cli import main

if __name__ == "__main__":
    sys.exit(main())
