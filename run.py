"""Run the health daemon."""

import sys

from healthwatch.__main__ import main

if __name__ == "__main__":
    sys.exit(main())
