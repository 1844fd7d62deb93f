import sys

from .engine.runner import main

if __name__ == "__main__":
    sys.exit(main())
