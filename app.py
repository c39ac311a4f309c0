import sys

from kine.cli import main


if __name__ == "__main__":
    sys.exit(main())
