"""Run acmevault with ``python -m acmevault``."""
import sys

from acmevault.main import main

if __name__ == '__main__':
    sys.exit(main())
