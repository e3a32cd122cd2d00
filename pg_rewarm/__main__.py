"""
Entry point for running pg_rewarm as a module.

Usage:
    python -m pg_rewarm save -H localhost -d mydb -f mydb.img
"""

import sys

from .cli import main

if __name__ == "__main__":
    sys.exit(main())
