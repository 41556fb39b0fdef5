"""
Main entry point for NeuroLock package

This allows running the package with: python -m neurolock
"""

import sys

from .cli.main import main

if __name__ == "__main__":
    sys.exit(main())
