"""
Entry point for running index-scan as a module.

Usage: python -m index_scan
"""

from .cli import main

if __name__ == "__main__":
    main()
