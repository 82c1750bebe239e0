"""
index-scan: command line front end for docindex scans.
"""

from docindex import __version__

__all__ = ["__version__"]
