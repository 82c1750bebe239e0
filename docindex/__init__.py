"""
docindex: document index store contract and parallel index scanning.
"""

__version__ = "1.0.0"
