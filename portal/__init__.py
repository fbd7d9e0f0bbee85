"""
Portal client core: session and credential lifecycle.
"""

__version__ = "1.0.1"
