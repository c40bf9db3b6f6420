"""
envseek - search compiler, interpreter and environment search paths for files.
"""

__version__ = "0.3.0"
