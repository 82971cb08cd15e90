"""
Job scheduler package.

Duplicate-safe job admission and lifecycle scheduling.
"""

__version__ = "1.0.0"
