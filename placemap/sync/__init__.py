"""
Completion graph primitives.
"""

from .promise import Promise, derive

__all__ = [
    'Promise',
    'derive',
]
