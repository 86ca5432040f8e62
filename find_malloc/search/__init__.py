"""
Search algorithms for locating the allocator.
"""

from .malloc_finder import MallocFinder, Detection, Outcome

__all__ = ['MallocFinder', 'Detection', 'Outcome']
