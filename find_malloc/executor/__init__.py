"""
Pipeline driving the allocator search and export.
"""

from .malloc_exporter import MallocExporter, export_malloc

__all__ = ['MallocExporter', 'export_malloc']
