"""
Output module for writing changes back into modules.
"""

from .export_writer import add_function_export

__all__ = ['add_function_export']
