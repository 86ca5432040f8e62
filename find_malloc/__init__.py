"""
find-malloc
A tool for exporting the allocator of compiled WebAssembly modules.

Locates `malloc` in modules whose toolchain stripped, renamed, or never
exported it, and adds a `malloc` export without touching anything else.
"""

__version__ = "0.1.0"
__author__ = "find-malloc contributors"

from .config import Config
from .formats.wasm import WasmModule
from .search.malloc_finder import MallocFinder, Detection, Outcome
from .executor.malloc_exporter import MallocExporter, export_malloc
from .io.binary_stream import DecodeError, EncodeError

__all__ = [
    'Config', 'WasmModule', 'MallocFinder', 'Detection', 'Outcome',
    'MallocExporter', 'export_malloc', 'DecodeError', 'EncodeError', '__version__',
]
