"""
WebAssembly format support.

Provides the module model (lazily decoded sections with byte-exact
passthrough), section readers and writers, and the flat instruction
decoder used to scan code bodies.
"""

from .wasm import WasmModule, WasmSection, Lazy, LazyBody, new_section
from .wasm_structures import *

__all__ = ['WasmModule', 'WasmSection', 'Lazy', 'LazyBody', 'new_section']
