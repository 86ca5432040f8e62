"""
Allocator detection for WebAssembly modules.

This module implements the heuristics used to locate the `malloc`
function in a compiled module that may not export it under that name.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Tuple

from ..config import Config
from ..formats.opcodes import call_target, is_call
from ..formats.wasm import WasmModule
from ..formats.wasm_structures import (
    ExternalKind, FuncId, FuncImport, FuncType, NAME_SECTION, NameSubsectionId, ValType,
)
from ..util import get_logger

logger = get_logger(__file__)


class Outcome(Enum):
    """Result of an allocator search."""
    SATISFIED = "satisfied"  # already exported under the canonical name
    FOUND = "found"          # candidate to export
    NOT_FOUND = "not_found"


@dataclass
class Detection:
    """Outcome of the search, with the candidate and the strategy that concluded."""
    outcome: Outcome
    func_id: Optional[FuncId] = None
    strategy: str = ""

    @classmethod
    def found(cls, func_id: int, strategy: str = "") -> 'Detection':
        return cls(Outcome.FOUND, FuncId(func_id), strategy)


ALLOCATOR_SIGNATURE = FuncType([ValType.I32], [ValType.I32])


class MallocFinder:
    """
    Locates the allocator of a WebAssembly module.

    The search strategies run in order and the first conclusive one wins:
    1. Export scan: `malloc` already exported, or exported as `dlmalloc`
    2. Name scan: `malloc`/`dlmalloc` in the debug name section
    3. Call pattern: the first call after a call to a WASI size query
       (environ_sizes_get, then args_sizes_get)

    The call pattern relies on libc startup code calling the size query
    and then malloc to allocate the buffers it sized.
    """

    def __init__(self, module: WasmModule, config: Optional[Config] = None):
        """
        Initialize the finder.

        Args:
            module: Decoded module; sections are decoded as strategies need them
            config: Names and anchors to search for
        """
        self.module = module
        self.config = config or Config()

    @property
    def strategies(self) -> List[Tuple[str, Callable[[], Optional[Detection]]]]:
        strategies = [
            ("exports", self.export_search),
            ("names", self.name_search),
        ]
        for module_name, field_name in self.config.anchors:
            strategies.append((
                f"call pattern after {module_name}:{field_name}",
                lambda m=module_name, f=field_name: self.call_pattern_search(m, f),
            ))
        return strategies

    def find(self) -> Detection:
        """
        Run the strategies in order.

        Returns:
            The first conclusive Detection, or NOT_FOUND

        Raises:
            DecodeError: If a section a strategy reads is malformed
        """
        for name, strategy in self.strategies:
            logger.debug("Trying strategy: %s", name)
            detection = strategy()
            if detection is not None:
                if not detection.strategy:
                    detection.strategy = name
                return detection
        return Detection(Outcome.NOT_FOUND)

    # ========== Export Scan ==========

    def export_search(self) -> Optional[Detection]:
        """Check existing function exports for the allocator or its alias."""
        alias_index = None
        for export in self.module.exports:
            if export.kind != ExternalKind.FUNCTION:
                continue
            if export.name == self.config.export_name:
                logger.info("%s is already exported (function %d)",
                            export.name, export.index)
                return Detection(Outcome.SATISFIED, FuncId(export.index), "exports")
            if alias_index is None and export.name in self.config.alias_export_names:
                alias_index = export.index

        if alias_index is not None:
            return Detection.found(alias_index, "exports")
        return None

    # ========== Name Section Scan ==========

    def name_search(self) -> Optional[Detection]:
        """Look the allocator up by its debug name."""
        for section in self.module.custom_sections(NAME_SECTION):
            for subsection in section.contents.get():
                if subsection.id != NameSubsectionId.FUNCTION:
                    continue
                for assoc in subsection.names:
                    if assoc.name in self.config.debug_names:
                        logger.debug("Function %d is named %s", assoc.index, assoc.name)
                        return Detection.found(assoc.index, "names")
        return None

    # ========== Call Pattern ==========

    def call_pattern_search(self, module_name: str, field_name: str) -> Optional[Detection]:
        """
        Find the function called right after the given host import.

        Bodies are scanned in order as flat instruction lists; control flow
        is not followed. The first call following a call to the anchor is
        the only candidate considered: if it targets an import or has a
        signature other than (i32) -> i32, the search gives up rather than
        trying other bodies.

        Args:
            module_name: Import module of the anchor
            field_name: Import field of the anchor

        Returns:
            A FOUND Detection, or None
        """
        import_func_size = 0
        anchor = None
        for entry in self.module.imports:
            if not isinstance(entry.desc, FuncImport):
                continue
            if entry.module == module_name and entry.name == field_name:
                anchor = import_func_size
            import_func_size += 1

        if anchor is None:
            logger.debug("No %s:%s import", module_name, field_name)
            return None

        bodies = self.module.code
        if import_func_size == 0 or not bodies:
            return None

        logger.debug("%s:%s is function %d of %d imported",
                     module_name, field_name, anchor, import_func_size)

        for body in bodies:
            after_anchor = False
            for instruction in body.get().instructions:
                if not is_call(instruction):
                    continue
                target = call_target(instruction)
                if not after_anchor:
                    after_anchor = target == anchor
                    continue

                if target < import_func_size:
                    logger.debug("Call after anchor targets import %d, giving up", target)
                    return None
                func_type = self.local_function_type(target - import_func_size)
                if func_type != ALLOCATOR_SIGNATURE:
                    logger.debug("Function %d has signature %s, giving up", target, func_type)
                    return None
                return Detection.found(target)
        return None

    def local_function_type(self, local_index: int) -> Optional[FuncType]:
        """Resolve the signature of a local function, or None if out of range."""
        functions = self.module.functions
        if local_index >= len(functions):
            return None
        type_index = functions[local_index]
        types = self.module.types
        if type_index >= len(types):
            return None
        return types[type_index]
