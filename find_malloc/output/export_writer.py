"""
Export section mutation.
"""

from ..formats.wasm import WasmModule, new_section
from ..formats.wasm_structures import Export, ExternalKind, FuncId, WasmSectionId
from ..util import get_logger

logger = get_logger(__file__)


def add_function_export(module: WasmModule, name: str, func_id: FuncId) -> Export:
    """
    Export a function under a new name.

    The entry is appended to the export section, which is created at its
    canonical position if the module has none. Only the export section is
    re-encoded; every other section keeps its original bytes.

    Args:
        module: Module to mutate in place
        name: Export name
        func_id: Index in the combined function space

    Returns:
        The new export entry
    """
    entry = Export(name, ExternalKind.FUNCTION, func_id)

    section = module.find_section(WasmSectionId.EXPORT)
    if section is None:
        section = new_section(WasmSectionId.EXPORT, [])
        position = module.insert_section(section)
        logger.debug("Created export section at position %d", position)

    exports = list(section.contents.get())
    exports.append(entry)
    section.contents.set(exports)

    logger.info("Exported function %d as %s", func_id, name)
    return entry
