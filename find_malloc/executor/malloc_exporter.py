"""
Allocator export pipeline.

Runs the allocator search on a decoded module and applies its outcome.
"""

from typing import Optional, Tuple

from ..config import Config
from ..formats.wasm import WasmModule
from ..output.export_writer import add_function_export
from ..search.malloc_finder import Detection, MallocFinder, Outcome
from ..util import get_logger

logger = get_logger(__file__)


class MallocExporter:
    """
    Makes a module's allocator reachable under its canonical export name.

    Attributes:
        module: The module being processed, mutated in place
        config: Names and anchors used by the search
        detection: Outcome of the last run, if any
    """

    def __init__(self, module: WasmModule, config: Optional[Config] = None):
        self.module = module
        self.config = config or Config()
        self.detection: Optional[Detection] = None

    def run(self) -> Detection:
        """
        Search for the allocator and export it if needed.

        A failed search is not an error: the module is left unchanged and
        a warning is logged.

        Raises:
            DecodeError: If a section the search reads is malformed
        """
        detection = MallocFinder(self.module, self.config).find()
        self.detection = detection

        if detection.outcome == Outcome.SATISFIED:
            logger.info("Module already exports %s", self.config.export_name)
        elif detection.outcome == Outcome.FOUND:
            logger.info("Found %s candidate: function %d (%s)",
                        self.config.export_name, detection.func_id, detection.strategy)
            add_function_export(self.module, self.config.export_name, detection.func_id)
        else:
            logger.warning("Could not find %s, leaving module unchanged",
                           self.config.export_name)
        return detection

    @property
    def modified(self) -> bool:
        return self.detection is not None and self.detection.outcome == Outcome.FOUND


def export_malloc(data: bytes, config: Optional[Config] = None) -> Tuple[bytes, Detection]:
    """
    Run the whole pipeline on an encoded module.

    Args:
        data: Encoded WebAssembly module
        config: Search configuration

    Returns:
        Tuple of (encoded output module, detection)

    Raises:
        DecodeError: If the module is malformed
    """
    module = WasmModule.decode(data)
    detection = MallocExporter(module, config).run()
    return module.encode(), detection
