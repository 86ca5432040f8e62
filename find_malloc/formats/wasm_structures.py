"""
WebAssembly format structure definitions.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import List, NewType, Optional, Tuple, Union


# WebAssembly Magic and version
WASM_MAGIC = 0x6D736100  # "\0asm"
WASM_VERSION = 1

# Name of the custom section carrying debug names
NAME_SECTION = "name"

# Index into the combined function space: imported functions first,
# then locally defined ones.
FuncId = NewType('FuncId', int)


class WasmSectionId(IntEnum):
    """WebAssembly section IDs."""
    CUSTOM = 0
    TYPE = 1
    IMPORT = 2
    FUNCTION = 3
    TABLE = 4
    MEMORY = 5
    GLOBAL = 6
    EXPORT = 7
    START = 8
    ELEMENT = 9
    CODE = 10
    DATA = 11
    DATA_COUNT = 12
    TAG = 13


# Position of each standard section in a well-formed module. Section IDs
# are not monotonic: Tag sits between Memory and Global, DataCount
# between Element and Code.
SECTION_ORDER = {
    WasmSectionId.TYPE: 1,
    WasmSectionId.IMPORT: 2,
    WasmSectionId.FUNCTION: 3,
    WasmSectionId.TABLE: 4,
    WasmSectionId.MEMORY: 5,
    WasmSectionId.TAG: 6,
    WasmSectionId.GLOBAL: 7,
    WasmSectionId.EXPORT: 8,
    WasmSectionId.START: 9,
    WasmSectionId.ELEMENT: 10,
    WasmSectionId.DATA_COUNT: 11,
    WasmSectionId.CODE: 12,
    WasmSectionId.DATA: 13,
}


class ValType(IntEnum):
    """WebAssembly value types."""
    I32 = 0x7F
    I64 = 0x7E
    F32 = 0x7D
    F64 = 0x7C
    V128 = 0x7B
    FUNCREF = 0x70
    EXTERNREF = 0x6F


# Prefixes for typed references (ref null ht / ref ht)
REF_NULL_PREFIX = 0x63
REF_PREFIX = 0x64

# Form byte introducing a function type
FUNC_TYPE_FORM = 0x60


class ExternalKind(IntEnum):
    """Kinds of imported and exported entities."""
    FUNCTION = 0
    TABLE = 1
    MEMORY = 2
    GLOBAL = 3
    TAG = 4


class NameSubsectionId(IntEnum):
    """Subsection IDs inside the "name" custom section."""
    MODULE = 0
    FUNCTION = 1
    LOCAL = 2


# A value type is a ValType, or (prefix, heap type) for typed references.
ValueType = Union[ValType, Tuple[int, int]]


@dataclass
class FuncType:
    """Function signature."""
    params: List[ValueType] = field(default_factory=list)
    results: List[ValueType] = field(default_factory=list)


@dataclass
class Limits:
    """Table or memory limits."""
    flags: int = 0
    minimum: int = 0
    maximum: Optional[int] = None


@dataclass
class FuncImport:
    """Imported function descriptor."""
    type_index: int = 0


@dataclass
class TableImport:
    """Imported table descriptor."""
    ref_type: ValueType = ValType.FUNCREF
    limits: Limits = field(default_factory=Limits)


@dataclass
class MemoryImport:
    """Imported memory descriptor."""
    limits: Limits = field(default_factory=Limits)


@dataclass
class GlobalImport:
    """Imported global descriptor."""
    value_type: ValueType = ValType.I32
    mutable: bool = False


@dataclass
class TagImport:
    """Imported exception tag descriptor."""
    attribute: int = 0
    type_index: int = 0


ImportDesc = Union[FuncImport, TableImport, MemoryImport, GlobalImport, TagImport]


@dataclass
class Import:
    """Import section entry."""
    module: str = ""
    name: str = ""
    desc: ImportDesc = field(default_factory=FuncImport)


@dataclass
class Export:
    """Export section entry."""
    name: str = ""
    kind: ExternalKind = ExternalKind.FUNCTION
    index: int = 0


@dataclass
class Instruction:
    """
    A decoded instruction.

    Prefixed instructions (0xFC, 0xFD, 0xFE) keep the prefix byte in
    `opcode` and the sub-opcode as the first immediate.
    """
    opcode: int
    immediates: Tuple = ()
    offset: int = 0  # File offset of the opcode byte


@dataclass
class FunctionBody:
    """Code section entry for one local function."""
    locals: List[Tuple[int, ValueType]] = field(default_factory=list)
    instructions: List[Instruction] = field(default_factory=list)


@dataclass
class NameAssoc:
    """An (index, name) pair from a name map."""
    index: int = 0
    name: str = ""


@dataclass
class NameSubsection:
    """
    Subsection of the "name" custom section.

    Only function names are decoded; other subsections keep their payload.
    """
    id: int = 0
    names: Optional[List[NameAssoc]] = None
    raw: bytes = b""
