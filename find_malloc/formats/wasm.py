"""
WebAssembly module model.

A module is an ordered list of sections. Section payloads are kept as raw
bytes and decoded on first access; the decoded value is cached on the
section. Encoding re-emits the original payload of every section whose
value was never replaced, so sections this tool only reads come out
byte-for-byte identical.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, Iterator, List, Optional, TypeVar

from ..io.binary_stream import BinaryStream, BinaryWriter, DecodeError, EncodeError
from .opcodes import read_instructions, read_value_type
from .wasm_structures import (
    WASM_MAGIC, WASM_VERSION, NAME_SECTION, FUNC_TYPE_FORM, SECTION_ORDER,
    WasmSectionId, ExternalKind, NameSubsectionId,
    FuncType, Limits, FuncImport, TableImport, MemoryImport, GlobalImport, TagImport,
    Import, Export, FunctionBody, NameAssoc, NameSubsection, ValueType,
)

T = TypeVar('T')


class Lazy(Generic[T]):
    """
    Cache cell for a section payload.

    Holds the raw payload until `get()` decodes it. The decoded value is
    cached; `set()` replaces it and drops the raw bytes so the encoder
    serializes the new value instead.
    """

    _UNSET = object()

    def __init__(
        self,
        raw: Optional[bytes] = None,
        offset: int = 0,
        decoder: Optional[Callable[[BinaryStream], T]] = None,
        value: Any = _UNSET,
    ):
        self.raw = raw
        self.offset = offset
        self._decoder = decoder
        self._value = value

    @classmethod
    def of(cls, value: T) -> 'Lazy[T]':
        """Create a cell holding an already-built value."""
        return cls(value=value)

    @property
    def is_decoded(self) -> bool:
        return self._value is not Lazy._UNSET

    @property
    def is_modified(self) -> bool:
        return self.raw is None

    def get(self) -> T:
        """Return the decoded value, decoding the raw payload once."""
        if self._value is Lazy._UNSET:
            if self._decoder is None:
                raise DecodeError(self.offset, "Section has no decoder")
            stream = BinaryStream(self.raw, self.offset)
            self._value = self._decoder(stream)
        return self._value

    def set(self, value: T) -> None:
        """Replace the value; the encoder will serialize it."""
        self._value = value
        self.raw = None


@dataclass
class WasmSection:
    """
    A module section.

    Attributes:
        id: Section ID
        contents: Lazily decoded payload (for custom sections, the bytes
            after the name)
        name: Custom section name; empty for standard sections
        offset: File offset of the section ID byte; 0 for new sections
        framing: Original encoding of the size field (and custom name),
            re-emitted while the contents are unmodified
    """
    id: WasmSectionId
    contents: Lazy
    name: str = ""
    offset: int = 0
    framing: bytes = b""

    @property
    def is_custom(self) -> bool:
        return self.id == WasmSectionId.CUSTOM

    @property
    def order(self) -> int:
        """Canonical position of a standard section."""
        return SECTION_ORDER[self.id]


@dataclass
class WasmModule:
    """Decoded WebAssembly module."""
    sections: List[WasmSection] = field(default_factory=list)

    # ========== Section Lookup ==========

    def find_section(self, section_id: WasmSectionId) -> Optional[WasmSection]:
        """Return the standard section with the given ID, if present."""
        for section in self.sections:
            if section.id == section_id:
                return section
        return None

    def custom_sections(self, name: Optional[str] = None) -> Iterator[WasmSection]:
        """Iterate custom sections, optionally only those with a given name."""
        for section in self.sections:
            if section.is_custom and (name is None or section.name == name):
                yield section

    def section_contents(self, section_id: WasmSectionId, default=None):
        """Decoded contents of a standard section, or `default` if absent."""
        section = self.find_section(section_id)
        if section is None:
            return default
        return section.contents.get()

    # ========== Typed Accessors ==========

    @property
    def types(self) -> List[FuncType]:
        return self.section_contents(WasmSectionId.TYPE, [])

    @property
    def imports(self) -> List[Import]:
        return self.section_contents(WasmSectionId.IMPORT, [])

    @property
    def functions(self) -> List[int]:
        """Type index of each local function."""
        return self.section_contents(WasmSectionId.FUNCTION, [])

    @property
    def exports(self) -> List[Export]:
        return self.section_contents(WasmSectionId.EXPORT, [])

    @property
    def code(self) -> List['LazyBody']:
        return self.section_contents(WasmSectionId.CODE, [])

    def insert_section(self, section: WasmSection) -> int:
        """
        Insert a standard section at its canonical position.

        The section goes before the first standard section ordered after it;
        if there is none, right after the last standard section ordered
        before it. Custom sections keep their neighbours.

        Returns:
            Index of the inserted section
        """
        order = section.order
        position = None
        last_before = -1
        for i, existing in enumerate(self.sections):
            if existing.is_custom:
                continue
            if existing.order > order:
                position = i
                break
            last_before = i
        if position is None:
            position = last_before + 1
        self.sections.insert(position, section)
        return position

    # ========== Decoding and Encoding ==========

    @classmethod
    def decode(cls, data: bytes) -> 'WasmModule':
        """
        Decode a module.

        Only the section framing and custom section names are read here;
        payloads are decoded on first access.

        Raises:
            DecodeError: If the header or section framing is malformed
        """
        stream = BinaryStream(data)

        if stream.remaining < 4 or stream.read_uint32() != WASM_MAGIC:
            raise DecodeError(0, "Invalid WebAssembly magic")
        if stream.remaining < 4:
            raise DecodeError(4, "Missing WebAssembly version")
        version = stream.read_uint32()
        if version != WASM_VERSION:
            raise DecodeError(4, f"Unsupported WebAssembly version: {version}")

        module = cls()
        while not stream.at_end():
            module.sections.append(_read_section(stream))
        return module

    def encode(self) -> bytes:
        """
        Encode the module.

        Raises:
            EncodeError: If a replaced section value has no encoder
        """
        writer = BinaryWriter()
        writer.write_uint32(WASM_MAGIC)
        writer.write_uint32(WASM_VERSION)
        for section in self.sections:
            _write_section(writer, section)
        return writer.getvalue()


def _read_section(stream: BinaryStream) -> WasmSection:
    offset = stream.offset
    section_id = stream.read_byte()
    if section_id not in SECTION_ORDER and section_id != WasmSectionId.CUSTOM:
        raise DecodeError(offset, f"Unknown section ID {section_id}")
    size_start = stream.position
    size = stream.read_u32()
    if size > stream.remaining:
        raise DecodeError(
            stream.base_offset + size_start,
            f"Section size {size} exceeds remaining {stream.remaining} bytes",
        )
    payload_offset = stream.offset
    size_field = stream.slice(size_start, stream.position)
    payload = stream.read_bytes(size)
    section_id = WasmSectionId(section_id)

    if section_id == WasmSectionId.CUSTOM:
        header = BinaryStream(payload, payload_offset)
        name = header.read_name()
        return WasmSection(
            id=section_id,
            name=name,
            offset=offset,
            framing=size_field + payload[:header.position],
            contents=Lazy(
                payload[header.position:],
                payload_offset + header.position,
                CUSTOM_DECODERS.get(name),
            ),
        )

    return WasmSection(
        id=section_id,
        offset=offset,
        framing=size_field,
        contents=Lazy(payload, payload_offset, SECTION_DECODERS.get(section_id)),
    )


def _write_section(writer: BinaryWriter, section: WasmSection) -> None:
    contents = section.contents
    writer.write_byte(section.id)

    if not contents.is_modified and section.framing:
        writer.write_bytes(section.framing)
        writer.write_bytes(contents.raw)
        return

    payload = BinaryWriter()
    if section.is_custom:
        if contents.is_modified:
            raise EncodeError(f"Cannot re-encode custom section '{section.name}'")
        payload.write_name(section.name)
        payload.write_bytes(contents.raw)
    elif contents.is_modified:
        encoder = SECTION_ENCODERS.get(section.id)
        if encoder is None:
            raise EncodeError(f"No encoder for {section.id.name} section")
        encoder(payload, contents.get())
    else:
        payload.write_bytes(contents.raw)

    data = payload.getvalue()
    writer.write_uleb128(len(data))
    writer.write_bytes(data)


# ========== Section Readers ==========

def read_limits(stream: BinaryStream) -> Limits:
    flags = stream.read_u32()
    minimum = stream.read_uleb128()
    maximum = stream.read_uleb128() if flags & 0x01 else None
    return Limits(flags, minimum, maximum)


def read_func_type(stream: BinaryStream) -> FuncType:
    start = stream.offset
    form = stream.read_byte()
    if form != FUNC_TYPE_FORM:
        raise stream.error(f"Unsupported type form 0x{form:02X}", start)
    params = stream.read_vector(read_value_type)
    results = stream.read_vector(read_value_type)
    return FuncType(params, results)


def read_import(stream: BinaryStream) -> Import:
    module = stream.read_name()
    name = stream.read_name()
    start = stream.offset
    kind = stream.read_byte()
    if kind == ExternalKind.FUNCTION:
        desc = FuncImport(stream.read_u32())
    elif kind == ExternalKind.TABLE:
        ref_type = read_value_type(stream)
        desc = TableImport(ref_type, read_limits(stream))
    elif kind == ExternalKind.MEMORY:
        desc = MemoryImport(read_limits(stream))
    elif kind == ExternalKind.GLOBAL:
        value_type = read_value_type(stream)
        desc = GlobalImport(value_type, stream.read_byte() == 1)
    elif kind == ExternalKind.TAG:
        attribute = stream.read_byte()
        desc = TagImport(attribute, stream.read_u32())
    else:
        raise stream.error(f"Invalid import kind 0x{kind:02X}", start)
    return Import(module, name, desc)


def read_export(stream: BinaryStream) -> Export:
    name = stream.read_name()
    start = stream.offset
    kind = stream.read_byte()
    if kind not in ExternalKind.__members__.values():
        raise stream.error(f"Invalid export kind 0x{kind:02X}", start)
    return Export(name, ExternalKind(kind), stream.read_u32())


def read_body(stream: BinaryStream) -> FunctionBody:
    """Read a function body (locals and flat instruction list)."""
    locals_ = stream.read_vector(lambda s: (s.read_u32(), read_value_type(s)))
    return FunctionBody(locals_, read_instructions(stream))


class LazyBody(Lazy[FunctionBody]):
    """A code section entry, decoded on first access."""

    def __init__(self, raw: bytes, offset: int):
        super().__init__(raw, offset, read_body)


def _read_code_entry(stream: BinaryStream) -> LazyBody:
    size = stream.read_u32()
    offset = stream.offset
    return LazyBody(stream.read_bytes(size), offset)


def _section_reader(element_reader: Callable[[BinaryStream], Any], what: str):
    def read(stream: BinaryStream) -> list:
        items = stream.read_vector(element_reader)
        stream.expect_end(what)
        return items
    return read


def read_name_subsection(stream: BinaryStream) -> NameSubsection:
    subsection_id = stream.read_byte()
    size = stream.read_u32()
    offset = stream.offset
    payload = stream.read_bytes(size)
    if subsection_id != NameSubsectionId.FUNCTION:
        return NameSubsection(subsection_id, None, payload)
    body = BinaryStream(payload, offset)
    names = body.read_vector(lambda s: NameAssoc(s.read_u32(), s.read_name()))
    body.expect_end("function name subsection")
    return NameSubsection(subsection_id, names, payload)


def read_name_section(stream: BinaryStream) -> List[NameSubsection]:
    subsections = []
    while not stream.at_end():
        subsections.append(read_name_subsection(stream))
    return subsections


SECTION_DECODERS: Dict[WasmSectionId, Callable[[BinaryStream], Any]] = {
    WasmSectionId.TYPE: _section_reader(read_func_type, "type section"),
    WasmSectionId.IMPORT: _section_reader(read_import, "import section"),
    WasmSectionId.FUNCTION: _section_reader(BinaryStream.read_u32, "function section"),
    WasmSectionId.EXPORT: _section_reader(read_export, "export section"),
    WasmSectionId.CODE: _section_reader(_read_code_entry, "code section"),
}

CUSTOM_DECODERS: Dict[str, Callable[[BinaryStream], Any]] = {
    NAME_SECTION: read_name_section,
}


# ========== Section Writers ==========

def write_value_type(writer: BinaryWriter, value_type: ValueType) -> None:
    if isinstance(value_type, tuple):
        prefix, heap_type = value_type
        writer.write_byte(prefix)
        writer.write_sleb128(heap_type)
    else:
        writer.write_byte(value_type)


def write_limits(writer: BinaryWriter, limits: Limits) -> None:
    writer.write_uleb128(limits.flags)
    writer.write_uleb128(limits.minimum)
    if limits.flags & 0x01:
        writer.write_uleb128(limits.maximum)


def write_func_type(writer: BinaryWriter, func_type: FuncType) -> None:
    writer.write_byte(FUNC_TYPE_FORM)
    writer.write_vector(func_type.params, write_value_type)
    writer.write_vector(func_type.results, write_value_type)


def write_import(writer: BinaryWriter, entry: Import) -> None:
    writer.write_name(entry.module)
    writer.write_name(entry.name)
    desc = entry.desc
    if isinstance(desc, FuncImport):
        writer.write_byte(ExternalKind.FUNCTION)
        writer.write_uleb128(desc.type_index)
    elif isinstance(desc, TableImport):
        writer.write_byte(ExternalKind.TABLE)
        write_value_type(writer, desc.ref_type)
        write_limits(writer, desc.limits)
    elif isinstance(desc, MemoryImport):
        writer.write_byte(ExternalKind.MEMORY)
        write_limits(writer, desc.limits)
    elif isinstance(desc, GlobalImport):
        writer.write_byte(ExternalKind.GLOBAL)
        write_value_type(writer, desc.value_type)
        writer.write_byte(1 if desc.mutable else 0)
    elif isinstance(desc, TagImport):
        writer.write_byte(ExternalKind.TAG)
        writer.write_byte(desc.attribute)
        writer.write_uleb128(desc.type_index)
    else:
        raise EncodeError(f"Unknown import descriptor {desc!r}")


def write_export(writer: BinaryWriter, entry: Export) -> None:
    writer.write_name(entry.name)
    writer.write_byte(entry.kind)
    writer.write_uleb128(entry.index)


def _section_writer(element_writer: Callable[[BinaryWriter, Any], None]):
    def write(writer: BinaryWriter, items: list) -> None:
        writer.write_vector(items, element_writer)
    return write


SECTION_ENCODERS: Dict[WasmSectionId, Callable[[BinaryWriter, Any], None]] = {
    WasmSectionId.TYPE: _section_writer(write_func_type),
    WasmSectionId.IMPORT: _section_writer(write_import),
    WasmSectionId.FUNCTION: _section_writer(BinaryWriter.write_uleb128),
    WasmSectionId.EXPORT: _section_writer(write_export),
}


def new_section(section_id: WasmSectionId, value: Any) -> WasmSection:
    """Create a standard section holding an already-built value."""
    return WasmSection(id=section_id, contents=Lazy.of(value))
