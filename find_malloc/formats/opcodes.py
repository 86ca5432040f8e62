"""
WebAssembly instruction decoding.

Code bodies are decoded into a flat list of instructions in encoding order.
Structured control instructions (block, loop, if, try) are kept as plain
markers alongside their matching `end`; no nesting is materialized.
"""

from typing import Callable, Dict, List, Tuple

from ..io.binary_stream import BinaryStream
from .wasm_structures import Instruction, REF_NULL_PREFIX, REF_PREFIX, ValType, ValueType


# ========== Notable Opcodes ==========

OP_CALL = 0x10
OP_END = 0x0B

PREFIX_MISC = 0xFC
PREFIX_SIMD = 0xFD
PREFIX_ATOMIC = 0xFE

BLOCK_TYPE_EMPTY = 0x40

VALUE_TYPE_BYTES = frozenset(int(t) for t in ValType)


# ========== Immediate Readers ==========

def read_value_type(stream: BinaryStream) -> ValueType:
    """Read a value type, including typed reference forms."""
    start = stream.offset
    b = stream.read_byte()
    if b in (REF_NULL_PREFIX, REF_PREFIX):
        return (b, stream.read_sleb128(33))
    if b not in VALUE_TYPE_BYTES:
        raise stream.error(f"Invalid value type 0x{b:02X}", start)
    return ValType(b)


def read_block_type(stream: BinaryStream):
    """Read a block type: empty, a single value type, or a type index."""
    b = stream.peek_byte()
    if b == BLOCK_TYPE_EMPTY:
        stream.read_byte()
        return None
    if b in VALUE_TYPE_BYTES or b in (REF_NULL_PREFIX, REF_PREFIX):
        return read_value_type(stream)
    index = stream.read_sleb128(33)
    if index < 0:
        raise stream.error(f"Invalid block type {index}")
    return index


def read_memarg(stream: BinaryStream) -> Tuple[int, ...]:
    """Read a memory argument; bit 6 of the alignment flags a memory index."""
    align = stream.read_u32()
    if align & 0x40:
        memory = stream.read_u32()
        return (align & ~0x40, stream.read_uleb128(), memory)
    return (align, stream.read_uleb128())


def _u32(stream: BinaryStream) -> Tuple[int]:
    return (stream.read_u32(),)


def _u32_pair(stream: BinaryStream) -> Tuple[int, int]:
    return (stream.read_u32(), stream.read_u32())


def _byte(stream: BinaryStream) -> Tuple[int]:
    return (stream.read_byte(),)


def _block(stream: BinaryStream) -> tuple:
    return (read_block_type(stream),)


def _memarg(stream: BinaryStream) -> tuple:
    return (read_memarg(stream),)


def _memarg_lane(stream: BinaryStream) -> tuple:
    return (read_memarg(stream), stream.read_byte())


def _br_table(stream: BinaryStream) -> tuple:
    targets = stream.read_vector(BinaryStream.read_u32)
    return (targets, stream.read_u32())


def _select_typed(stream: BinaryStream) -> tuple:
    return (stream.read_vector(read_value_type),)


def _heap_type(stream: BinaryStream) -> tuple:
    return (stream.read_sleb128(33),)


def _i32(stream: BinaryStream) -> tuple:
    return (stream.read_sleb128(32),)


def _i64(stream: BinaryStream) -> tuple:
    return (stream.read_sleb128(64),)


def _f32(stream: BinaryStream) -> tuple:
    return (stream.read_float(),)


def _f64(stream: BinaryStream) -> tuple:
    return (stream.read_double(),)


def _v128(stream: BinaryStream) -> tuple:
    return (stream.read_bytes(16),)


def _catch_clause(stream: BinaryStream) -> tuple:
    kind = stream.read_byte()
    if kind in (0x00, 0x01):  # catch, catch_ref
        return (kind, stream.read_u32(), stream.read_u32())
    if kind in (0x02, 0x03):  # catch_all, catch_all_ref
        return (kind, stream.read_u32())
    raise stream.error(f"Invalid catch clause kind 0x{kind:02X}")


def _try_table(stream: BinaryStream) -> tuple:
    block_type = read_block_type(stream)
    return (block_type, stream.read_vector(_catch_clause))


def _none(stream: BinaryStream) -> tuple:
    return ()


ImmediateReader = Callable[[BinaryStream], tuple]


# ========== Opcode Tables ==========

def _build_single_byte_table() -> Dict[int, ImmediateReader]:
    table: Dict[int, ImmediateReader] = {
        0x00: _none,          # unreachable
        0x01: _none,          # nop
        0x02: _block,         # block
        0x03: _block,         # loop
        0x04: _block,         # if
        0x05: _none,          # else
        0x06: _block,         # try
        0x07: _u32,           # catch
        0x08: _u32,           # throw
        0x09: _u32,           # rethrow
        0x0A: _none,          # throw_ref
        OP_END: _none,
        0x0C: _u32,           # br
        0x0D: _u32,           # br_if
        0x0E: _br_table,
        0x0F: _none,          # return
        OP_CALL: _u32,
        0x11: _u32_pair,      # call_indirect
        0x12: _u32,           # return_call
        0x13: _u32_pair,      # return_call_indirect
        0x14: _u32,           # call_ref
        0x15: _u32,           # return_call_ref
        0x18: _u32,           # delegate
        0x19: _none,          # catch_all
        0x1A: _none,          # drop
        0x1B: _none,          # select
        0x1C: _select_typed,  # select t*
        0x1F: _try_table,
        0x25: _u32,           # table.get
        0x26: _u32,           # table.set
        0x3F: _u32,           # memory.size
        0x40: _u32,           # memory.grow
        0x41: _i32,
        0x42: _i64,
        0x43: _f32,
        0x44: _f64,
        0xD0: _heap_type,     # ref.null
        0xD1: _none,          # ref.is_null
        0xD2: _u32,           # ref.func
        0xD3: _none,          # ref.eq
        0xD4: _none,          # ref.as_non_null
        0xD5: _u32,           # br_on_null
        0xD6: _u32,           # br_on_non_null
    }
    for op in range(0x20, 0x25):  # local.get .. global.set
        table[op] = _u32
    for op in range(0x28, 0x3F):  # loads and stores
        table[op] = _memarg
    for op in range(0x45, 0xC5):  # numeric
        table[op] = _none
    return table


def _build_misc_table() -> Dict[int, ImmediateReader]:
    table: Dict[int, ImmediateReader] = {op: _none for op in range(0x00, 0x08)}  # trunc_sat
    table.update({
        0x08: _u32_pair,  # memory.init
        0x09: _u32,       # data.drop
        0x0A: _u32_pair,  # memory.copy
        0x0B: _u32,       # memory.fill
        0x0C: _u32_pair,  # table.init
        0x0D: _u32,       # elem.drop
        0x0E: _u32_pair,  # table.copy
        0x0F: _u32,       # table.grow
        0x10: _u32,       # table.size
        0x11: _u32,       # table.fill
    })
    return table


def _simd_immediates(sub: int) -> ImmediateReader:
    if sub <= 0x0B or sub in (0x5C, 0x5D):
        return _memarg
    if sub in (0x0C, 0x0D):  # v128.const, i8x16.shuffle
        return _v128
    if 0x15 <= sub <= 0x22:  # extract_lane / replace_lane
        return _byte
    if 0x54 <= sub <= 0x5B:  # load_lane / store_lane
        return _memarg_lane
    return _none


def _atomic_immediates(sub: int) -> ImmediateReader:
    if sub == 0x03:  # atomic.fence
        return _byte
    return _memarg


SINGLE_BYTE_OPS = _build_single_byte_table()
MISC_OPS = _build_misc_table()


# ========== Decoder ==========

def read_instruction(stream: BinaryStream) -> Instruction:
    """Read one instruction."""
    offset = stream.offset
    opcode = stream.read_byte()

    if opcode == PREFIX_MISC:
        sub = stream.read_u32()
        reader = MISC_OPS.get(sub)
        if reader is None:
            raise stream.error(f"Unknown opcode 0xFC 0x{sub:02X}", offset)
        return Instruction(opcode, (sub,) + reader(stream), offset)

    if opcode == PREFIX_SIMD:
        sub = stream.read_u32()
        return Instruction(opcode, (sub,) + _simd_immediates(sub)(stream), offset)

    if opcode == PREFIX_ATOMIC:
        sub = stream.read_u32()
        if sub > 0x4E:
            raise stream.error(f"Unknown opcode 0xFE 0x{sub:02X}", offset)
        return Instruction(opcode, (sub,) + _atomic_immediates(sub)(stream), offset)

    reader = SINGLE_BYTE_OPS.get(opcode)
    if reader is None:
        raise stream.error(f"Unknown opcode 0x{opcode:02X}", offset)
    return Instruction(opcode, reader(stream), offset)


def read_instructions(stream: BinaryStream) -> List[Instruction]:
    """Read instructions until the stream is exhausted."""
    instructions = []
    while not stream.at_end():
        instructions.append(read_instruction(stream))
    return instructions


def call_target(instruction: Instruction) -> int:
    """Return the function index of a direct `call` instruction."""
    return instruction.immediates[0]


def is_call(instruction: Instruction) -> bool:
    return instruction.opcode == OP_CALL
