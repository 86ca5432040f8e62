import pytest

from find_malloc.formats.wasm import WasmModule, new_section
from find_malloc.formats.wasm_structures import (
    Export, ExternalKind, FuncImport, FuncType, MemoryImport, NameSubsectionId,
    ValType, WasmSectionId,
)
from find_malloc.io.binary_stream import DecodeError, EncodeError

from wasm_builder import (
    I32, WASI, END, body, code_section, custom_section, data_section, export_entry,
    export_section, func_import, function_section, global_section, import_section,
    memory_section, module, name_section, start_section, startup_module, type_section,
)


class TestDecode:
    def test_empty_module(self):
        wasm = module()
        decoded = WasmModule.decode(wasm)
        assert decoded.sections == []
        assert decoded.encode() == wasm

    def test_bad_magic(self):
        with pytest.raises(DecodeError) as excinfo:
            WasmModule.decode(b"\x7fELF\x01\x00\x00\x00")
        assert excinfo.value.offset == 0

    def test_bad_version(self):
        with pytest.raises(DecodeError) as excinfo:
            WasmModule.decode(b"\x00asm\x02\x00\x00\x00")
        assert excinfo.value.offset == 4

    def test_truncated_section(self):
        wasm = module(type_section(((I32,), (I32,))))
        with pytest.raises(DecodeError) as excinfo:
            WasmModule.decode(wasm[:-2])
        # Size field of the first section follows the 8-byte header and ID byte
        assert excinfo.value.offset == 9

    def test_unknown_section_id(self):
        with pytest.raises(DecodeError) as excinfo:
            WasmModule.decode(module(b"\x20\x00"))
        assert excinfo.value.offset == 8

    def test_section_order_and_names(self):
        wasm = startup_module(function_names=[(4, "malloc")],
                              extra_sections=[custom_section("producers", b"\x00")])
        decoded = WasmModule.decode(wasm)
        assert [s.id for s in decoded.sections] == [
            WasmSectionId.TYPE, WasmSectionId.IMPORT, WasmSectionId.FUNCTION,
            WasmSectionId.CODE, WasmSectionId.CUSTOM, WasmSectionId.CUSTOM,
        ]
        assert [s.name for s in decoded.custom_sections()] == ["name", "producers"]


class TestLazySections:
    def test_sections_decoded_on_demand(self):
        decoded = WasmModule.decode(startup_module())
        assert not any(s.contents.is_decoded for s in decoded.sections)

        assert decoded.types[3] == FuncType([ValType.I32], [ValType.I32])
        assert decoded.find_section(WasmSectionId.TYPE).contents.is_decoded
        assert not decoded.find_section(WasmSectionId.CODE).contents.is_decoded

    def test_decoded_value_is_cached(self):
        decoded = WasmModule.decode(startup_module())
        assert decoded.imports is decoded.imports

    def test_imports(self):
        imports = WasmModule.decode(startup_module()).imports
        assert [(i.module, i.name) for i in imports] == [
            (WASI, "fd_write"), (WASI, "environ_sizes_get"), (WASI, "proc_exit"),
            ("env", "memory"),
        ]
        assert imports[1].desc == FuncImport(0)
        assert isinstance(imports[3].desc, MemoryImport)

    def test_code_bodies(self):
        decoded = WasmModule.decode(startup_module())
        assert decoded.functions == [1, 3]
        bodies = decoded.code
        assert len(bodies) == 2
        calls = [i.immediates[0] for i in bodies[0].get().instructions if i.opcode == 0x10]
        assert calls == [1, 4]

    def test_name_section(self):
        decoded = WasmModule.decode(module(name_section([(2, "foo"), (7, "malloc")],
                                                        module_name="app")))
        (section,) = decoded.custom_sections("name")
        subsections = section.contents.get()
        assert [s.id for s in subsections] == [NameSubsectionId.MODULE, NameSubsectionId.FUNCTION]
        assert subsections[0].names is None
        assert [(a.index, a.name) for a in subsections[1].names] == [(2, "foo"), (7, "malloc")]

    def test_malformed_body_reports_file_offset(self):
        wasm = module(
            type_section(((), ())),
            function_section(0),
            code_section(body(b"\x27", END)),
        )
        decoded = WasmModule.decode(wasm)
        with pytest.raises(DecodeError) as excinfo:
            decoded.code[0].get()
        assert excinfo.value.offset == wasm.index(b"\x27\x0b")

    def test_trailing_bytes_in_section(self):
        wasm = module(b"\x03\x03\x01\x00\x00")
        with pytest.raises(DecodeError):
            WasmModule.decode(wasm).functions


class TestEncode:
    def test_accessed_sections_round_trip(self):
        wasm = startup_module(exports=[export_entry("_start", 0, 3)],
                              function_names=[(4, "malloc")])
        decoded = WasmModule.decode(wasm)
        decoded.types, decoded.imports, decoded.functions, decoded.exports
        for lazy_body in decoded.code:
            lazy_body.get()
        assert decoded.encode() == wasm

    def test_non_canonical_size_preserved(self):
        # Type section with a 5-byte padded size field
        payload = b"\x01\x60\x00\x00"
        wasm = module(b"\x01\x84\x80\x80\x80\x00" + payload)
        decoded = WasmModule.decode(wasm)
        assert decoded.types == [FuncType([], [])]
        assert decoded.encode() == wasm

    def test_replaced_section_is_reencoded(self):
        wasm = module(export_section(export_entry("memory", 2, 0)))
        decoded = WasmModule.decode(wasm)
        section = decoded.find_section(WasmSectionId.EXPORT)
        section.contents.set(decoded.exports + [Export("f", ExternalKind.FUNCTION, 3)])
        assert decoded.encode() == module(export_section(
            export_entry("memory", 2, 0), export_entry("f", 0, 3),
        ))

    def test_replaced_section_without_encoder(self):
        decoded = WasmModule.decode(startup_module())
        decoded.find_section(WasmSectionId.CODE).contents.set([])
        with pytest.raises(EncodeError):
            decoded.encode()


class TestInsertSection:
    def ids(self, decoded):
        return [s.name or s.id.name for s in decoded.sections]

    def test_before_following_section(self):
        decoded = WasmModule.decode(module(
            type_section(((), ())),
            function_section(0),
            memory_section(),
            global_section(),
            custom_section("between"),
            start_section(0),
            code_section(body(END)),
            data_section(0, b"hi"),
        ))
        position = decoded.insert_section(new_section(WasmSectionId.EXPORT, []))
        assert position == 5
        assert self.ids(decoded) == [
            "TYPE", "FUNCTION", "MEMORY", "GLOBAL", "between", "EXPORT", "START", "CODE", "DATA",
        ]

    def test_after_last_preceding_section(self):
        decoded = WasmModule.decode(module(
            type_section(((), ())),
            import_section(func_import("env", "f", 0)),
            custom_section("trailer"),
        ))
        decoded.insert_section(new_section(WasmSectionId.EXPORT, []))
        assert self.ids(decoded) == ["TYPE", "IMPORT", "EXPORT", "trailer"]

    def test_into_empty_module(self):
        decoded = WasmModule.decode(module(custom_section("only")))
        decoded.insert_section(new_section(WasmSectionId.EXPORT, []))
        assert self.ids(decoded) == ["EXPORT", "only"]
