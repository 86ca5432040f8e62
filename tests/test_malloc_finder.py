import pytest

from find_malloc.config import Config
from find_malloc.formats.wasm import WasmModule
from find_malloc.io.binary_stream import DecodeError
from find_malloc.search.malloc_finder import MallocFinder, Outcome

from wasm_builder import (
    I32, I64, WASI, DROP, END, body, call, code_section, export_entry, func_import,
    function_section, i32_const, import_section, module, startup_module,
    type_section,
)


def find(wasm: bytes, config: Config = None):
    return MallocFinder(WasmModule.decode(wasm), config).find()


class TestExportSearch:
    def test_malloc_already_exported(self):
        detection = find(startup_module(exports=[export_entry("malloc", 0, 3)]))
        assert detection.outcome == Outcome.SATISFIED
        assert detection.func_id == 3
        assert detection.strategy == "exports"

    def test_dlmalloc_export(self):
        detection = find(startup_module(exports=[export_entry("dlmalloc", 0, 5)]))
        assert detection.outcome == Outcome.FOUND
        assert detection.func_id == 5
        assert detection.strategy == "exports"

    def test_malloc_after_dlmalloc_wins(self):
        detection = find(startup_module(exports=[
            export_entry("dlmalloc", 0, 5),
            export_entry("malloc", 0, 4),
        ]))
        assert detection.outcome == Outcome.SATISFIED

    def test_non_function_exports_ignored(self):
        # A global named malloc does not count; the call pattern finds function 4
        detection = find(startup_module(exports=[export_entry("malloc", 3, 0)]))
        assert detection.outcome == Outcome.FOUND
        assert detection.func_id == 4
        assert detection.strategy.startswith("call pattern")

    def test_dlmalloc_stops_the_chain(self):
        detection = find(startup_module(
            exports=[export_entry("dlmalloc", 0, 9)],
            function_names=[(4, "malloc")],
        ))
        assert detection.func_id == 9


class TestNameSearch:
    def test_debug_name(self):
        detection = find(startup_module(after_anchor=2, function_names=[(7, "malloc")]))
        assert detection.outcome == Outcome.FOUND
        assert detection.func_id == 7
        assert detection.strategy == "names"

    def test_first_matching_entry_wins(self):
        detection = find(startup_module(function_names=[
            (3, "_start"), (6, "dlmalloc"), (7, "malloc"),
        ]))
        assert detection.func_id == 6

    def test_names_precede_call_pattern(self):
        detection = find(startup_module(function_names=[(8, "malloc")]))
        assert detection.func_id == 8

    def test_unrelated_names_fall_through(self):
        detection = find(startup_module(function_names=[(3, "_start"), (4, "alloc")]))
        assert detection.strategy.startswith("call pattern")
        assert detection.func_id == 4


class TestCallPattern:
    def test_environ_sizes_get(self):
        detection = find(startup_module())
        assert detection.outcome == Outcome.FOUND
        assert detection.func_id == 4
        assert detection.strategy == "call pattern after wasi_snapshot_preview1:environ_sizes_get"

    def test_args_sizes_get(self):
        detection = find(startup_module(anchor="args_sizes_get"))
        assert detection.func_id == 4
        assert detection.strategy.endswith("args_sizes_get")

    def test_signature_mismatch_vetoes(self):
        detection = find(startup_module(allocator_type=((I32, I32), (I32,))))
        assert detection.outcome == Outcome.NOT_FOUND

    def test_i64_signature_vetoes(self):
        detection = find(startup_module(allocator_type=((I64,), (I64,))))
        assert detection.outcome == Outcome.NOT_FOUND

    def test_import_target_vetoes(self):
        detection = find(startup_module(after_anchor=2))
        assert detection.outcome == Outcome.NOT_FOUND

    def test_no_anchor_import(self):
        detection = find(startup_module(anchor="clock_time_get"))
        assert detection.outcome == Outcome.NOT_FOUND

    def test_anchor_without_following_call(self):
        wasm = module(
            type_section(((I32, I32), (I32,)), ((I32,), (I32,))),
            import_section(func_import(WASI, "environ_sizes_get", 0)),
            function_section(1),
            code_section(body(i32_const(0), i32_const(0), call(0), DROP, END)),
        )
        assert find(wasm).outcome == Outcome.NOT_FOUND

    def test_calls_before_anchor_are_skipped(self):
        wasm = module(
            type_section(((I32, I32), (I32,)), ((I32,), (I32,)), ((), ())),
            import_section(
                func_import(WASI, "fd_close", 0),
                func_import(WASI, "environ_sizes_get", 0),
            ),
            function_section(2, 1),
            code_section(
                body(call(0), DROP, call(2), call(1), DROP, call(3), DROP, END),
                body(i32_const(0), END),
            ),
        )
        detection = find(wasm)
        assert detection.func_id == 3

    def test_anchor_in_later_body(self):
        wasm = module(
            type_section(((I32, I32), (I32,)), ((I32,), (I32,)), ((), ())),
            import_section(func_import(WASI, "environ_sizes_get", 0)),
            function_section(2, 2, 1),
            code_section(
                body(call(2), END),
                body(call(0), DROP, call(3), DROP, END),
                body(i32_const(0), END),
            ),
        )
        assert find(wasm).func_id == 3

    def test_flag_does_not_carry_across_bodies(self):
        # Body 0 ends right after the anchor call; body 1 starts with a call.
        wasm = module(
            type_section(((I32, I32), (I32,)), ((I32,), (I32,)), ((), ())),
            import_section(func_import(WASI, "environ_sizes_get", 0)),
            function_section(2, 1),
            code_section(
                body(call(0), DROP, END),
                body(call(2), DROP, END),
            ),
        )
        assert find(wasm).outcome == Outcome.NOT_FOUND

    def test_first_mismatch_aborts_search(self):
        # Body 0 follows the anchor with a two-argument function; body 1
        # would have matched but is never considered.
        wasm = module(
            type_section(((I32, I32), (I32,)), ((I32,), (I32,)), ((), ())),
            import_section(func_import(WASI, "environ_sizes_get", 0)),
            function_section(2, 0, 1),
            code_section(
                body(call(0), DROP, call(2), DROP, END),
                body(call(0), DROP, call(3), DROP, END),
                body(i32_const(0), END),
            ),
        )
        assert find(wasm).outcome == Outcome.NOT_FOUND

    def test_environ_veto_falls_back_to_args(self):
        wasm = module(
            type_section(((I32, I32), (I32,)), ((I32,), (I32,)), ((), ())),
            import_section(
                func_import(WASI, "environ_sizes_get", 0),
                func_import(WASI, "args_sizes_get", 0),
            ),
            function_section(2, 1),
            code_section(
                body(call(0), DROP, call(1), DROP, call(3), DROP, END),
                body(i32_const(0), END),
            ),
        )
        # environ_sizes_get is followed by an import (vetoed); args_sizes_get
        # is followed by function 3.
        detection = find(wasm)
        assert detection.func_id == 3
        assert detection.strategy.endswith("args_sizes_get")

    def test_out_of_range_candidate(self):
        detection = find(startup_module(after_anchor=42))
        assert detection.outcome == Outcome.NOT_FOUND


class TestFinder:
    def test_nothing_to_find(self):
        wasm = module(type_section(((), ())), function_section(0), code_section(body(END)))
        detection = find(wasm)
        assert detection.outcome == Outcome.NOT_FOUND
        assert detection.func_id is None

    def test_export_scan_leaves_code_undecoded(self):
        decoded = WasmModule.decode(startup_module(exports=[export_entry("malloc", 0, 4)]))
        MallocFinder(decoded).find()
        assert all(not body.is_decoded for body in decoded.code)

    def test_custom_names(self):
        config = Config(export_name="my_alloc", alias_export_names=["je_malloc"])
        detection = find(startup_module(exports=[export_entry("je_malloc", 0, 4)]), config)
        assert detection.outcome == Outcome.FOUND
        assert detection.func_id == 4

    def test_custom_anchor(self):
        config = Config(anchors=[(WASI, "proc_exit")])
        wasm = startup_module()
        # proc_exit is never called in the startup body
        assert find(wasm, config).outcome == Outcome.NOT_FOUND

    def test_malformed_code_raises(self):
        wasm = module(
            type_section(((I32,), (I32,))),
            import_section(func_import(WASI, "environ_sizes_get", 0)),
            function_section(0),
            code_section(body(call(0), b"\xff", END)),
        )
        with pytest.raises(DecodeError):
            find(wasm)
