"""
Tests for module handles: lifecycle, parsing, linking and emission.
"""

import pytest

from irbridge import ast_nodes as A
from irbridge import (
    DisposedModule, File, LinkFailure, MalformedNativeGraph, OutputKind,
    ParseFailure, VerifyFailure, emit, link_modules, module_bitcode,
    module_from_ast, module_from_bitcode, module_from_llvm_assembly,
    module_llvm_assembly, module_object, module_target_assembly, target_machine,
    verify_module, with_module_from_llvm_assembly, write_bitcode_to_file,
    write_llvm_assembly_to_file, write_object_to_file, write_target_assembly_to_file,
)

from builders import add_function, const, i32

BITCODE_MAGIC = b'BC\xc0\xde'

LIBRARY = """
@secret = private global i32 42
@exported = global ptr @secret

define i32 @answer() {
  %v = load i32, ptr @secret
  ret i32 %v
}
"""


class TestLifecycle:
    """Ownership and disposal."""

    def test_dispose_twice(self, make_module):
        """Disposing an already disposed handle does nothing"""
        module = module_from_ast(make_module(add_function()))
        module.dispose()
        module.dispose()
        assert module.is_disposed

    def test_use_after_dispose(self, make_module):
        """Every operation on a disposed handle fails"""
        module = module_from_ast(make_module(add_function()))
        module.dispose()
        with pytest.raises(DisposedModule):
            module_llvm_assembly(module)
        with pytest.raises(DisposedModule):
            module.target_triple

    def test_context_manager_disposes(self):
        """Leaving the with block disposes the handle"""
        with module_from_llvm_assembly("") as module:
            assert module.is_native
        assert module.is_disposed

    def test_scoped_variant(self):
        """with_* producers dispose on exit"""
        with with_module_from_llvm_assembly("") as module:
            assert not module.is_disposed
        assert module.is_disposed

    def test_repr(self, make_module):
        """The repr shows what the slot holds"""
        module = module_from_ast(make_module())
        assert "graph" in repr(module)
        module.dispose()
        assert "disposed" in repr(module)


class TestParsing:
    """Assembly and bitcode producers."""

    def test_parse_failure(self):
        """Bad assembly raises ParseFailure carrying the parser message"""
        with pytest.raises(ParseFailure, match="parsing error"):
            module_from_llvm_assembly("define i32 @f( {")

    def test_parsed_module_is_native(self):
        """Parsed handles hold a native reference"""
        with module_from_llvm_assembly(LIBRARY) as module:
            assert module.is_native
            with pytest.raises(MalformedNativeGraph):
                module.graph

    def test_bitcode_round_trip(self, make_module):
        """Bitcode parses back into an equivalent module"""
        with module_from_ast(make_module(add_function())) as module:
            data = module_bitcode(module)
            text = module_llvm_assembly(module)
        assert data.startswith(BITCODE_MAGIC)
        with module_from_bitcode(data) as parsed:
            assert "define i32 @add(i32 %a, i32 %b)" in module_llvm_assembly(parsed)
        assert "define i32 @add(i32 %a, i32 %b)" in text

    def test_struct_names_per_module(self):
        """Each parsed module keeps its own struct names across prints"""
        text = "%pair = type { i32, i32 }\n@g = global %pair zeroinitializer\n"
        with module_from_llvm_assembly(text) as first, \
                module_from_llvm_assembly(text) as second:
            outputs = [module_llvm_assembly(first), module_llvm_assembly(second),
                       module_llvm_assembly(first)]
        for output in outputs:
            assert "%pair = type { i32, i32 }" in output
            assert "%pair.0" not in output

    def test_bad_bitcode(self):
        """Garbage is not bitcode"""
        with pytest.raises(ParseFailure):
            module_from_bitcode(b"not bitcode at all")


class TestTargetProperties:
    """Triple and data layout on both kinds of handle."""

    def test_graph_properties(self, make_module):
        """Values from the declarative module are visible on the handle"""
        source = make_module(triple="x86_64-unknown-linux-gnu",
                             data_layout="e-m:e-i64:64-n8:16:32:64-S128")
        with module_from_ast(source) as module:
            assert module.target_triple == "x86_64-unknown-linux-gnu"
            assert module.data_layout == "e-m:e-i64:64-n8:16:32:64-S128"

    def test_unset_is_none(self, make_module):
        """An empty triple reads as None"""
        with module_from_ast(make_module()) as module:
            assert module.target_triple is None
            assert module.data_layout is None

    def test_native_setter(self):
        """Setting the triple on a native handle changes its output"""
        with module_from_llvm_assembly(LIBRARY) as module:
            module.target_triple = "aarch64-unknown-linux-gnu"
            assert module.target_triple == "aarch64-unknown-linux-gnu"
            assert 'target triple = "aarch64-unknown-linux-gnu"' in \
                module_llvm_assembly(module)


class TestLinking:
    """link_modules(dest, src)."""

    def test_link_brings_in_library(self, make_module):
        """The linked module has the library's entry points"""
        main = A.Function(
            "main", i32,
            basic_blocks=(A.BasicBlock("entry", (), A.Do(A.Ret(const(0)))),))
        dest = module_from_ast(make_module(main))
        src = module_from_llvm_assembly(LIBRARY)
        try:
            link_modules(dest, src)
            text = module_llvm_assembly(dest)
        finally:
            dest.dispose()
        assert "define i32 @main()" in text
        assert "define i32 @answer()" in text
        assert "@exported = global ptr" in text
        assert src.is_disposed

    def test_unreferenced_private_global_dropped(self, make_module):
        """Private globals nothing uses are not carried into dest"""
        dest = module_from_ast(make_module(add_function()))
        src = module_from_llvm_assembly(
            "@unused = private global i32 1\n"
            "define i32 @answer() {\n  ret i32 42\n}\n")
        with dest:
            link_modules(dest, src)
            text = module_llvm_assembly(dest)
        assert "@unused" not in text
        assert "define i32 @answer()" in text
        assert src.is_disposed

    def test_duplicate_definition(self, make_module):
        """Conflicting definitions raise LinkFailure and still dispose src"""
        dest = module_from_ast(make_module(add_function()))
        src = module_from_ast(make_module(add_function(), name="other"))
        try:
            with pytest.raises(LinkFailure, match="Couldn't link modules"):
                link_modules(dest, src)
        finally:
            dest.dispose()
        assert src.is_disposed

    def test_dest_becomes_native(self, make_module):
        """A graph-backed destination holds the linked native module"""
        dest = module_from_ast(make_module(add_function()))
        with dest:
            link_modules(dest, module_from_llvm_assembly(LIBRARY))
            assert dest.is_native


class TestVerify:
    """verify_module."""

    def test_valid_module(self, make_module):
        """A well formed module passes"""
        with module_from_ast(make_module(add_function())) as module:
            verify_module(module)

    def test_self_reference(self):
        """The verifier rejects a non-phi instruction using its own result"""
        text = "define i32 @f() {\n  %x = add i32 %x, 1\n  ret i32 %x\n}\n"
        with module_from_llvm_assembly(text) as module:
            with pytest.raises(VerifyFailure):
                verify_module(module)


class TestEmit:
    """Output kinds and file writers."""

    def test_emit_llvm_and_bitcode(self, make_module):
        """Textual IR is UTF-8 bytes and bitcode carries its magic"""
        with module_from_ast(make_module(add_function())) as module:
            text = emit(module, OutputKind.LLVM_ASSEMBLY)
            data = emit(module, OutputKind.BITCODE)
        assert b"define i32 @add" in text
        assert data.startswith(BITCODE_MAGIC)

    def test_emit_for_host(self, make_module):
        """Target outputs default to a host machine"""
        machine = target_machine()
        with module_from_ast(make_module(add_function(), triple=machine.triple)) as module:
            asm = emit(module, OutputKind.TARGET_ASSEMBLY)
            obj = emit(module, OutputKind.OBJECT)
        assert b"add" in asm
        assert isinstance(obj, bytes) and obj

    def test_machine_outputs(self, make_module):
        """An explicit machine is used for assembly and objects"""
        machine = target_machine()
        with module_from_ast(make_module(add_function(), triple=machine.triple)) as module:
            assert "add" in module_target_assembly(machine, module)
            assert module_object(machine, module)

    def test_output_kind_flags(self):
        """Binary and target requirements per kind"""
        assert OutputKind.BITCODE.is_binary and not OutputKind.BITCODE.needs_target
        assert OutputKind.OBJECT.is_binary and OutputKind.OBJECT.needs_target
        assert not OutputKind.TARGET_ASSEMBLY.is_binary
        assert OutputKind("llvm") is OutputKind.LLVM_ASSEMBLY

    def test_write_to_files(self, make_module, tmp_path):
        """The write_* functions put each output kind on disk"""
        machine = target_machine()
        paths = {name: tmp_path / name for name in ("m.ll", "m.bc", "m.s", "m.o")}
        with module_from_ast(make_module(add_function(), triple=machine.triple)) as module:
            write_llvm_assembly_to_file(File(str(paths["m.ll"])), module)
            write_bitcode_to_file(File(str(paths["m.bc"])), module)
            write_target_assembly_to_file(machine, File(str(paths["m.s"])), module)
            write_object_to_file(machine, File(str(paths["m.o"])), module)
        assert "define i32 @add" in paths["m.ll"].read_text()
        assert paths["m.bc"].read_bytes().startswith(BITCODE_MAGIC)
        assert paths["m.s"].read_text()
        assert paths["m.o"].stat().st_size > 0
