"""
Tests for encoding declarative modules into llvmlite graphs.
"""

import pytest

from irbridge import ast_nodes as A
from irbridge import (
    EncodingFailure, UnresolvedReference, module_from_ast, module_llvm_assembly,
    with_module_from_ast,
)
from irbridge.graph import AttributeGroup, Comdat, GraphModule
from irbridge.module import Module

from builders import add_function, const, global_ref, i1, i32, local, ptr


def load_g_function():
    return A.Function(
        "f", i32,
        basic_blocks=(
            A.BasicBlock("entry", (
                A.Named("v", A.Load(i32, global_ref("g"), alignment=4)),
            ), A.Do(A.Ret(local("v")))),
        ))


class TestEncodeText:
    """Graph text produced by the encoder."""

    def test_function(self, assemble):
        """A simple function survives the native parser"""
        text = assemble(add_function())
        assert "define i32 @add(i32 %a, i32 %b)" in text
        assert "%sum = add i32 %a, %b" in text

    def test_module_id_and_triple(self, assemble):
        """Textual output carries the identifier and the target triple"""
        text = assemble(add_function(), name="demo", triple="x86_64-unknown-linux-gnu")
        assert "; ModuleID = 'demo'" in text
        assert 'target triple = "x86_64-unknown-linux-gnu"' in text

    def test_output_is_stable(self, make_module):
        """Printing the same handle twice gives the same text"""
        with module_from_ast(make_module(add_function())) as module:
            assert module_llvm_assembly(module) == module_llvm_assembly(module)

    def test_global_attributes(self, assemble):
        """Linkage, constness, section and alignment are printed"""
        text = assemble(A.GlobalVariable(
            "table", i32, A.Int(32, 7), linkage=A.Linkage.INTERNAL,
            is_constant=True, section=".rodata.table", alignment=8,
            unnamed_addr=A.UnnamedAddr.GLOBAL))
        assert ('@table = internal unnamed_addr constant i32 7, '
                'section ".rodata.table", align 8') in text

    def test_thread_local_declaration(self, assemble):
        """A variable without initializer is an external declaration"""
        text = assemble(A.GlobalVariable(
            "tls", i32, thread_local_mode=A.ThreadLocalMode.INITIAL_EXEC))
        assert "@tls = external thread_local(initialexec) global i32" in text

    def test_alias(self, assemble):
        """Aliases point at their aliasee"""
        text = assemble(
            A.GlobalVariable("counter", i32, A.Int(32, 0)),
            A.GlobalAlias("counter_alias", i32, A.GlobalReference("counter")))
        assert "@counter_alias = alias i32, ptr @counter" in text

    def test_named_struct(self, assemble):
        """Named types are declared once and used by name"""
        pair = A.NamedTypeReference("pair")
        text = assemble(
            A.TypeDefinition("pair", A.StructureType(False, (i32, i32))),
            A.GlobalVariable("origin", pair,
                             A.Struct("pair", False, (A.Int(32, 1), A.Int(32, 2)))))
        assert "%pair = type { i32, i32 }" in text
        assert "@origin = global %pair { i32 1, i32 2 }" in text

    def test_comdat_and_attribute_group(self, assemble):
        """COMDATs and attribute groups are module entities"""
        text = assemble(
            A.GlobalVariable("c", i32, A.Int(32, 0), linkage=A.Linkage.LINK_ONCE_ODR,
                             comdat="c"),
            A.Function("ext", A.VoidType(), function_attributes=(A.GroupID(0),)),
            A.FunctionAttributeGroup(A.GroupID(0), ("nounwind",)),
            A.COMDATDefinition("c", A.SelectionKind.ANY),
        )
        assert "$c = comdat any" in text
        assert "@c = linkonce_odr global i32 0, comdat" in text
        assert "declare void @ext() #0" in text
        assert "attributes #0 = { nounwind }" in text

    def test_inline_assembly(self, assemble):
        """Module asm is printed line by line"""
        text = assemble(A.InlineAssembly("nop\nnop"))
        assert text.count('module asm "nop"') == 2

    def test_control_flow(self, assemble):
        """Blocks may be referenced before they are filled"""
        maximum = A.Function(
            "max", i32,
            parameters=(A.Parameter(i32, "a"), A.Parameter(i32, "b")),
            basic_blocks=(
                A.BasicBlock("entry", (
                    A.Named("cmp", A.ICmp("sgt", local("a"), local("b"))),
                ), A.Do(A.CondBr(local("cmp", i1), "left", "right"))),
                A.BasicBlock("left", (), A.Do(A.Br("done"))),
                A.BasicBlock("right", (), A.Do(A.Br("done"))),
                A.BasicBlock("done", (
                    A.Named("r", A.Phi(i32, ((local("a"), "left"), (local("b"), "right")))),
                ), A.Do(A.Ret(local("r")))),
            ))
        text = assemble(maximum)
        assert "br i1 %cmp, label %left, label %right" in text
        assert "%r = phi i32 [ %a, %left ], [ %b, %right ]" in text

    def test_local_used_before_definition(self, assemble):
        """A local defined in a later block resolves"""
        loop = A.Function(
            "count", i32,
            basic_blocks=(
                A.BasicBlock("entry", (), A.Do(A.Br("loop"))),
                A.BasicBlock("loop", (
                    A.Named("i", A.Phi(i32, ((const(0), "entry"), (local("next"), "loop")))),
                    A.Named("next", A.BinaryOperation("add", local("i"), const(1))),
                    A.Named("more", A.ICmp("slt", local("next"), const(10))),
                ), A.Do(A.CondBr(local("more", i1), "loop", "exit"))),
                A.BasicBlock("exit", (), A.Do(A.Ret(local("next")))),
            ))
        text = assemble(loop)
        assert "%i = phi i32 [ 0, %entry ], [ %next, %loop ]" in text

    def test_call(self, assemble):
        """Calls go through the declared function type"""
        caller = A.Function(
            "caller", i32,
            basic_blocks=(
                A.BasicBlock("entry", (
                    A.Named("r", A.Call(A.FunctionType(i32, (i32, i32)), global_ref("add"),
                                        (const(2), const(3)), tail_call="tail")),
                ), A.Do(A.Ret(local("r")))),
            ))
        text = assemble(caller, add_function())
        assert "%r = tail call i32 @add(i32 2, i32 3)" in text

    def test_memory(self, assemble):
        """Stack slots, stores and loads with alignment"""
        fn = A.Function(
            "slot", i32,
            basic_blocks=(
                A.BasicBlock("entry", (
                    A.Named("p", A.Alloca(i32, alignment=4)),
                    A.Do(A.Store(local("p", ptr), const(5), alignment=4)),
                    A.Named("v", A.Load(i32, local("p", ptr), alignment=4)),
                ), A.Do(A.Ret(local("v")))),
            ))
        text = assemble(fn)
        assert "%p = alloca i32, align 4" in text
        assert "store i32 5, ptr %p, align 4" in text
        assert "%v = load i32, ptr %p, align 4" in text

    def test_instruction_metadata(self, assemble):
        """Metadata attachments follow the instruction"""
        fn = A.Function(
            "tagged", i32,
            parameters=(A.Parameter(i32, "a"),),
            basic_blocks=(
                A.BasicBlock("entry", (
                    A.Named("b", A.BinaryOperation("mul", local("a"), const(2)),
                            metadata=(("note", 0),)),
                ), A.Do(A.Ret(local("b")))),
            ))
        text = assemble(fn, A.MetadataNodeDefinition(0, (A.MDString("doubled"),)))
        assert "%b = mul i32 %a, 2, !note !0" in text
        assert '!0 = !{!"doubled"}' in text

    def test_metadata_ids_apart_from_global_names(self, assemble):
        """A global named 0 leaves metadata node !0 numbered as written"""
        text = assemble(
            A.GlobalVariable("0", i32, A.Int(32, 0)),
            A.NamedMetadataDefinition("n", (0,)),
            A.MetadataNodeDefinition(0, (A.MDString("x"),)),
        )
        assert '@"0" = global i32 0' in text
        assert "!n = !{!0}" in text
        assert '!0 = !{!"x"}' in text

    def test_named_struct_printed_twice(self, make_module):
        """Repeated prints keep the struct's own name"""
        pair = A.NamedTypeReference("pair")
        source = make_module(
            A.TypeDefinition("pair", A.StructureType(False, (i32, i32))),
            A.GlobalVariable("origin", pair,
                             A.Struct("pair", False, (A.Int(32, 1), A.Int(32, 2)))))
        with module_from_ast(source) as module:
            first = module_llvm_assembly(module)
            second = module_llvm_assembly(module)
        with module_from_ast(source) as other:
            third = module_llvm_assembly(other)
        assert first == second == third
        assert "%pair = type { i32, i32 }" in first
        assert "%pair.0" not in first


class TestForwardReferences:
    """Globals and metadata referenced before they are defined."""

    def test_global_declared_later(self, make_module):
        """Definition order of globals does not change a function"""
        g = A.GlobalVariable("g", i32, A.Int(32, 1))
        with module_from_ast(make_module(load_g_function(), g)) as late, \
                module_from_ast(make_module(g, load_g_function())) as early:
            assert str(late.graph.get_global("f")) == str(early.graph.get_global("f"))

    def test_metadata_cycle(self, assemble):
        """Two metadata nodes may reference each other"""
        text = assemble(
            A.NamedMetadataDefinition("cycle", (0,)),
            A.MetadataNodeDefinition(0, (A.MDNodeReference(1),)),
            A.MetadataNodeDefinition(1, (A.MDNodeReference(0), A.MDString("x"))),
        )
        assert "!cycle = !{!0}" in text
        assert "!0 = !{!1}" in text
        assert '!1 = !{!0, !"x"}' in text


class TestEncodeFailures:
    """Errors reported while encoding."""

    def test_unresolved_local(self, make_module):
        """An undefined local names itself in the error"""
        bad = A.Function(
            "bad", i32,
            basic_blocks=(A.BasicBlock("entry", (), A.Do(A.Ret(local("ghost")))),))
        with pytest.raises(UnresolvedReference) as info:
            with with_module_from_ast(make_module(bad)):
                pass
        assert info.value.kind == "local"
        assert info.value.identifier == "ghost"

    def test_failure_disposes_partial_module(self, make_module, monkeypatch):
        """The partially built handle is disposed before the error escapes"""
        disposed = []
        real_dispose = Module.dispose

        def recording_dispose(self):
            disposed.append(self)
            real_dispose(self)

        monkeypatch.setattr(Module, "dispose", recording_dispose)
        bad = A.Function(
            "bad", i32,
            basic_blocks=(A.BasicBlock("entry", (), A.Do(A.Ret(local("ghost")))),))
        with pytest.raises(UnresolvedReference):
            module_from_ast(make_module(bad))
        assert len(disposed) == 1
        assert disposed[0].is_disposed

    def test_unresolved_global(self, make_module):
        """A global that is never defined is reported after the last phase"""
        with pytest.raises(UnresolvedReference) as info:
            module_from_ast(make_module(load_g_function()))
        assert (info.value.kind, info.value.identifier) == ("global", "g")

    def test_unresolved_block(self, make_module):
        """Branches must target blocks of the same function"""
        bad = A.Function(
            "bad", A.VoidType(),
            basic_blocks=(A.BasicBlock("entry", (), A.Do(A.Br("nowhere"))),))
        with pytest.raises(UnresolvedReference) as info:
            module_from_ast(make_module(bad))
        assert info.value.kind == "block"

    def test_unresolved_metadata(self, make_module):
        """Metadata ids must be defined"""
        with pytest.raises(UnresolvedReference) as info:
            module_from_ast(make_module(A.NamedMetadataDefinition("n", (4,))))
        assert (info.value.kind, info.value.identifier) == ("metadata", 4)

    def test_unknown_opcode(self, make_module):
        """Unknown opcodes are encoding failures"""
        bad = A.Function(
            "bad", i32,
            parameters=(A.Parameter(i32, "a"),),
            basic_blocks=(A.BasicBlock("entry", (
                A.Named("x", A.BinaryOperation("frobnicate", local("a"), local("a"))),
            ), A.Do(A.Ret(local("x")))),))
        with pytest.raises(EncodingFailure, match="frobnicate"):
            module_from_ast(make_module(bad))

    def test_duplicate_global(self, make_module):
        """Two globals cannot share a name"""
        g = A.GlobalVariable("g", i32, A.Int(32, 0))
        with pytest.raises(EncodingFailure):
            module_from_ast(make_module(g, g))

    def test_non_struct_type_body(self, make_module):
        """Named types must have structure bodies"""
        with pytest.raises(EncodingFailure):
            module_from_ast(make_module(A.TypeDefinition("t", i32)))

    def test_unsupported_constant_cast(self, make_module):
        """Only casts LLVM keeps as constant expressions are accepted"""
        g = A.GlobalVariable("g", i32, A.CastConstant("zext", A.Int(8, 1), i32))
        with pytest.raises(EncodingFailure, match="zext"):
            module_from_ast(make_module(g))

    def test_duplicate_comdat(self, make_module):
        """A COMDAT may only be defined once"""
        comdat = A.COMDATDefinition("c", A.SelectionKind.ANY)
        with pytest.raises(EncodingFailure, match="more than once"):
            module_from_ast(make_module(comdat, comdat))

    def test_graph_rejects_duplicate_entities(self):
        """The graph refuses a second COMDAT or attribute group of the same key"""
        graph = GraphModule("dup")
        graph.add_comdat(Comdat("c", "any"))
        graph.add_attribute_group(AttributeGroup(0, ("nounwind",)))
        with pytest.raises(EncodingFailure, match="COMDAT 'c'"):
            graph.add_comdat(Comdat("c", "any"))
        with pytest.raises(EncodingFailure, match="#0"):
            graph.add_attribute_group(AttributeGroup(0))
