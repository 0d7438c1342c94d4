"""
Tests for decoding graphs back into declarative modules.

Modules here are written in canonical order (types, inline asm,
variables, aliases, functions, named metadata, metadata nodes, attribute
groups, COMDATs) so a decoded module compares equal to its source.
"""

import pytest

from irbridge import ast_nodes as A
from irbridge import (
    MalformedNativeGraph, link_modules, module_ast, module_from_ast,
    module_from_llvm_assembly, module_llvm_assembly,
)

from builders import add_function, const, global_ref, i1, i32, local, ptr


def rich_definitions():
    pair = A.NamedTypeReference("pair")
    double = A.FloatingPointType(A.FloatingPointFormat.DOUBLE)
    return (
        A.TypeDefinition("pair", A.StructureType(False, (i32, i32))),
        A.TypeDefinition("opaque_handle"),
        A.InlineAssembly(".globl marker"),
        A.GlobalVariable("counter", i32, A.Int(32, 0), linkage=A.Linkage.INTERNAL,
                         alignment=4),
        A.GlobalVariable("origin", pair,
                         A.Struct("pair", False, (A.Int(32, 1), A.Int(32, -2))),
                         is_constant=True, unnamed_addr=A.UnnamedAddr.LOCAL),
        A.GlobalVariable("tls", i32, thread_local_mode=A.ThreadLocalMode.LOCAL_EXEC,
                         dll_storage_class=A.DLLStorageClass.IMPORT),
        A.GlobalVariable("second", ptr, A.GetElementPtrConstant(
            True, pair, A.GlobalReference("origin"), (A.Int(32, 0), A.Int(32, 1)))),
        A.GlobalVariable("table", A.ArrayType(2, i32),
                         A.Array(i32, (A.Int(32, 3), A.Int(32, 4))),
                         section=".data.table", comdat="table",
                         linkage=A.Linkage.LINK_ONCE_ODR),
        A.GlobalVariable("zero", A.ArrayType(2, double), A.AggregateZero(
            A.ArrayType(2, double))),
        A.GlobalVariable("scale", A.VectorType(2, double), A.Vector(
            (A.Float(A.FloatingPointFormat.DOUBLE, 1.0),
             A.Float(A.FloatingPointFormat.DOUBLE, 2.5)))),
        A.GlobalVariable("nothing", ptr, A.Null(ptr), visibility=A.Visibility.HIDDEN),
        A.GlobalAlias("counter_alias", i32, A.GlobalReference("counter"),
                      linkage=A.Linkage.INTERNAL),
        add_function(),
        A.Function(
            "bump", A.VoidType(),
            basic_blocks=(
                A.BasicBlock("entry", (
                    A.Named("old", A.Load(i32, global_ref("counter"), alignment=4),
                            metadata=(("note", 0),)),
                    A.Named("new", A.BinaryOperation("add", local("old"), const(1),
                                                     flags=("nsw",))),
                    A.Do(A.Store(global_ref("counter"), local("new"), alignment=4)),
                ), A.Do(A.Ret())),
            ),
            function_attributes=("noinline", A.GroupID(0)),
            calling_convention=A.CallingConvention.FAST,
        ),
        A.Function(
            "pick", i32,
            parameters=(A.Parameter(i1, "c"), A.Parameter(i32, "a", ("signext",))),
            basic_blocks=(
                A.BasicBlock("entry", (
                    A.Named("s", A.Select(local("c", i1), local("a"), const(7))),
                    A.Named("w", A.Cast("sext", local("s"), A.IntegerType(64))),
                    A.Named("r", A.Call(A.FunctionType(i32, (i32, i32)), global_ref("add"),
                                        (local("s"), const(1)))),
                ), A.Do(A.Switch(local("r"), "out", ((A.Int(32, 0), "zero"),)))),
                A.BasicBlock("zero", (), A.Do(A.Unreachable())),
                A.BasicBlock("out", (), A.Do(A.Ret(local("r")))),
            ),
            return_attributes=("noundef",),
        ),
        A.Function("external_fn", ptr, (A.Parameter(ptr, "p"),), is_var_arg=True),
        A.NamedMetadataDefinition("notes", (0,)),
        A.MetadataNodeDefinition(0, (A.MDString("counter"), A.MDNodeReference(1))),
        A.MetadataNodeDefinition(1, (A.MDNodeReference(0), None,
                                     A.MDConstant(A.Int(32, 5)))),
        A.FunctionAttributeGroup(A.GroupID(0), ("nounwind",)),
        A.COMDATDefinition("table", A.SelectionKind.ANY),
    )


class TestRoundTrip:
    """decode(encode(M)) == M for canonical modules."""

    def test_single_function(self, make_module):
        """A lone function decodes to itself"""
        source = make_module(add_function())
        with module_from_ast(source) as module:
            assert module_ast(module) == source

    def test_rich_module(self, make_module):
        """Every definition kind survives the round trip"""
        source = make_module(*rich_definitions(), triple="x86_64-unknown-linux-gnu",
                             data_layout="e-m:e-i64:64-n8:16:32:64-S128")
        with module_from_ast(source) as module:
            decoded = module_ast(module)
        for expected, actual in zip(source.definitions, decoded.definitions):
            assert actual == expected
        assert decoded == source

    def test_reencode_prints_same_text(self, make_module):
        """encode(decode(G)) prints the same text as G"""
        source = make_module(*rich_definitions(), triple="x86_64-unknown-linux-gnu")
        with module_from_ast(source) as first:
            text = module_llvm_assembly(first)
            with module_from_ast(module_ast(first)) as second:
                assert module_llvm_assembly(second) == text

    def test_metadata_cycle(self, make_module):
        """Mutually referencing nodes decode without recursing"""
        source = make_module(
            A.NamedMetadataDefinition("cycle", (0,)),
            A.MetadataNodeDefinition(0, (A.MDNodeReference(1),)),
            A.MetadataNodeDefinition(1, (A.MDNodeReference(0),)),
        )
        with module_from_ast(source) as module:
            assert module_ast(module) == source

    def test_forward_local(self, make_module):
        """A use before its definition decodes to the same local name"""
        source = make_module(A.Function(
            "count", i32,
            basic_blocks=(
                A.BasicBlock("entry", (), A.Do(A.Br("loop"))),
                A.BasicBlock("loop", (
                    A.Named("i", A.Phi(i32, ((const(0), "entry"), (local("next"), "loop")))),
                    A.Named("next", A.BinaryOperation("add", local("i"), const(1))),
                    A.Named("more", A.ICmp("ult", local("next"), const(10))),
                ), A.Do(A.CondBr(local("more", i1), "loop", "exit"))),
                A.BasicBlock("exit", (), A.Do(A.Ret(local("next")))),
            )))
        with module_from_ast(source) as module:
            assert module_ast(module) == source


class TestDecodeShape:
    """Decoder behaviour outside the canonical round trip."""

    def test_unnamed_value_gets_a_name(self, make_module):
        """A non-void result without a name decodes as a numbered local"""
        source = make_module(add_function(), A.Function(
            "discard", A.VoidType(),
            basic_blocks=(A.BasicBlock("entry", (
                A.Do(A.Call(A.FunctionType(i32, (i32, i32)), global_ref("add"),
                            (const(1), const(2)))),
            ), A.Do(A.Ret())),)))
        with module_from_ast(source) as module:
            decoded = module_ast(module)
        [item] = decoded.definitions[-1].basic_blocks[0].instructions
        assert isinstance(item, A.Named)
        assert item.name.startswith(".")

    def test_integer_zero(self, make_module):
        """A null integer constant decodes as Int 0"""
        source = make_module(A.GlobalVariable("z", i32, A.AggregateZero(i32)))
        with module_from_ast(source) as module:
            [g] = module_ast(module).definitions
        assert g.initializer == A.Int(32, 0)

    def test_undef(self, make_module):
        """Undef constants keep their type"""
        source = make_module(A.GlobalVariable("u", i32, A.Undef(i32)))
        with module_from_ast(source) as module:
            assert module_ast(module) == source

    def test_parsed_module_decodes(self):
        """Parsed modules decode through their native reference"""
        text = "define void @f() {\nentry:\n  ret void\n}\n"
        with module_from_llvm_assembly(text) as module:
            decoded = module_ast(module)
        assert decoded.definitions == (A.Function(
            "f", A.VoidType(),
            basic_blocks=(A.BasicBlock("entry", (), A.Do(A.Ret())),)),)

    def test_decode_leaves_graph_untouched(self, make_module):
        """Decoding is read-only"""
        with module_from_ast(make_module(*rich_definitions())) as module:
            before = str(module.graph)
            module_ast(module)
            assert str(module.graph) == before


def textual_definitions():
    """Definitions that survive a trip through LLVM's own printer unchanged."""
    pair = A.NamedTypeReference("pair")
    return (
        A.TypeDefinition("pair", A.StructureType(False, (i32, i32))),
        A.GlobalVariable("counter", i32, A.Int(32, 0), linkage=A.Linkage.INTERNAL,
                         alignment=4),
        A.GlobalVariable("origin", pair,
                         A.Struct("pair", False, (A.Int(32, 1), A.Int(32, -2))),
                         is_constant=True),
        A.GlobalVariable("table", A.ArrayType(2, i32),
                         A.Array(i32, (A.Int(32, 3), A.Int(32, 4))),
                         comdat="table", linkage=A.Linkage.LINK_ONCE_ODR),
        A.GlobalAlias("counter_alias", i32, A.GlobalReference("counter")),
        add_function(),
        A.Function(
            "pick", i32,
            parameters=(A.Parameter(i1, "c"),),
            function_attributes=(A.GroupID(0),),
            basic_blocks=(
                A.BasicBlock("entry", (), A.Do(A.CondBr(local("c", i1), "yes", "no"))),
                A.BasicBlock("yes", (), A.Do(A.Br("done"))),
                A.BasicBlock("no", (), A.Do(A.Br("done"))),
                A.BasicBlock("done", (
                    A.Named("v", A.Phi(i32, ((const(1), "yes"), (const(2), "no")))),
                    A.Named("r", A.Call(A.FunctionType(i32, (i32, i32)),
                                        global_ref("add"), (local("v"), const(3)))),
                ), A.Do(A.Ret(local("r")))),
            )),
        A.Function(
            "touch", i32,
            parameters=(A.Parameter(ptr, "p"),),
            basic_blocks=(
                A.BasicBlock("entry", (
                    A.Named("slot", A.Alloca(i32, None, 4)),
                    A.Do(A.Store(local("slot", ptr), const(7), 4)),
                    A.Named("x", A.Load(i32, local("p", ptr), 4)),
                    A.Named("q", A.GetElementPtr(pair, local("p", ptr),
                                                 (const(0), const(1)), True)),
                    A.Named("big", A.ICmp("sgt", local("x"), const(0))),
                    A.Named("m", A.Select(local("big", i1), local("x"), const(0))),
                ), A.Do(A.Ret(local("m")))),
            )),
        A.NamedMetadataDefinition("notes", (0,)),
        A.MetadataNodeDefinition(0, (A.MDString("hello"), A.MDConstant(A.Int(32, 5)))),
        A.FunctionAttributeGroup(A.GroupID(0), ("nounwind",)),
        A.COMDATDefinition("table", A.SelectionKind.ANY),
    )


class TestNativeDecode:
    """Decoding parsed and linked modules."""

    def test_text_round_trip(self, assemble):
        """A module printed by LLVM and parsed back decodes to its source"""
        text = assemble(*textual_definitions())
        with module_from_llvm_assembly(text) as module:
            decoded = module_ast(module)
        assert decoded.definitions == textual_definitions()
        assert decoded.source_file_name == "test.ll"

    def test_handwritten_assembly(self):
        """Flags, attachments and parameter attributes are read from the listing"""
        text = (
            "define i32 @f(i32 noundef %x) {\n"
            "entry:\n"
            "  %y = add nsw i32 %x, 1, !note !0\n"
            "  ret i32 %y\n"
            "}\n"
            "!0 = !{!\"x\"}\n")
        with module_from_llvm_assembly(text) as module:
            [f, node] = module_ast(module).definitions
        assert f.parameters == (A.Parameter(i32, "x", ("noundef",)),)
        [named] = f.basic_blocks[0].instructions
        assert named == A.Named(
            "y", A.BinaryOperation("add", local("x"), const(1), ("nsw",)),
            (("note", 0),))
        assert node == A.MetadataNodeDefinition(0, (A.MDString("x"),))

    def test_unnamed_values_take_slot_numbers(self):
        """Unnamed arguments, blocks and results decode as their printed numbers"""
        text = "define i32 @g(i32 %0) {\n  %2 = add i32 %0, 1\n  ret i32 %2\n}\n"
        with module_from_llvm_assembly(text) as module:
            [g] = module_ast(module).definitions
        assert g.parameters == (A.Parameter(i32, "0"),)
        [block] = g.basic_blocks
        assert block.name == "1"
        assert block.instructions == (
            A.Named("2", A.BinaryOperation("add", local("0"), const(1))),)
        assert block.terminator == A.Do(A.Ret(local("2")))

    def test_switch(self):
        """Switch cases keep their order and values"""
        text = (
            "define void @s(i32 %v) {\n"
            "entry:\n"
            "  switch i32 %v, label %other [\n"
            "    i32 1, label %one\n"
            "    i32 -1, label %other\n"
            "  ]\n"
            "one:\n"
            "  ret void\n"
            "other:\n"
            "  unreachable\n"
            "}\n")
        with module_from_llvm_assembly(text) as module:
            [s] = module_ast(module).definitions
        assert s.basic_blocks[0].terminator == A.Do(A.Switch(
            local("v"), "other",
            ((A.Int(32, 1), "one"), (A.Int(32, -1), "other"))))
        assert s.basic_blocks[2].terminator == A.Do(A.Unreachable())

    def test_linked_module_decodes(self, make_module):
        """A link result decodes with the definitions of both inputs"""
        dest = module_from_ast(make_module(add_function()))
        src = module_from_llvm_assembly(
            "@limit = global i32 10\n"
            "define i32 @answer() {\nentry:\n  ret i32 42\n}\n")
        with dest:
            link_modules(dest, src)
            decoded = module_ast(dest)
        names = [d.name for d in decoded.definitions]
        assert sorted(names) == ["add", "answer", "limit"]
        assert add_function() in decoded.definitions
        assert A.GlobalVariable("limit", i32, A.Int(32, 10)) in decoded.definitions

    def test_global_named_like_metadata_id(self, make_module):
        """A global named 0 and metadata node !0 both survive encoding and decoding"""
        source = make_module(
            A.GlobalVariable("0", i32, A.Int(32, 0)),
            A.NamedMetadataDefinition("n", (0,)),
            A.MetadataNodeDefinition(0, (A.MDString("x"),)))
        with module_from_ast(source) as module:
            assert module_ast(module) == source
            text = module_llvm_assembly(module)
        with module_from_llvm_assembly(text) as parsed:
            assert module_ast(parsed).definitions == source.definitions

    def test_volatile_load_rejected(self):
        """Volatile memory access has no declarative form"""
        text = ("define i32 @v(ptr %p) {\nentry:\n"
                "  %x = load volatile i32, ptr %p\n  ret i32 %x\n}\n")
        with module_from_llvm_assembly(text) as module:
            with pytest.raises(MalformedNativeGraph, match="volatile"):
                module_ast(module)

    def test_specialized_metadata_rejected(self):
        """Debug info nodes are not plain metadata tuples"""
        text = ('!llvm.ident = !{!0}\n'
                '!0 = !DIFile(filename: "a.c", directory: "/tmp")\n')
        with module_from_llvm_assembly(text) as module:
            with pytest.raises(MalformedNativeGraph, match="Specialized"):
                module_ast(module)
