"""
Module handles and the public conversion surface.

A Module owns one slot holding either a GraphModule (built from a
declarative Module) or a llvmlite.binding.ModuleRef (parsed or linked).
Disposal empties the slot and closes a native reference; every later use
raises DisposedModule.

Producers:
- module_from_ast / with_module_from_ast
- module_from_llvm_assembly / with_module_from_llvm_assembly
- module_from_bitcode / with_module_from_bitcode

Consumers:
- module_ast
- module_llvm_assembly, module_bitcode
- module_target_assembly, module_object
- write_*_to_file, emit
- verify_module
- link_modules
"""
import logging
from contextlib import contextmanager
from typing import Optional, Union

from llvmlite import binding

from irbridge import ast_nodes as A
from irbridge.context import DecodeState, EncodeState, NativeDecodeState
from irbridge.decode import Decoder, NativeDecoder
from irbridge.encode import Encoder
from irbridge.errors import (
    DisposedModule, EmitFailure, LinkFailure, MalformedNativeGraph, ParseFailure,
    VerifyFailure,
)
from irbridge.graph import GraphModule
from irbridge.native import File, OutputKind, target_machine

log = logging.getLogger(__name__)


class Module:
    """An owned handle on one module, graph-backed or native.

    A native reference lives in an LLVM context private to the handle, so
    identified struct names never collide with those of other modules.
    """

    def __init__(self, contents: Union[GraphModule, binding.ModuleRef], context=None):
        self._slot = contents
        self._context = context

    def __repr__(self):
        if self._slot is None:
            state = 'disposed'
        elif self.is_native:
            state = 'native'
        else:
            state = 'graph'
        return f"<irbridge.Module {state}>"

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.dispose()

    def _require(self):
        if self._slot is None:
            raise DisposedModule("Module has been disposed")
        return self._slot

    @property
    def is_disposed(self) -> bool:
        return self._slot is None

    @property
    def is_native(self) -> bool:
        return isinstance(self._require(), binding.ModuleRef)

    @property
    def graph(self) -> GraphModule:
        contents = self._require()
        if isinstance(contents, binding.ModuleRef):
            raise MalformedNativeGraph(
                "Module holds a native reference without a graph to decode")
        return contents

    @property
    def native_ref(self) -> binding.ModuleRef:
        contents = self._require()
        if not isinstance(contents, binding.ModuleRef):
            raise MalformedNativeGraph("Module holds a graph, not a native reference")
        return contents

    def _replace(self, contents, context=None):
        """Swap the slot contents, closing a native reference being dropped."""
        old, old_context = self._slot, self._context
        self._slot, self._context = contents, context
        if isinstance(old, binding.ModuleRef) and old is not contents:
            old.close()
        if old_context is not None and old_context is not context:
            old_context.close()

    def dispose(self):
        """Empty the slot; a no-op on an already disposed handle."""
        contents, self._slot = self._slot, None
        context, self._context = self._context, None
        if isinstance(contents, binding.ModuleRef):
            contents.close()
            log.debug("closed native module")
        if context is not None:
            context.close()

    # ------------------------------------------------------------------
    # Target triple and data layout
    # ------------------------------------------------------------------

    @property
    def target_triple(self) -> Optional[str]:
        contents = self._require()
        return contents.triple or None

    @target_triple.setter
    def target_triple(self, triple: Optional[str]):
        self._require().triple = triple or ''

    @property
    def data_layout(self) -> Optional[str]:
        contents = self._require()
        return contents.data_layout or None

    @data_layout.setter
    def data_layout(self, layout: Optional[str]):
        self._require().data_layout = layout or ''


# ============================================================================
# Native views
# ============================================================================

def _parse_text(text: str, context, error=ParseFailure) -> binding.ModuleRef:
    try:
        return binding.parse_assembly(text, context=context)
    except RuntimeError as e:
        raise error(str(e)) from e


def _parse_graph(graph: GraphModule, context) -> binding.ModuleRef:
    text = str(graph)
    try:
        ref = _parse_text(text, context, EmitFailure)
    except EmitFailure:
        log.debug("graph rejected by the parser:\n%s", text)
        raise
    ref.name = graph.name
    return ref


@contextmanager
def _native_view(module: Module):
    """A ModuleRef for *module*, valid inside the with block.

    A native handle lends its own reference. A graph handle is printed and
    parsed into a temporary reference, in a temporary context, both closed
    on exit.
    """
    contents = module._require()
    if isinstance(contents, binding.ModuleRef):
        yield contents
        return
    context = binding.create_context()
    try:
        ref = _parse_graph(contents, context)
        try:
            yield ref
        finally:
            ref.close()
    finally:
        context.close()


def _own_native(module: Module) -> binding.ModuleRef:
    """Turn *module* into a native handle and return its reference."""
    contents = module._require()
    if isinstance(contents, binding.ModuleRef):
        return contents
    context = binding.create_context()
    try:
        ref = _parse_graph(contents, context)
    except EmitFailure:
        context.close()
        raise
    module._replace(ref, context)
    return ref


def _copy_into(module: Module, context) -> binding.ModuleRef:
    """A fresh native copy of *module* living in *context*."""
    contents = module._require()
    if isinstance(contents, binding.ModuleRef):
        try:
            return binding.parse_bitcode(contents.as_bitcode(), context=context)
        except RuntimeError as e:
            raise EmitFailure(str(e)) from e
    return _parse_graph(contents, context)


# ============================================================================
# Producers
# ============================================================================

def module_from_ast(module_ast: A.Module) -> Module:
    """Encode a declarative Module into a new graph-backed handle.

    The caller owns the result. On failure the partial graph is disposed
    before the error propagates.
    """
    graph = GraphModule(module_ast.name, module_ast.source_file_name)
    module = Module(graph)
    try:
        Encoder(EncodeState(graph)).encode(module_ast)
    except Exception:
        module.dispose()
        raise
    log.debug("encoded module %s (%d definitions)",
              module_ast.name, len(module_ast.definitions))
    return module


@contextmanager
def with_module_from_ast(module_ast: A.Module):
    module = module_from_ast(module_ast)
    try:
        yield module
    finally:
        module.dispose()


def module_from_llvm_assembly(text: str) -> Module:
    """Parse LLVM assembly text into a native handle."""
    context = binding.create_context()
    try:
        ref = _parse_text(text, context)
    except ParseFailure:
        context.close()
        raise
    log.debug("parsed %d characters of assembly", len(text))
    return Module(ref, context)


@contextmanager
def with_module_from_llvm_assembly(text: str):
    module = module_from_llvm_assembly(text)
    try:
        yield module
    finally:
        module.dispose()


def module_from_bitcode(data: bytes) -> Module:
    """Parse LLVM bitcode into a native handle."""
    context = binding.create_context()
    try:
        ref = binding.parse_bitcode(data, context=context)
    except RuntimeError as e:
        context.close()
        raise ParseFailure(str(e)) from e
    log.debug("parsed %d bytes of bitcode", len(data))
    return Module(ref, context)


@contextmanager
def with_module_from_bitcode(data: bytes):
    module = module_from_bitcode(data)
    try:
        yield module
    finally:
        module.dispose()


# ============================================================================
# Consumers
# ============================================================================

def module_ast(module: Module) -> A.Module:
    """Decode a handle into a declarative Module.

    Graph-backed handles are walked directly; parsed and linked handles go
    through their native reference.
    """
    contents = module._require()
    if isinstance(contents, binding.ModuleRef):
        return NativeDecoder(NativeDecodeState(contents)).decode()
    return Decoder(DecodeState(contents)).decode()


def module_llvm_assembly(module: Module) -> str:
    with _native_view(module) as ref:
        return str(ref)


def module_bitcode(module: Module) -> bytes:
    with _native_view(module) as ref:
        return ref.as_bitcode()


def module_target_assembly(machine: binding.TargetMachine, module: Module) -> str:
    with _native_view(module) as ref:
        try:
            return machine.emit_assembly(ref)
        except RuntimeError as e:
            raise EmitFailure(str(e)) from e


def module_object(machine: binding.TargetMachine, module: Module) -> bytes:
    with _native_view(module) as ref:
        try:
            return machine.emit_object(ref)
        except RuntimeError as e:
            raise EmitFailure(str(e)) from e


def verify_module(module: Module):
    """Run LLVM's verifier, raising VerifyFailure with its report."""
    with _native_view(module) as ref:
        try:
            ref.verify()
        except RuntimeError as e:
            raise VerifyFailure(str(e)) from e


def write_llvm_assembly_to_file(file: File, module: Module):
    file.write(module_llvm_assembly(module))


def write_bitcode_to_file(file: File, module: Module):
    file.write(module_bitcode(module))


def write_target_assembly_to_file(machine: binding.TargetMachine, file: File,
                                  module: Module):
    file.write(module_target_assembly(machine, module))


def write_object_to_file(machine: binding.TargetMachine, file: File, module: Module):
    file.write(module_object(machine, module))


def emit(module: Module, kind: OutputKind,
         machine: Optional[binding.TargetMachine] = None) -> bytes:
    """Produce *kind* output for *module* as bytes.

    Target assembly and object code need a TargetMachine; without one a
    machine for the module's triple (or the host) is created.
    """
    if kind.needs_target and machine is None:
        machine = target_machine(module.target_triple)
    log.debug("emit %s", kind.name)
    if kind is OutputKind.LLVM_ASSEMBLY:
        return module_llvm_assembly(module).encode('utf8')
    if kind is OutputKind.BITCODE:
        return module_bitcode(module)
    if kind is OutputKind.TARGET_ASSEMBLY:
        return module_target_assembly(machine, module).encode('utf8')
    if kind is OutputKind.OBJECT:
        return module_object(machine, module)
    raise ValueError(f"Unknown output kind {kind!r}")


# ============================================================================
# Linking
# ============================================================================

def link_modules(dest: Module, src: Module):
    """Link *src* into *dest*.

    *dest* becomes a native handle holding the linked module. A copy of
    *src* is made in dest's context for the linker to consume; *src* itself
    is disposed whether or not linking succeeds.
    """
    try:
        dest_ref = _own_native(dest)
        src_ref = _copy_into(src, dest._context)
        log.debug("linking %s into %s", src_ref.name, dest_ref.name)
        binding.link_modules(dest_ref, src_ref)
    except (RuntimeError, EmitFailure) as e:
        raise LinkFailure("Couldn't link modules") from e
    finally:
        src.dispose()
