"""
irbridge: declarative LLVM modules <-> live llvmlite modules.

Build a Module from frozen dataclass descriptions (irbridge.ast_nodes),
read one back, parse assembly or bitcode, link modules and emit textual
IR, bitcode, target assembly or object code.
"""
from irbridge.errors import (
    DisposedModule, EmitFailure, EncodingFailure, IRBridgeError, LinkFailure,
    MalformedNativeGraph, ParseFailure, UnresolvedReference, VerifyFailure,
)
from irbridge.module import (
    Module, emit, link_modules, module_ast, module_bitcode, module_from_ast,
    module_from_bitcode, module_from_llvm_assembly, module_llvm_assembly,
    module_object, module_target_assembly, verify_module, with_module_from_ast,
    with_module_from_bitcode, with_module_from_llvm_assembly,
    write_bitcode_to_file, write_llvm_assembly_to_file, write_object_to_file,
    write_target_assembly_to_file,
)
from irbridge.native import File, OutputKind, initialize_targets, target_machine

__version__ = "0.1.0"
