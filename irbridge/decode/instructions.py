"""
Function decoding.

Inside the function's local scope every argument, block and named
instruction is bound first (keyed by the identity of the graph object);
operands are converted afterwards, so a use before its definition in
program order resolves by lookup like any other.
"""
from typing import TYPE_CHECKING

from llvmlite import ir

from irbridge import ast_nodes as A
from irbridge.errors import MalformedNativeGraph
from irbridge.graph import Callee, unwrap
from irbridge.keywords import BINARY_OPCODES

if TYPE_CHECKING:
    from irbridge.decode.core import Decoder


class InstructionsDecoder:
    """Converts functions, their blocks and instructions."""

    def __init__(self, decoder: 'Decoder'):
        self.decoder = decoder
        self._instruction_handlers = {
            ir.Instruction: self._binary_operation,
            ir.ICMPInstr: self._icmp,
            ir.FCMPInstr: self._fcmp,
            ir.AllocaInstr: self._alloca,
            ir.LoadInstr: self._load,
            ir.StoreInstr: self._store,
            ir.GEPInstr: self._get_element_ptr,
            ir.CastInstr: self._cast,
            ir.PhiInstr: self._phi,
            ir.SelectInstr: self._select,
            ir.CallInstr: self._call,
            ir.ExtractValue: self._extract_value,
            ir.InsertValue: self._insert_value,
        }
        self._terminator_handlers = {
            ir.Ret: self._ret,
            ir.Branch: self._br,
            ir.ConditionalBranch: self._cond_br,
            ir.SwitchInstr: self._switch,
            ir.Unreachable: self._unreachable,
        }

    @property
    def scope(self):
        return self.decoder.scope

    @property
    def types(self):
        return self.decoder.types

    @property
    def constants(self):
        return self.decoder.constants

    @property
    def globals(self):
        return self.decoder.globals

    # ==========================================================================
    # Names and operands
    # ==========================================================================

    def _bind(self, kind: str, value):
        self.scope.define(kind, id(value), value.name)

    def local_name(self, value) -> str:
        entry = self.scope.lookup('local', id(value))
        if entry is None:
            raise MalformedNativeGraph(
                f"Local '{getattr(value, 'name', value)}' is not defined in this function")
        return entry.handle

    def block_name(self, block) -> str:
        entry = self.scope.lookup('block', id(block))
        if entry is None:
            raise MalformedNativeGraph(f"Block {block!r} is not in this function")
        return entry.handle

    def operand(self, value) -> A.Operand:
        value = unwrap(value)
        if isinstance(value, (ir.Argument, ir.Instruction)):
            return A.LocalReference(self.types.decode_type(value.type),
                                    self.local_name(value))
        return A.ConstantOperand(self.constants.decode_constant(value))

    # ==========================================================================
    # Functions
    # ==========================================================================

    def function(self, fn: ir.Function) -> A.Function:
        ftype = fn.ftype
        with self.scope.local_scope():
            for arg in fn.args:
                self._bind('local', arg)
            for block in fn.blocks:
                self._bind('block', block)
                for instr in block.instructions:
                    if not isinstance(instr.type, ir.VoidType):
                        self._bind('local', instr)
            blocks = tuple(self._block(block) for block in fn.blocks)

        return A.Function(
            name=fn.name,
            return_type=self.types.decode_type(ftype.return_type),
            parameters=tuple(
                A.Parameter(self.types.decode_type(arg.type), arg.name,
                            tuple(arg.attributes._to_list(arg.type)))
                for arg in fn.args),
            is_var_arg=ftype.var_arg,
            basic_blocks=blocks,
            linkage=self.globals.linkage(fn),
            visibility=self.globals.visibility(fn),
            dll_storage_class=self.globals.dll_storage_class(fn),
            calling_convention=self.globals.calling_convention(fn.calling_convention),
            return_attributes=tuple(
                fn.return_value.attributes._to_list(ftype.return_type)),
            function_attributes=tuple(self.globals.function_attribute(a)
                                      for a in fn.attributes),
            section=fn.section or None,
            comdat=self.globals.comdat(fn),
            alignment=getattr(fn, 'align', 0) or 0,
            garbage_collector_name=getattr(fn, 'gc', None),
            prefix=self._optional_constant(getattr(fn, 'prefix', None)),
            personality_function=self._optional_constant(getattr(fn, 'personality', None)),
        )

    def _optional_constant(self, value):
        if value is None:
            return None
        return self.constants.decode_constant(value)

    def _block(self, block: ir.Block) -> A.BasicBlock:
        terminator = block.terminator
        if terminator is None or not block.instructions \
                or block.instructions[-1] is not terminator:
            raise MalformedNativeGraph(f"Block '{block.name}' is not terminated")
        items = []
        for instr in block.instructions[:-1]:
            handler = self._instruction_handlers.get(type(instr))
            if handler is None:
                raise MalformedNativeGraph(f"Unsupported instruction {instr!r}")
            decoded = handler(instr)
            metadata = self.decoder.metadata.attachments(instr)
            if isinstance(instr.type, ir.VoidType):
                items.append(A.Do(decoded, metadata))
            else:
                items.append(A.Named(self.local_name(instr), decoded, metadata))

        handler = self._terminator_handlers.get(type(terminator))
        if handler is None:
            raise MalformedNativeGraph(f"Unsupported terminator {terminator!r}")
        end = A.Do(handler(terminator), self.decoder.metadata.attachments(terminator))
        return A.BasicBlock(self.block_name(block), tuple(items), end)

    # ==========================================================================
    # Instructions
    # ==========================================================================

    def _binary_operation(self, instr):
        if instr.opname not in BINARY_OPCODES or len(instr.operands) != 2:
            raise MalformedNativeGraph(f"Unsupported instruction '{instr.opname}'")
        lhs, rhs = instr.operands
        return A.BinaryOperation(instr.opname, self.operand(lhs), self.operand(rhs),
                                 tuple(instr.flags))

    def _icmp(self, instr):
        lhs, rhs = instr.operands
        return A.ICmp(instr.op, self.operand(lhs), self.operand(rhs))

    def _fcmp(self, instr):
        lhs, rhs = instr.operands
        return A.FCmp(instr.op, self.operand(lhs), self.operand(rhs))

    def _alloca(self, instr):
        count = self.operand(instr.operands[0]) if instr.operands else None
        return A.Alloca(self.types.decode_type(instr.allocated_type), count,
                        instr.align or 0)

    def _load(self, instr):
        [address] = instr.operands
        return A.Load(self.types.decode_type(instr.type), self.operand(address),
                      instr.align or 0)

    def _store(self, instr):
        value, address = instr.operands
        return A.Store(self.operand(address), self.operand(value), instr.align or 0)

    def _get_element_ptr(self, instr):
        return A.GetElementPtr(self.types.decode_type(instr.source_etype),
                               self.operand(instr.pointer),
                               tuple(self.operand(i) for i in instr.indices),
                               bool(instr.inbounds))

    def _cast(self, instr):
        [value] = instr.operands
        return A.Cast(instr.opname, self.operand(value),
                      self.types.decode_type(instr.type))

    def _phi(self, instr):
        return A.Phi(self.types.decode_type(instr.type),
                     tuple((self.operand(value), self.block_name(block))
                           for value, block in instr.incomings))

    def _select(self, instr):
        cond, lhs, rhs = instr.operands
        return A.Select(self.operand(cond), self.operand(lhs), self.operand(rhs))

    def _call(self, instr):
        callee = instr.callee
        ftype = callee.function_type
        if isinstance(callee, Callee):
            callee = callee.value
        return A.Call(self.types.decode_type(ftype), self.operand(callee),
                      tuple(self.operand(a) for a in instr.args),
                      self.globals.calling_convention(instr.cconv),
                      instr.tail or None)

    def _extract_value(self, instr):
        return A.ExtractValue(self.operand(instr.aggregate), tuple(instr.indices))

    def _insert_value(self, instr):
        return A.InsertValue(self.operand(instr.aggregate), self.operand(instr.value),
                             tuple(instr.indices))

    # ==========================================================================
    # Terminators
    # ==========================================================================

    def _ret(self, term):
        if term.return_value is None:
            return A.Ret()
        return A.Ret(self.operand(term.return_value))

    def _br(self, term):
        [dest] = term.operands
        return A.Br(self.block_name(dest))

    def _cond_br(self, term):
        cond, true_dest, false_dest = term.operands
        return A.CondBr(self.operand(cond), self.block_name(true_dest),
                        self.block_name(false_dest))

    def _switch(self, term):
        return A.Switch(self.operand(term.value), self.block_name(term.default),
                        tuple((self.constants.decode_constant(value),
                               self.block_name(block))
                              for value, block in term.cases))

    def _unreachable(self, term):
        return A.Unreachable()
