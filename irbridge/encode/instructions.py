"""
Function body encoding.

A body is filled inside its own local scope:
- parameters and basic-block shells are defined first
- instructions are built in program order, each operand resolved through
  the scope table; an unseen local gets a ForwardValue that the
  instruction captures, bound when the name is defined
- any local still forward when the body is complete is an error

Instructions are constructed directly rather than through ir.IRBuilder,
since a builder folds casts and checks operand types the forward
placeholders cannot satisfy yet.
"""
import logging
from typing import TYPE_CHECKING

from llvmlite import ir

from irbridge import ast_nodes as A
from irbridge.context import FunctionShell
from irbridge.errors import EncodingFailure, UnresolvedReference
from irbridge.graph import Callee, ForwardValue
from irbridge.keywords import (
    BINARY_OPCODES, CALLING_CONVENTION, CAST_OPCODES, TAIL_CALL_KINDS,
)
from irbridge.encode.globals import keyword

if TYPE_CHECKING:
    from irbridge.encode.core import Encoder

log = logging.getLogger(__name__)


class InstructionsEncoder:
    """Fills function bodies with instructions and terminators."""

    def __init__(self, encoder: 'Encoder'):
        self.encoder = encoder
        self._instruction_handlers = {
            A.BinaryOperation: self._binary_operation,
            A.ICmp: self._icmp,
            A.FCmp: self._fcmp,
            A.Alloca: self._alloca,
            A.Load: self._load,
            A.Store: self._store,
            A.GetElementPtr: self._get_element_ptr,
            A.Cast: self._cast,
            A.Phi: self._phi,
            A.Select: self._select,
            A.Call: self._call,
            A.ExtractValue: self._extract_value,
            A.InsertValue: self._insert_value,
        }
        self._terminator_handlers = {
            A.Ret: self._ret,
            A.Br: self._br,
            A.CondBr: self._cond_br,
            A.Switch: self._switch,
            A.Unreachable: self._unreachable,
        }

    @property
    def scope(self):
        return self.encoder.scope

    @property
    def types(self):
        return self.encoder.types

    @property
    def constants(self):
        return self.encoder.constants

    # ==========================================================================
    # Local names
    # ==========================================================================

    def define_local(self, name: str, value):
        placeholder = self.scope.define('local', name, value)
        if placeholder is not None:
            placeholder.target = value

    def local(self, name: str, typ: A.Type):
        return self.scope.reference(
            'local', name, lambda: ForwardValue(self.types.encode_type(typ), name))

    def block(self, name: str) -> ir.Block:
        target = self.scope.reference('block', name,
                                      lambda: ForwardValue(ir.LabelType(), name))
        if isinstance(target, ForwardValue):
            # Every block shell exists before the body is filled
            raise UnresolvedReference('block', name)
        return target

    def operand(self, op: A.Operand):
        if isinstance(op, A.LocalReference):
            return self.local(op.name, op.type)
        if isinstance(op, A.ConstantOperand):
            return self.constants.encode_constant(op.constant)
        raise EncodingFailure(f"Cannot encode operand {op!r}")

    # ==========================================================================
    # Function phase 3
    # ==========================================================================

    def fill_function(self, definition: A.Function, shell: FunctionShell):
        fn = shell.function
        if not definition.basic_blocks:
            return shell
        self.encoder.state.function = fn
        try:
            with self.scope.local_scope():
                for param, arg in zip(definition.parameters, fn.args):
                    self.define_local(param.name, arg)
                for block_ast, block in zip(definition.basic_blocks, shell.blocks):
                    self.scope.define('block', block_ast.name, block)

                for block_ast, block in zip(definition.basic_blocks, shell.blocks):
                    for item in block_ast.instructions:
                        self._append(block, item)
                    self._terminate(block, block_ast.terminator)

                for kind, name in self.scope.unresolved(local=True):
                    log.debug("function %s: %s '%s' never defined",
                              definition.name, kind, name)
                    raise UnresolvedReference(kind, name)
        finally:
            self.encoder.state.function = None
        return shell

    def _attach_metadata(self, instr, attachments):
        for kind, md_id in attachments:
            instr.set_metadata(kind, self.encoder.metadata.node(md_id))

    def _append(self, block: ir.Block, item):
        name = item.name if isinstance(item, A.Named) else ''
        handler = self._instruction_handlers.get(type(item.instruction))
        if handler is None:
            raise EncodingFailure(f"Cannot encode instruction {item.instruction!r}")
        instr = handler(block, item.instruction, name)
        block.instructions.append(instr)
        self._attach_metadata(instr, item.metadata)
        if isinstance(item, A.Named):
            self.define_local(item.name, instr)

    def _terminate(self, block: ir.Block, item: A.Do):
        handler = self._terminator_handlers.get(type(item.instruction))
        if handler is None:
            raise EncodingFailure(f"Cannot encode terminator {item.instruction!r}")
        term = handler(block, item.instruction)
        block.instructions.append(term)
        block.terminator = term
        self._attach_metadata(term, item.metadata)

    # ==========================================================================
    # Instructions
    # ==========================================================================

    def _binary_operation(self, block, instr: A.BinaryOperation, name):
        if instr.opcode not in BINARY_OPCODES:
            raise EncodingFailure(f"Unknown binary opcode '{instr.opcode}'")
        lhs = self.operand(instr.operand0)
        rhs = self.operand(instr.operand1)
        return ir.Instruction(block, lhs.type, instr.opcode, (lhs, rhs),
                              name=name, flags=list(instr.flags))

    def _icmp(self, block, instr: A.ICmp, name):
        return ir.ICMPInstr(block, instr.predicate, self.operand(instr.operand0),
                            self.operand(instr.operand1), name=name)

    def _fcmp(self, block, instr: A.FCmp, name):
        return ir.FCMPInstr(block, instr.predicate, self.operand(instr.operand0),
                            self.operand(instr.operand1), name=name)

    def _alloca(self, block, instr: A.Alloca, name):
        count = None
        if instr.num_elements is not None:
            count = self.operand(instr.num_elements)
        result = ir.AllocaInstr(block, self.types.encode_type(instr.allocated_type),
                                count, name)
        result.type = ir.PointerType()
        result.align = instr.alignment or None
        return result

    def _load(self, block, instr: A.Load, name):
        result = ir.LoadInstr(block, self.operand(instr.address), name=name,
                              typ=self.types.encode_type(instr.type))
        result.align = instr.alignment or None
        return result

    def _store(self, block, instr: A.Store, name):
        result = ir.StoreInstr(block, self.operand(instr.value),
                               self.operand(instr.address))
        result.align = instr.alignment or None
        return result

    def _get_element_ptr(self, block, instr: A.GetElementPtr, name):
        indices = [self.operand(i) for i in instr.indices]
        return ir.GEPInstr(block, self.operand(instr.address), indices,
                           instr.in_bounds, name,
                           source_etype=self.types.encode_type(instr.element_type))

    def _cast(self, block, instr: A.Cast, name):
        if instr.opcode not in CAST_OPCODES:
            raise EncodingFailure(f"Unknown cast opcode '{instr.opcode}'")
        return ir.CastInstr(block, instr.opcode, self.operand(instr.operand),
                            self.types.encode_type(instr.type), name=name)

    def _phi(self, block, instr: A.Phi, name):
        result = ir.PhiInstr(block, self.types.encode_type(instr.type), name)
        for value, pred in instr.incoming:
            result.add_incoming(self.operand(value), self.block(pred))
        return result

    def _select(self, block, instr: A.Select, name):
        return ir.SelectInstr(block, self.operand(instr.condition),
                              self.operand(instr.true_value),
                              self.operand(instr.false_value), name=name)

    def _call(self, block, instr: A.Call, name):
        if instr.tail_call is not None and instr.tail_call not in TAIL_CALL_KINDS:
            raise EncodingFailure(f"Unknown tail call kind '{instr.tail_call}'")
        callee = Callee(self.operand(instr.callee),
                        self.types.encode_type(instr.function_type))
        args = [self.operand(a) for a in instr.arguments]
        cconv = keyword(CALLING_CONVENTION, instr.calling_convention, 'calling convention')
        return ir.CallInstr(block, callee, args, name=name, cconv=cconv,
                            tail=instr.tail_call)

    def _extract_value(self, block, instr: A.ExtractValue, name):
        return ir.ExtractValue(block, self.operand(instr.aggregate),
                               list(instr.indices), name=name)

    def _insert_value(self, block, instr: A.InsertValue, name):
        return ir.InsertValue(block, self.operand(instr.aggregate),
                              self.operand(instr.element), list(instr.indices),
                              name=name)

    # ==========================================================================
    # Terminators
    # ==========================================================================

    def _ret(self, block, term: A.Ret):
        if term.return_operand is None:
            return ir.Ret(block, 'ret void')
        return ir.Ret(block, 'ret', self.operand(term.return_operand))

    def _br(self, block, term: A.Br):
        return ir.Branch(block, 'br', [self.block(term.dest)])

    def _cond_br(self, block, term: A.CondBr):
        return ir.ConditionalBranch(block, 'br', [self.operand(term.condition),
                                                  self.block(term.true_dest),
                                                  self.block(term.false_dest)])

    def _switch(self, block, term: A.Switch):
        result = ir.SwitchInstr(block, 'switch', self.operand(term.operand),
                                self.block(term.default_dest))
        for value, dest in term.dests:
            result.add_case(self.constants.encode_constant(value), self.block(dest))
        return result

    def _unreachable(self, block, term: A.Unreachable):
        return ir.Unreachable(block)
