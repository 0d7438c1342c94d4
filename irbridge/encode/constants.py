"""
Constant encoding.

Scalars and aggregates become llvmlite.ir Constants, global references
resolve through the scope table, and constant expressions become
graph.ConstantExpr nodes.
"""
from typing import TYPE_CHECKING

from llvmlite import ir

from irbridge import ast_nodes as A
from irbridge.errors import EncodingFailure
from irbridge.graph import ConstantExpr, ForwardValue
from irbridge.keywords import CONSTANT_CAST_OPCODES

if TYPE_CHECKING:
    from irbridge.encode.core import Encoder


class ConstantsEncoder:
    """Converts declarative constants to graph values."""

    def __init__(self, encoder: 'Encoder'):
        self.encoder = encoder

    @property
    def types(self):
        return self.encoder.types

    @property
    def scope(self):
        return self.encoder.scope

    def global_value(self, name: str):
        """The global called *name*, or its forward placeholder."""
        return self.scope.reference(
            'global', name, lambda: ForwardValue(ir.PointerType(), name, '@'))

    def encode_constant(self, const: A.Constant):
        if isinstance(const, A.Int):
            return ir.Constant(ir.IntType(const.bits), const.value)
        if isinstance(const, A.GlobalReference):
            return self.global_value(const.name)
        if isinstance(const, A.Float):
            fmt = A.FloatingPointType(const.format)
            return ir.Constant(self.types.encode_type(fmt), const.value)
        if isinstance(const, (A.Null, A.AggregateZero)):
            return ir.Constant(self.types.encode_type(const.type), None)
        if isinstance(const, A.Undef):
            return ir.Constant(self.types.encode_type(const.type), ir.Undefined)
        if isinstance(const, A.Struct):
            members = [self.encode_constant(m) for m in const.member_values]
            if const.type_name is None:
                ty = ir.LiteralStructType([m.type for m in members],
                                          packed=const.is_packed)
            else:
                ty = self.types.named_type(const.type_name)
            return ir.Constant(ty, members)
        if isinstance(const, A.Array):
            members = [self.encode_constant(m) for m in const.member_values]
            ty = ir.ArrayType(self.types.encode_type(const.element_type), len(members))
            return ir.Constant(ty, members)
        if isinstance(const, A.Vector):
            members = [self.encode_constant(m) for m in const.member_values]
            if not members:
                raise EncodingFailure("Vector constant needs at least one element")
            return ir.Constant(ir.VectorType(members[0].type, len(members)), members)
        if isinstance(const, A.GetElementPtrConstant):
            address = self.encode_constant(const.address)
            indices = [self.encode_constant(i) for i in const.indices]
            return ConstantExpr(address.type, 'getelementptr', [address] + indices,
                                source_etype=self.types.encode_type(const.element_type),
                                in_bounds=const.in_bounds)
        if isinstance(const, A.CastConstant):
            if const.opcode not in CONSTANT_CAST_OPCODES:
                raise EncodingFailure(f"Unsupported constant cast '{const.opcode}'")
            return ConstantExpr(self.types.encode_type(const.type), const.opcode,
                                [self.encode_constant(const.operand)])
        raise EncodingFailure(f"Cannot encode constant {const!r}")
