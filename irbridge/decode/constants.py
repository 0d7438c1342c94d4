"""
Constant decoding: llvmlite.ir constants and graph constant expressions ->
declarative Constants.

A null constant decodes by its type: `Null` for pointers, `Int(bits, 0)`
for integers, `AggregateZero` otherwise.
"""
from typing import TYPE_CHECKING

from llvmlite import ir

from irbridge import ast_nodes as A
from irbridge.errors import MalformedNativeGraph
from irbridge.graph import ConstantExpr, unwrap

if TYPE_CHECKING:
    from irbridge.decode.core import Decoder


class ConstantsDecoder:
    """Converts graph constants back to declarative constants."""

    def __init__(self, decoder: 'Decoder'):
        self.decoder = decoder

    @property
    def types(self):
        return self.decoder.types

    def global_name(self, value: ir.GlobalValue) -> str:
        entry = self.decoder.scope.lookup('global', id(value))
        if entry is None:
            raise MalformedNativeGraph(
                f"Global '{value.name}' does not belong to the decoded module")
        return entry.handle

    def decode_constant(self, value) -> A.Constant:
        value = unwrap(value)
        if isinstance(value, ir.GlobalValue):
            return A.GlobalReference(self.global_name(value))
        if isinstance(value, ConstantExpr):
            return self._constant_expr(value)
        if not isinstance(value, ir.Constant):
            raise MalformedNativeGraph(f"Expected a constant, got {value!r}")

        typ = value.type
        raw = value.constant
        if raw is ir.Undefined:
            return A.Undef(self.types.decode_type(typ))
        if raw is None:
            if isinstance(typ, ir.PointerType):
                return A.Null(self.types.decode_type(typ))
            if isinstance(typ, ir.IntType):
                return A.Int(typ.width, 0)
            return A.AggregateZero(self.types.decode_type(typ))
        if isinstance(typ, ir.IntType):
            return A.Int(typ.width, raw)
        if isinstance(typ, (ir.HalfType, ir.FloatType, ir.DoubleType)):
            return A.Float(self.types.float_format(typ), raw)
        if isinstance(typ, ir.IdentifiedStructType):
            self.types.decode_type(typ)
            return A.Struct(typ.name, typ.packed, self._members(raw))
        if isinstance(typ, ir.LiteralStructType):
            return A.Struct(None, typ.packed, self._members(raw))
        if isinstance(typ, ir.ArrayType) and isinstance(raw, (bytes, bytearray)):
            return A.Array(A.IntegerType(8), tuple(A.Int(8, b) for b in raw))
        if isinstance(typ, ir.ArrayType):
            return A.Array(self.types.decode_type(typ.element), self._members(raw))
        if isinstance(typ, ir.VectorType):
            return A.Vector(self._members(raw))
        raise MalformedNativeGraph(f"Unsupported constant of type '{typ}'")

    def _members(self, raw):
        if not isinstance(raw, (list, tuple)):
            raise MalformedNativeGraph(f"Aggregate constant holds {raw!r}")
        return tuple(self.decode_constant(m) for m in raw)

    def _constant_expr(self, expr: ConstantExpr) -> A.Constant:
        if expr.opcode == 'getelementptr':
            address, *indices = expr.operands
            return A.GetElementPtrConstant(
                expr.in_bounds, self.types.decode_type(expr.source_etype),
                self.decode_constant(address),
                tuple(self.decode_constant(i) for i in indices))
        [operand] = expr.operands
        return A.CastConstant(expr.opcode, self.decode_constant(operand),
                              self.types.decode_type(expr.type))
