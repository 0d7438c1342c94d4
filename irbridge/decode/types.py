"""
Type decoding: llvmlite.ir type -> declarative Type.

Identified struct types decode to a NamedTypeReference; the struct itself
is recorded in DecodeState.struct_types and emitted as a TypeDefinition
once decoding is complete.
"""
from typing import TYPE_CHECKING, List

from llvmlite import ir

from irbridge import ast_nodes as A
from irbridge.errors import MalformedNativeGraph

if TYPE_CHECKING:
    from irbridge.decode.core import Decoder

_FLOAT_FORMATS = {
    ir.HalfType: A.FloatingPointFormat.HALF,
    ir.FloatType: A.FloatingPointFormat.FLOAT,
    ir.DoubleType: A.FloatingPointFormat.DOUBLE,
}


class TypesDecoder:
    """Converts graph types back to declarative types."""

    def __init__(self, decoder: 'Decoder'):
        self.decoder = decoder

    @property
    def state(self):
        return self.decoder.state

    def float_format(self, typ: ir.Type) -> A.FloatingPointFormat:
        try:
            return _FLOAT_FORMATS[type(typ)]
        except KeyError:
            raise MalformedNativeGraph(f"'{typ}' is not a floating point type")

    def seed(self):
        """Record every identified struct of the graph's type context."""
        for ty in self.state.module.context.identified_types.values():
            self.state.struct_types.setdefault(id(ty), ty)

    def decode_type(self, typ: ir.Type) -> A.Type:
        if isinstance(typ, ir.IntType):
            return A.IntegerType(typ.width)
        if isinstance(typ, ir.PointerType):
            return A.PointerType(typ.addrspace)
        if isinstance(typ, ir.IdentifiedStructType):
            self.state.struct_types.setdefault(id(typ), typ)
            return A.NamedTypeReference(typ.name)
        if isinstance(typ, ir.VoidType):
            return A.VoidType()
        if type(typ) in _FLOAT_FORMATS:
            return A.FloatingPointType(self.float_format(typ))
        if isinstance(typ, ir.FunctionType):
            return A.FunctionType(self.decode_type(typ.return_type),
                                  tuple(self.decode_type(t) for t in typ.args),
                                  typ.var_arg)
        if isinstance(typ, ir.LiteralStructType):
            return A.StructureType(typ.packed,
                                   tuple(self.decode_type(t) for t in typ.elements))
        if isinstance(typ, ir.ArrayType):
            return A.ArrayType(typ.count, self.decode_type(typ.element))
        if isinstance(typ, ir.VectorType):
            return A.VectorType(typ.count, self.decode_type(typ.element))
        if isinstance(typ, ir.MetaDataType):
            return A.MetadataType()
        if isinstance(typ, ir.LabelType):
            return A.LabelType()
        raise MalformedNativeGraph(f"Unsupported type '{typ}'")

    def type_definitions(self) -> List[A.TypeDefinition]:
        """TypeDefinitions for every struct seen, in first-seen order.

        Decoding a body can reach structs not seen before, so the table is
        walked until it stops growing.
        """
        definitions = []
        done = 0
        while done < len(self.state.struct_types):
            ty = list(self.state.struct_types.values())[done]
            done += 1
            if ty.is_opaque:
                definitions.append(A.TypeDefinition(ty.name))
                continue
            body = A.StructureType(ty.packed,
                                   tuple(self.decode_type(t) for t in ty.elements))
            definitions.append(A.TypeDefinition(ty.name, body))
        return definitions
