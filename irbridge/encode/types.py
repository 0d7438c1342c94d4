"""
Type encoding.

- encode_type: declarative Type -> llvmlite.ir type
- named_type: identified struct lookup, creating a forward placeholder
- declare_named_type / set_named_type_body: TypeDefinition phases
"""
from typing import TYPE_CHECKING

from llvmlite import ir

from irbridge import ast_nodes as A
from irbridge.errors import EncodingFailure

if TYPE_CHECKING:
    from irbridge.encode.core import Encoder

_FLOAT_TYPES = {
    A.FloatingPointFormat.HALF: ir.HalfType,
    A.FloatingPointFormat.FLOAT: ir.FloatType,
    A.FloatingPointFormat.DOUBLE: ir.DoubleType,
}


class TypesEncoder:
    """Converts declarative types to graph types."""

    def __init__(self, encoder: 'Encoder'):
        """Initialize with reference to parent Encoder instance."""
        self.encoder = encoder

    @property
    def module(self):
        return self.encoder.module

    @property
    def scope(self):
        return self.encoder.scope

    def encode_type(self, typ: A.Type) -> ir.Type:
        if isinstance(typ, A.IntegerType):
            return ir.IntType(typ.bits)
        if isinstance(typ, A.PointerType):
            return ir.PointerType(addrspace=typ.addr_space)
        if isinstance(typ, A.NamedTypeReference):
            return self.named_type(typ.name)
        if isinstance(typ, A.VoidType):
            return ir.VoidType()
        if isinstance(typ, A.FloatingPointType):
            if typ.format not in _FLOAT_TYPES:
                raise EncodingFailure(f"Unknown floating point format {typ.format!r}")
            return _FLOAT_TYPES[typ.format]()
        if isinstance(typ, A.FunctionType):
            return ir.FunctionType(self.encode_type(typ.result_type),
                                   [self.encode_type(t) for t in typ.argument_types],
                                   var_arg=typ.is_var_arg)
        if isinstance(typ, A.StructureType):
            return ir.LiteralStructType([self.encode_type(t) for t in typ.element_types],
                                        packed=typ.is_packed)
        if isinstance(typ, A.ArrayType):
            return ir.ArrayType(self.encode_type(typ.element_type), typ.n_elements)
        if isinstance(typ, A.VectorType):
            return ir.VectorType(self.encode_type(typ.element_type), typ.n_elements)
        if isinstance(typ, A.MetadataType):
            return ir.MetaDataType()
        if isinstance(typ, A.LabelType):
            return ir.LabelType()
        raise EncodingFailure(f"Cannot encode type {typ!r}")

    def named_type(self, name: str) -> ir.IdentifiedStructType:
        # The opaque identified struct is its own placeholder: declaring the
        # name later returns the very same object from the context.
        context = self.module.context
        return self.scope.reference('type', name,
                                    lambda: context.get_identified_type(name))

    # ------------------------------------------------------------------
    # TypeDefinition phases
    # ------------------------------------------------------------------

    def declare_named_type(self, definition: A.TypeDefinition, shell):
        ty = self.module.context.get_identified_type(definition.name)
        self.scope.define('type', definition.name, ty)
        return ty

    def set_named_type_body(self, definition: A.TypeDefinition, ty):
        body = definition.type
        if body is None:
            return ty
        if not isinstance(body, A.StructureType):
            raise EncodingFailure(
                f"Named type '{definition.name}' must have a structure body")
        ty.set_body(*[self.encode_type(t) for t in body.element_types])
        ty.packed = body.is_packed
        return ty
