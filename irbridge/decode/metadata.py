"""
Metadata decoding.

Node identifiers are recorded before anything else is decoded, so a node
operand or an attachment decodes to an MDNodeReference by table lookup and
a cycle between nodes never recurses.
"""
from typing import TYPE_CHECKING, List

from llvmlite import ir

from irbridge import ast_nodes as A
from irbridge.errors import MalformedNativeGraph

if TYPE_CHECKING:
    from irbridge.decode.core import Decoder


class MetadataDecoder:
    """Converts metadata nodes, named metadata and attachments."""

    def __init__(self, decoder: 'Decoder'):
        self.decoder = decoder

    @property
    def module(self):
        return self.decoder.module

    @property
    def ids(self):
        return self.decoder.state.metadata_ids

    def record_ids(self):
        for node in self.module.metadata:
            try:
                md_id = int(node.name)
            except (AttributeError, ValueError):
                raise MalformedNativeGraph(f"Metadata node {node!r} has no numeric id")
            self.ids[id(node)] = md_id

    def node_id(self, node) -> int:
        try:
            return self.ids[id(node)]
        except KeyError:
            raise MalformedNativeGraph(f"Metadata node {node!r} is not in the module")

    def decode_operand(self, operand):
        if isinstance(operand, ir.MetaDataString):
            return A.MDString(operand.string)
        if isinstance(operand, ir.MDValue):
            return A.MDNodeReference(self.node_id(operand))
        if isinstance(operand, ir.Constant) and isinstance(operand.type, ir.MetaDataType):
            if operand.constant is not None:
                raise MalformedNativeGraph(f"Unexpected metadata constant {operand!r}")
            return None
        return A.MDConstant(self.decoder.constants.decode_constant(operand))

    def attachments(self, holder) -> A.MetadataAttachments:
        return tuple((kind, self.node_id(node))
                     for kind, node in holder.metadata.items())

    def node_definitions(self) -> List[A.MetadataNodeDefinition]:
        return [A.MetadataNodeDefinition(self.node_id(node),
                                         tuple(self.decode_operand(op)
                                               for op in node.operands))
                for node in self.module.metadata]

    def named_definitions(self) -> List[A.NamedMetadataDefinition]:
        return [A.NamedMetadataDefinition(name, tuple(self.node_id(op)
                                                      for op in named.operands))
                for name, named in self.module.namedmetadata.items()]
