"""
Metadata encoding.

Metadata nodes may reference each other in cycles. Phase 1 registers a
TemporaryMDNode per node id; phase 3 builds the real node and rewires every
use of the temporary to it. Named metadata is attached in phase 4, once all
real nodes exist.
"""
import logging
from typing import TYPE_CHECKING

from llvmlite import ir

from irbridge import ast_nodes as A
from irbridge.errors import EncodingFailure
from irbridge.graph import MetadataNode, TemporaryMDNode

if TYPE_CHECKING:
    from irbridge.encode.core import Encoder

log = logging.getLogger(__name__)


class MetadataEncoder:
    """Builds metadata nodes and named metadata."""

    def __init__(self, encoder: 'Encoder'):
        self.encoder = encoder

    @property
    def module(self):
        return self.encoder.module

    @property
    def scope(self):
        return self.encoder.scope

    def node(self, md_id: int):
        """The node with *md_id*: real if already filled, else its temporary."""
        return self.scope.reference('metadata', md_id,
                                    lambda: TemporaryMDNode(md_id))

    def encode_operand(self, operand):
        if operand is None:
            return ir.Constant(ir.MetaDataType(), None)
        if isinstance(operand, A.MDString):
            return ir.MetaDataString(self.module, operand.value)
        if isinstance(operand, A.MDNodeReference):
            return self.node(operand.id)
        if isinstance(operand, A.MDConstant):
            return self.encoder.constants.encode_constant(operand.constant)
        raise EncodingFailure(f"Cannot encode metadata operand {operand!r}")

    def declare_node(self, definition: A.MetadataNodeDefinition, shell):
        return self.node(definition.id)

    def fill_node(self, definition: A.MetadataNodeDefinition, temporary):
        operands = [self.encode_operand(op) for op in definition.operands]
        # Built directly: Module.add_metadata would merge equal operand lists
        node = MetadataNode(self.module, operands, name=str(definition.id))
        placeholder = self.scope.define('metadata', definition.id, node)
        if placeholder is not None:
            self.module.replace_metadata_uses(placeholder, node)
            log.debug("replaced temporary metadata !%d", definition.id)
        return node

    def add_named(self, definition: A.NamedMetadataDefinition, shell):
        named = self.module.add_named_metadata(definition.name)
        for md_id in definition.node_ids:
            named.add(self.node(md_id))
        return named
