"""
Graph Decoder

Walks a GraphModule and produces the equivalent declarative Module:

1. metadata node identifiers are recorded
2. pass A registers the names of global variables, aliases and functions,
   in that order, each yielding a resolver closure
3. pass B forces the resolvers in the same order
4. module level entities are collected and the struct types touched on the
   way are emitted as TypeDefinitions

The graph is only read; decoding never mutates or disposes it.
"""
import logging

from llvmlite import ir

from irbridge import ast_nodes as A
from irbridge.context import DecodeState
from irbridge.graph import GlobalAlias

from irbridge.decode.types import TypesDecoder
from irbridge.decode.constants import ConstantsDecoder
from irbridge.decode.metadata import MetadataDecoder
from irbridge.decode.globals import GlobalsDecoder
from irbridge.decode.instructions import InstructionsDecoder

log = logging.getLogger(__name__)


class Decoder:
    """Translates one GraphModule into a declarative Module."""

    def __init__(self, state: DecodeState):
        self.state = state
        self.types = TypesDecoder(self)
        self.constants = ConstantsDecoder(self)
        self.metadata = MetadataDecoder(self)
        self.globals = GlobalsDecoder(self)
        self.instructions = InstructionsDecoder(self)

    @property
    def module(self):
        return self.state.module

    @property
    def scope(self):
        return self.state.scope

    def _storage_order(self):
        values = list(self.module.globals.values())
        variables = [v for v in values if isinstance(v, ir.GlobalVariable)]
        aliases = [v for v in values if isinstance(v, GlobalAlias)]
        functions = [v for v in values if isinstance(v, ir.Function)]
        return variables + aliases + functions

    def decode(self) -> A.Module:
        module = self.module
        self.metadata.record_ids()
        self.types.seed()

        resolvers = [self.globals.register(v) for v in self._storage_order()]
        log.debug("registered %d global names", len(resolvers))
        values = [resolve() for resolve in resolvers]

        # Metadata may reach struct types too; decode it before type bodies
        named_metadata = self.metadata.named_definitions()
        metadata_nodes = self.metadata.node_definitions()
        definitions = (self.types.type_definitions()
                       + self.globals.inline_assembly()
                       + values
                       + named_metadata
                       + metadata_nodes
                       + self.globals.attribute_groups()
                       + self.globals.comdats())

        return A.Module(
            name=module.name,
            source_file_name=getattr(module, 'source_filename', module.name),
            data_layout=module.data_layout or None,
            target_triple=module.triple or None,
            definitions=tuple(definitions),
        )
