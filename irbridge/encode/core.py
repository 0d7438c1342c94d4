"""
Phased Encoder

Builds the live graph from a declarative Module in four globally barriered
phases. Phase N runs for every definition before phase N+1 runs for any:

1. declare: create shells and register their names
2. body attributes: type bodies, TLS, sections, COMDATs, alignment,
   function attributes, parameter names, basic-block shells
3. fill: initializers, aliasees, metadata nodes, function bodies
4. post attributes: linkage, visibility, DLL storage class, named metadata

Every definition kind maps to a tuple of four phase functions
`(definition, shell) -> shell`; a phase a kind has no work for is `keep`.
"""
import logging
from typing import Callable, Dict, Tuple

from irbridge import ast_nodes as A
from irbridge.context import EncodeState
from irbridge.errors import EncodingFailure, UnresolvedReference
from irbridge.graph import GraphModule

from irbridge.encode.types import TypesEncoder
from irbridge.encode.constants import ConstantsEncoder
from irbridge.encode.metadata import MetadataEncoder
from irbridge.encode.globals import GlobalsEncoder
from irbridge.encode.instructions import InstructionsEncoder

log = logging.getLogger(__name__)

PHASE_NAMES = ('declare', 'body attributes', 'fill', 'post attributes')

PhaseStep = Callable[[A.Definition, object], object]


def keep(definition, shell):
    """Phase step for a kind with nothing to do in that phase."""
    return shell


class Encoder:
    """Translates one declarative Module into a GraphModule."""

    def __init__(self, state: EncodeState):
        self.state = state
        self.types = TypesEncoder(self)
        self.constants = ConstantsEncoder(self)
        self.metadata = MetadataEncoder(self)
        self.globals = GlobalsEncoder(self)
        self.instructions = InstructionsEncoder(self)
        self.phases = self._phase_table()

    @property
    def module(self) -> GraphModule:
        return self.state.module

    @property
    def scope(self):
        return self.state.scope

    def _phase_table(self) -> Dict[type, Tuple[PhaseStep, PhaseStep, PhaseStep, PhaseStep]]:
        t, g, m = self.types, self.globals, self.metadata
        return {
            A.TypeDefinition: (t.declare_named_type, t.set_named_type_body, keep, keep),
            A.COMDATDefinition: (g.declare_comdat, keep, keep, keep),
            A.FunctionAttributeGroup: (g.declare_attribute_group, keep, keep, keep),
            A.InlineAssembly: (g.declare_inline_asm, keep, keep, keep),
            A.MetadataNodeDefinition: (m.declare_node, keep, m.fill_node, keep),
            A.NamedMetadataDefinition: (keep, keep, keep, m.add_named),
            A.GlobalVariable: (g.declare_variable, g.variable_attributes,
                               g.fill_variable, g.post_attributes),
            A.GlobalAlias: (g.declare_alias, g.alias_attributes,
                            g.fill_alias, g.post_attributes),
            A.Function: (g.declare_function, g.function_attributes,
                         self.instructions.fill_function, g.post_attributes),
        }

    def _steps_for(self, definition):
        try:
            return self.phases[type(definition)]
        except KeyError:
            raise EncodingFailure(f"Unknown definition {type(definition).__name__}")

    def encode(self, module_ast: A.Module) -> GraphModule:
        """Run all four phases and return the filled graph."""
        module = self.module
        module.data_layout = module_ast.data_layout or ''
        module.triple = module_ast.target_triple or ''

        definitions = module_ast.definitions
        shells = [None] * len(definitions)
        try:
            for phase, label in enumerate(PHASE_NAMES):
                log.debug("phase %d (%s) over %d definitions",
                          phase + 1, label, len(definitions))
                for i, definition in enumerate(definitions):
                    shells[i] = self._steps_for(definition)[phase](definition, shells[i])
        except (TypeError, ValueError, NameError, AssertionError) as e:
            # llvmlite.ir rejects ill-typed construction with these
            raise EncodingFailure(f"{type(e).__name__}: {e}") from e

        for kind, key in self.scope.unresolved():
            raise UnresolvedReference(kind, key)
        return module
