"""
Global value and module entity encoding.

Phase steps for COMDATs, attribute groups, module inline asm, global
variables, aliases and function shells. Function bodies are filled by
InstructionsEncoder.

Shell registration:
- COMDATs and attribute groups reuse a forward placeholder as the shell,
  so every earlier reference already holds the real object
- global values bind their ForwardValue placeholder to the new shell
"""
from typing import TYPE_CHECKING

from irbridge import ast_nodes as A
from irbridge.context import FunctionShell
from irbridge.errors import EncodingFailure
from irbridge.graph import (
    AttributeGroup, AttributeList, Comdat, Function, GlobalAlias, GlobalVariable,
)
from irbridge.keywords import (
    CALLING_CONVENTION, DLL_STORAGE_CLASS, LINKAGE, SELECTION_KIND,
    THREAD_LOCAL_MODE, UNNAMED_ADDR, VISIBILITY,
)

if TYPE_CHECKING:
    from irbridge.encode.core import Encoder


def keyword(table, member, what: str) -> str:
    """Assembly keyword for an enum member; unknown members are an error."""
    try:
        return table[member]
    except (KeyError, TypeError):
        raise EncodingFailure(f"Unknown {what} {member!r}")


class GlobalsEncoder:
    """Creates and configures module level entities."""

    def __init__(self, encoder: 'Encoder'):
        self.encoder = encoder

    @property
    def module(self):
        return self.encoder.module

    @property
    def scope(self):
        return self.encoder.scope

    @property
    def types(self):
        return self.encoder.types

    @property
    def constants(self):
        return self.encoder.constants

    def _define_global(self, name: str, value):
        placeholder = self.scope.define('global', name, value)
        if placeholder is not None:
            placeholder.target = value

    def comdat(self, name: str) -> Comdat:
        return self.scope.reference('comdat', name, lambda: Comdat(name, None))

    def attribute_group(self, group_id: int) -> AttributeGroup:
        return self.scope.reference('attribute group', group_id,
                                    lambda: AttributeGroup(group_id))

    # ------------------------------------------------------------------
    # Module entities (single phase)
    # ------------------------------------------------------------------

    def declare_comdat(self, definition: A.COMDATDefinition, shell):
        comdat = self.comdat(definition.name)
        comdat.selection_kind = keyword(SELECTION_KIND, definition.selection_kind,
                                        'COMDAT selection kind')
        self.scope.define('comdat', definition.name, comdat)
        self.module.add_comdat(comdat)
        return comdat

    def declare_attribute_group(self, definition: A.FunctionAttributeGroup, shell):
        group = self.attribute_group(definition.group_id.id)
        group.attributes = AttributeList(definition.attributes)
        self.scope.define('attribute group', definition.group_id.id, group)
        self.module.add_attribute_group(group)
        return group

    def declare_inline_asm(self, definition: A.InlineAssembly, shell):
        self.module.inline_asm.append(definition.assembly)
        return definition.assembly

    # ------------------------------------------------------------------
    # Global variables
    # ------------------------------------------------------------------

    def declare_variable(self, definition: A.GlobalVariable, shell):
        gv = GlobalVariable(self.module, self.types.encode_type(definition.type),
                            definition.name, addrspace=definition.addr_space)
        gv.global_constant = definition.is_constant
        gv.unnamed_addr = keyword(UNNAMED_ADDR, definition.unnamed_addr, 'unnamed_addr kind')
        self._define_global(definition.name, gv)
        return gv

    def variable_attributes(self, definition: A.GlobalVariable, gv):
        gv.thread_local = keyword(THREAD_LOCAL_MODE, definition.thread_local_mode,
                                  'thread local mode')
        gv.section = definition.section or ''
        if definition.comdat is not None:
            gv.comdat = self.comdat(definition.comdat)
        gv.align = definition.alignment or None
        return gv

    def fill_variable(self, definition: A.GlobalVariable, gv):
        if definition.initializer is not None:
            gv.initializer = self.constants.encode_constant(definition.initializer)
        return gv

    # ------------------------------------------------------------------
    # Aliases
    # ------------------------------------------------------------------

    def declare_alias(self, definition: A.GlobalAlias, shell):
        alias = GlobalAlias(self.module, self.types.encode_type(definition.type),
                            definition.name, addrspace=definition.addr_space)
        alias.unnamed_addr = keyword(UNNAMED_ADDR, definition.unnamed_addr,
                                     'unnamed_addr kind')
        self._define_global(definition.name, alias)
        return alias

    def alias_attributes(self, definition: A.GlobalAlias, alias):
        alias.thread_local = keyword(THREAD_LOCAL_MODE, definition.thread_local_mode,
                                     'thread local mode')
        return alias

    def fill_alias(self, definition: A.GlobalAlias, alias):
        alias.aliasee = self.constants.encode_constant(definition.aliasee)
        return alias

    # ------------------------------------------------------------------
    # Functions
    # ------------------------------------------------------------------

    def declare_function(self, definition: A.Function, shell):
        fn = Function(self.module, self.types.encode_type(definition.type),
                      definition.name)
        for arg, param in zip(fn.args, definition.parameters):
            arg.attributes = AttributeList(param.attributes)
        fn.return_value.attributes = AttributeList(definition.return_attributes)
        self._define_global(definition.name, fn)
        return FunctionShell(fn)

    def function_attributes(self, definition: A.Function, shell: FunctionShell):
        fn = shell.function
        fn.calling_convention = keyword(CALLING_CONVENTION, definition.calling_convention,
                                        'calling convention')
        fn.attributes = AttributeList(
            self.attribute_group(attr.id) if isinstance(attr, A.GroupID) else attr
            for attr in definition.function_attributes)
        fn.section = definition.section or ''
        if definition.comdat is not None:
            fn.comdat = self.comdat(definition.comdat)
        fn.align = definition.alignment
        fn.gc = definition.garbage_collector_name
        if definition.prefix is not None:
            fn.prefix = self.constants.encode_constant(definition.prefix)
        if definition.personality_function is not None:
            fn.personality = self.constants.encode_constant(definition.personality_function)
        for arg, param in zip(fn.args, definition.parameters):
            arg.name = param.name
        for block in definition.basic_blocks:
            shell.blocks.append(fn.append_basic_block(block.name))
        return shell

    # ------------------------------------------------------------------
    # Shared last phase
    # ------------------------------------------------------------------

    def post_attributes(self, definition, shell):
        value = shell.function if isinstance(shell, FunctionShell) else shell
        value.linkage = keyword(LINKAGE, definition.linkage, 'linkage')
        value.visibility = keyword(VISIBILITY, definition.visibility, 'visibility')
        value.storage_class = keyword(DLL_STORAGE_CLASS, definition.dll_storage_class,
                                      'DLL storage class')
        return shell
