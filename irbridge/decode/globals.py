"""
Global value decoding.

Each global is handled in two steps. `register` binds its name in the
scope table, keyed by the identity of the graph object, and returns a
resolver closure; forcing the resolver decodes the body. All names are
registered before any resolver runs, so a reference to a later global
resolves by lookup.
"""
import logging
from typing import TYPE_CHECKING, Callable, Optional

from llvmlite import ir

from irbridge import ast_nodes as A
from irbridge.errors import MalformedNativeGraph
from irbridge.graph import AttributeGroup, GlobalAlias
from irbridge.keywords import (
    CALLING_CONVENTION, DLL_STORAGE_CLASS, LINKAGE, SELECTION_KIND,
    THREAD_LOCAL_MODE, UNNAMED_ADDR, VISIBILITY, reverse,
)

if TYPE_CHECKING:
    from irbridge.decode.core import Decoder

log = logging.getLogger(__name__)

_LINKAGE = reverse(LINKAGE)
_LINKAGE[''] = A.Linkage.EXTERNAL
_VISIBILITY = reverse(VISIBILITY)
_DLL_STORAGE_CLASS = reverse(DLL_STORAGE_CLASS)
_THREAD_LOCAL_MODE = reverse(THREAD_LOCAL_MODE)
_UNNAMED_ADDR = reverse(UNNAMED_ADDR)
_SELECTION_KIND = reverse(SELECTION_KIND)
_CALLING_CONVENTION = reverse(CALLING_CONVENTION)

Resolver = Callable[[], A.Definition]


def member(table, keyword, what: str):
    """Enum member for a printed keyword; unknown keywords are malformed."""
    try:
        return table[keyword]
    except (KeyError, TypeError):
        raise MalformedNativeGraph(f"Unknown {what} '{keyword}'")


def _optional(text: Optional[str]) -> Optional[str]:
    return text or None


class GlobalsDecoder:
    """Converts global variables, aliases, functions and module entities."""

    def __init__(self, decoder: 'Decoder'):
        self.decoder = decoder

    @property
    def module(self):
        return self.decoder.module

    @property
    def scope(self):
        return self.decoder.scope

    @property
    def types(self):
        return self.decoder.types

    @property
    def constants(self):
        return self.decoder.constants

    def register(self, value: ir.GlobalValue) -> Resolver:
        self.scope.define('global', id(value), value.name)
        log.debug("registered global %s", value.name)
        if isinstance(value, ir.GlobalVariable):
            return lambda: self.variable(value)
        if isinstance(value, GlobalAlias):
            return lambda: self.alias(value)
        if isinstance(value, ir.Function):
            return lambda: self.decoder.instructions.function(value)
        raise MalformedNativeGraph(f"Unsupported global value {value!r}")

    # ------------------------------------------------------------------
    # Shared attributes
    # ------------------------------------------------------------------

    def linkage(self, value) -> A.Linkage:
        return member(_LINKAGE, value.linkage, 'linkage')

    def visibility(self, value) -> A.Visibility:
        return member(_VISIBILITY, getattr(value, 'visibility', ''), 'visibility')

    def dll_storage_class(self, value):
        return member(_DLL_STORAGE_CLASS, value.storage_class, 'DLL storage class')

    def thread_local_mode(self, value):
        return member(_THREAD_LOCAL_MODE, getattr(value, 'thread_local', ''),
                      'thread local mode')

    def unnamed_addr(self, value):
        return member(_UNNAMED_ADDR, value.unnamed_addr or '', 'unnamed_addr kind')

    def comdat(self, value) -> Optional[str]:
        comdat = getattr(value, 'comdat', None)
        return None if comdat is None else comdat.name

    # ------------------------------------------------------------------
    # Definitions
    # ------------------------------------------------------------------

    def variable(self, gv: ir.GlobalVariable) -> A.GlobalVariable:
        initializer = None
        if gv.initializer is not None:
            initializer = self.constants.decode_constant(gv.initializer)
        return A.GlobalVariable(
            name=gv.name,
            type=self.types.decode_type(gv.value_type),
            initializer=initializer,
            linkage=self.linkage(gv),
            visibility=self.visibility(gv),
            dll_storage_class=self.dll_storage_class(gv),
            thread_local_mode=self.thread_local_mode(gv),
            addr_space=gv.addrspace,
            unnamed_addr=self.unnamed_addr(gv),
            is_constant=gv.global_constant,
            section=_optional(gv.section),
            comdat=self.comdat(gv),
            alignment=gv.align or 0,
        )

    def alias(self, alias: GlobalAlias) -> A.GlobalAlias:
        if alias.aliasee is None:
            raise MalformedNativeGraph(f"Alias '{alias.name}' has no aliasee")
        return A.GlobalAlias(
            name=alias.name,
            type=self.types.decode_type(alias.value_type),
            aliasee=self.constants.decode_constant(alias.aliasee),
            linkage=self.linkage(alias),
            visibility=self.visibility(alias),
            dll_storage_class=self.dll_storage_class(alias),
            thread_local_mode=self.thread_local_mode(alias),
            unnamed_addr=self.unnamed_addr(alias),
            addr_space=alias.addrspace,
        )

    def calling_convention(self, cconv) -> A.CallingConvention:
        return member(_CALLING_CONVENTION, cconv or '', 'calling convention')

    def function_attribute(self, attr):
        if isinstance(attr, AttributeGroup):
            return A.GroupID(attr.group_id)
        return str(attr)

    # ------------------------------------------------------------------
    # Module entities
    # ------------------------------------------------------------------

    def inline_assembly(self):
        return [A.InlineAssembly(asm) for asm in getattr(self.module, 'inline_asm', ())]

    def attribute_groups(self):
        groups = getattr(self.module, 'attribute_groups', {})
        return [A.FunctionAttributeGroup(A.GroupID(group_id), tuple(group.attributes))
                for group_id, group in groups.items()]

    def comdats(self):
        comdats = getattr(self.module, 'comdats', {})
        return [A.COMDATDefinition(name, member(_SELECTION_KIND, c.selection_kind,
                                                'COMDAT selection kind'))
                for name, c in comdats.items()]
