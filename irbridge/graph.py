"""
Live IR Graph

The mutable graph the encoder builds and the decoder walks. It is an
llvmlite.ir module extended with the constructs llvmlite.ir does not model:

Module level:
- GraphModule: private type context, source_filename, COMDATs, attribute
  groups, module inline asm, metadata use replacement
- Comdat / AttributeGroup: named module entities referenced by globals

Global values (all typed as opaque pointers):
- GlobalVariable: visibility, thread-local mode, unnamed_addr kind, COMDAT
- GlobalAlias: alias with its aliasee constant
- Function: raw attribute lists, visibility, COMDAT, alignment, gc, prefix
  data, personality

Placeholders and wrappers:
- ForwardValue: stands in for a value referenced before definition
- TemporaryMDNode: stands in for a metadata node until its real node exists
- ConstantExpr: structured getelementptr / cast constant expression
- Callee: call target paired with the function type it is called through
"""
import re
from typing import Dict, List as PyList, Optional

from llvmlite import ir

from irbridge.errors import EncodingFailure

_SIMPLE_NAME = re.compile(r"[-a-zA-Z$._][-a-zA-Z$._0-9]*$")


def quote(text: str) -> str:
    """Quote a string for LLVM assembly, hex-escaping unprintable bytes."""
    out = []
    for ch in text.encode('utf8'):
        if 32 <= ch < 127 and ch not in (34, 92):
            out.append(chr(ch))
        else:
            out.append('\\%02X' % ch)
    return '"%s"' % ''.join(out)


def format_name(prefix: str, name: str) -> str:
    if _SIMPLE_NAME.match(name):
        return prefix + name
    return prefix + quote(name)


def _words(*parts) -> str:
    return ' '.join(p for p in parts if p)


class AttributeList(list):
    """Attribute keywords printed verbatim, in insertion order.

    Stands in for llvmlite's AttributeSet, which only accepts a fixed set
    of attribute names.
    """

    def _to_list(self, typ=None):
        return [str(a) for a in self]


# ============================================================================
# Module Level Entities
# ============================================================================

class Comdat:
    """A COMDAT group: `$name = comdat <selection kind>`."""

    def __init__(self, name: str, selection_kind: Optional[str]):
        self.name = name
        self.selection_kind = selection_kind

    def get_reference(self) -> str:
        return format_name('$', self.name)

    def __str__(self):
        return '%s = comdat %s' % (self.get_reference(), self.selection_kind)


class AttributeGroup:
    """Function attributes shared through a `#N` reference."""

    def __init__(self, group_id: int, attributes=()):
        self.group_id = group_id
        self.attributes = AttributeList(attributes)

    def __str__(self):
        return '#%d' % self.group_id

    def get_declaration(self) -> str:
        return 'attributes #%d = { %s }' % (self.group_id,
                                            ' '.join(self.attributes))


class GraphModule(ir.Module):
    """An llvmlite module carrying the extra module level state."""

    def __init__(self, name: str = '', source_filename: Optional[str] = None):
        # Identified struct types are scoped to the module
        super().__init__(name=name, context=ir.Context())
        self.source_filename = name if source_filename is None else source_filename
        self.triple = ''
        self.comdats: Dict[str, Comdat] = {}
        self.attribute_groups: Dict[int, AttributeGroup] = {}
        self.inline_asm: PyList[str] = []

    def add_comdat(self, comdat: Comdat):
        if comdat.name in self.comdats:
            raise EncodingFailure(f"COMDAT '{comdat.name}' is defined more than once")
        self.comdats[comdat.name] = comdat

    def add_attribute_group(self, group: AttributeGroup):
        if group.group_id in self.attribute_groups:
            raise EncodingFailure(
                f"Attribute group #{group.group_id} is defined more than once")
        self.attribute_groups[group.group_id] = group

    def replace_metadata_uses(self, old, new):
        """Rewire every use of metadata node *old* to *new*.

        Covers node operands, named metadata and the attachments of global
        values and instructions. Nodes are matched by identity.
        """
        for node in self.metadata:
            if any(op is old for op in node.operands):
                node.operands = tuple(new if op is old else op
                                      for op in node.operands)
                node._clear_string_cache()
        for named in self.namedmetadata.values():
            named.operands = [new if op is old else op for op in named.operands]
        for value in self.globals.values():
            _replace_attachment(value, old, new)
            for block in getattr(value, 'blocks', ()):
                for instr in block.instructions:
                    _replace_attachment(instr, old, new)

    def __repr__(self):
        lines = ["; ModuleID = '%s'" % (self.name,),
                 'source_filename = %s' % quote(self.source_filename)]
        if self.data_layout:
            lines.append('target datalayout = %s' % quote(self.data_layout))
        if self.triple:
            lines.append('target triple = %s' % quote(self.triple))
        lines.append('')
        for asm in self.inline_asm:
            lines += ['module asm %s' % quote(line) for line in asm.split('\n')]
        lines += [str(c) for c in self.comdats.values()]
        lines += self._get_body_lines()
        lines += [g.get_declaration() for g in self.attribute_groups.values()]
        lines += self._get_metadata_lines()
        return "\n".join(lines)


def _replace_attachment(holder, old, new):
    changed = False
    for kind, node in list(holder.metadata.items()):
        if node is old:
            holder.metadata[kind] = new
            changed = True
    if changed:
        holder._clear_string_cache()


# ============================================================================
# Global Values
# ============================================================================

class GlobalVariable(ir.GlobalVariable):
    """A global variable typed as an opaque pointer."""

    def __init__(self, module: GraphModule, typ: ir.Type, name: str,
                 addrspace: int = 0):
        super().__init__(module, typ, name, addrspace=addrspace)
        self.type = ir.PointerType(addrspace=addrspace)
        self.visibility = ''
        self.thread_local = ''
        self.unnamed_addr = ''
        self.comdat: Optional[Comdat] = None

    def descr(self, buf):
        linkage = self.linkage
        if self.initializer is None and not linkage:
            linkage = 'external'
        elif self.initializer is not None and linkage == 'external':
            linkage = ''
        addrspace = 'addrspace(%d)' % self.addrspace if self.addrspace else ''
        kind = 'constant' if self.global_constant else 'global'
        init = self.initializer.get_reference() if self.initializer is not None else ''
        buf.append(_words(linkage, self.visibility, self.storage_class,
                          self.thread_local, self.unnamed_addr, addrspace,
                          kind, str(self.value_type), init))
        if self.section:
            buf.append(', section %s' % quote(self.section))
        if self.comdat is not None:
            buf.append(', comdat(%s)' % self.comdat.get_reference())
        if self.align:
            buf.append(', align %d' % self.align)
        if self.metadata:
            buf.append(self._stringify_metadata(leading_comma=True))
        buf.append("\n")

    def __str__(self):
        # Attributes keep changing until the last phase, never cache
        return self._to_string()


class GlobalAlias(ir.GlobalValue):
    """`@name = alias <type>, ptr <aliasee>`."""

    def __init__(self, module: GraphModule, value_type: ir.Type, name: str,
                 addrspace: int = 0):
        super().__init__(module, ir.PointerType(addrspace=addrspace), name=name)
        self.value_type = value_type
        self.addrspace = addrspace
        self.aliasee = None
        self.visibility = ''
        self.thread_local = ''
        self.unnamed_addr = ''
        self.parent.add_global(self)

    def descr(self, buf):
        linkage = '' if self.linkage == 'external' else self.linkage
        buf.append(_words(linkage, self.visibility, self.storage_class,
                          self.thread_local, self.unnamed_addr, 'alias'))
        buf.append(' %s, %s %s\n' % (self.value_type, self.aliasee.type,
                                     self.aliasee.get_reference()))

    def __str__(self):
        return self._to_string()


class Function(ir.Function):
    """A function typed as an opaque pointer, with raw attribute lists."""

    def __init__(self, module: GraphModule, ftype: ir.FunctionType, name: str):
        super().__init__(module, ftype, name)
        self.type = ir.PointerType()
        self.attributes = AttributeList()
        self.return_value.attributes = AttributeList()
        for arg in self.args:
            arg.attributes = AttributeList()
        self.visibility = ''
        self.comdat: Optional[Comdat] = None
        self.align = 0
        self.gc: Optional[str] = None
        self.prefix = None
        self.personality = None

    @property
    def function_type(self):
        return self.ftype

    def descr_prototype(self, buf):
        state = "define" if self.blocks else "declare"
        linkage = '' if self.linkage == 'external' else self.linkage
        args = ", ".join(str(a) for a in self.args)
        if self.args:
            vararg = ', ...' if self.ftype.var_arg else ''
        else:
            vararg = '...' if self.ftype.var_arg else ''
        head = _words(state, linkage, self.visibility, self.storage_class,
                      self.calling_convention, str(self.return_value))
        tail = [' '.join(self.attributes._to_list())]
        if self.section:
            tail.append('section %s' % quote(self.section))
        if self.comdat is not None:
            tail.append('comdat(%s)' % self.comdat.get_reference())
        if self.align:
            tail.append('align %d' % self.align)
        if self.gc:
            tail.append('gc %s' % quote(self.gc))
        if self.prefix is not None:
            tail.append('prefix %s %s' % (self.prefix.type,
                                          self.prefix.get_reference()))
        if self.personality is not None:
            tail.append('personality %s %s' % (self.personality.type,
                                               self.personality.get_reference()))
        tail.append(self._stringify_metadata())
        tail = _words(*tail)
        buf.append("{0} {1}({2}{3}){4}\n".format(
            head, self.get_reference(), args, vararg,
            ' ' + tail if tail else ''))


# ============================================================================
# Placeholders and Wrappers
# ============================================================================

class ForwardValue(ir.Value):
    """A value referenced before it is defined.

    Instructions capture this object itself; binding `target` later makes
    every earlier reference print as the real value.
    """

    def __init__(self, typ: ir.Type, name: str, name_prefix: str = '%'):
        self.type = typ
        self.name = name
        self.name_prefix = name_prefix
        self.target = None

    @property
    def resolved(self) -> bool:
        return self.target is not None

    def get_reference(self) -> str:
        if self.target is not None:
            return self.target.get_reference()
        return format_name(self.name_prefix, self.name)

    def __str__(self):
        return '{0} {1}'.format(self.type, self.get_reference())


def unwrap(value):
    """Follow bound forward placeholders to the value they stand for."""
    while isinstance(value, ForwardValue) and value.target is not None:
        value = value.target
    return value


class TemporaryMDNode(ir.Value):
    """Metadata placeholder replaced through GraphModule.replace_metadata_uses."""

    def __init__(self, md_id: int):
        self.type = ir.MetaDataType()
        self.md_id = md_id

    def get_reference(self) -> str:
        return '!%d' % self.md_id


class MetadataNode(ir.MDValue):
    """A metadata node numbered by its id.

    Metadata ids live outside the global value namespace, so the number is
    not registered in the module's NameScope: a global named `@0` keeps its
    name and the node still prints as `!0`.
    """

    def _set_name(self, name):
        self._name = name


class ConstantExpr(ir.Value):
    """A constant getelementptr or cast expression."""

    def __init__(self, typ: ir.Type, opcode: str, operands,
                 source_etype: Optional[ir.Type] = None, in_bounds: bool = False):
        self.type = typ
        self.opcode = opcode
        self.operands = tuple(operands)
        self.source_etype = source_etype
        self.in_bounds = in_bounds

    def get_reference(self) -> str:
        if self.opcode == 'getelementptr':
            op = 'getelementptr inbounds' if self.in_bounds else 'getelementptr'
            args = ', '.join('{0} {1}'.format(o.type, o.get_reference())
                             for o in self.operands)
            return '{0} ({1}, {2})'.format(op, self.source_etype, args)
        [operand] = self.operands
        return '{0} ({1} {2} to {3})'.format(self.opcode, operand.type,
                                             operand.get_reference(), self.type)

    def __str__(self):
        return '{0} {1}'.format(self.type, self.get_reference())


class Callee(ir.Value):
    """Call target with the function type used at the call site."""

    def __init__(self, value, ftype: ir.FunctionType):
        self.value = value
        self.type = value.type
        self.function_type = ftype

    def get_reference(self) -> str:
        return self.value.get_reference()
