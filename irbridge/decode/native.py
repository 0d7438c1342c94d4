"""
Native Decoder

Decodes a llvmlite.binding.ModuleRef (parsed from assembly or bitcode, or
produced by linking) into a declarative Module, in the same shape as the
graph Decoder:

1. the module's identified struct types are collected
2. pass A registers the names of global variables, aliases and functions,
   in that order, each yielding a resolver closure
3. pass B forces the resolvers in the same order
4. module level entities follow in canonical order

The binding API supplies the structure: globals, functions, arguments,
blocks, instructions, operands, types, linkage, visibility and storage
class. What it does not expose (aliases, metadata, COMDATs, attribute
groups, inline asm, instruction flags, alignments, call details) is read
from the module's printed text, each instruction paired with its line in
order.

Constructs the declarative IR cannot express raise MalformedNativeGraph:
ifuncs, specialized or distinct metadata, atomic and volatile memory
access, poison values, and any opcode outside the instruction set.
"""
import logging
import re
from typing import Callable, List

from llvmlite import binding

from irbridge import ast_nodes as A
from irbridge.context import NativeDecodeState
from irbridge.errors import MalformedNativeGraph
from irbridge.keywords import (
    BINARY_OPCODES, CALLING_CONVENTION, CAST_OPCODES, DLL_STORAGE_CLASS, LINKAGE,
    SELECTION_KIND, TAIL_CALL_KINDS, THREAD_LOCAL_MODE, UNNAMED_ADDR, VISIBILITY,
    reverse,
)
from irbridge.decode.assembly import (
    GEP_FLAGS, ModuleListing, Reader, name_of, split_attributes, split_definition,
    unquote,
)
from irbridge.decode.globals import member

log = logging.getLogger(__name__)

TypeKind = binding.TypeKind
ValueKind = binding.ValueKind

# binding enum member name -> declarative enum member
_LINKAGE = {
    'external': A.Linkage.EXTERNAL,
    'available_externally': A.Linkage.AVAILABLE_EXTERNALLY,
    'linkonce_any': A.Linkage.LINK_ONCE,
    'linkonce_odr': A.Linkage.LINK_ONCE_ODR,
    'weak_any': A.Linkage.WEAK,
    'weak_odr': A.Linkage.WEAK_ODR,
    'appending': A.Linkage.APPENDING,
    'internal': A.Linkage.INTERNAL,
    'private': A.Linkage.PRIVATE,
    'external_weak': A.Linkage.EXTERN_WEAK,
    'common': A.Linkage.COMMON,
}
_VISIBILITY = {
    'default': A.Visibility.DEFAULT,
    'hidden': A.Visibility.HIDDEN,
    'protected': A.Visibility.PROTECTED,
}
_STORAGE_CLASS = {
    'default': None,
    'dllimport': A.DLLStorageClass.IMPORT,
    'dllexport': A.DLLStorageClass.EXPORT,
}

# printed keyword -> declarative enum member
_LINKAGE_WORDS = reverse(LINKAGE)
_VISIBILITY_WORDS = reverse(VISIBILITY)
_DLL_WORDS = reverse(DLL_STORAGE_CLASS)
_THREAD_LOCAL_WORDS = reverse(THREAD_LOCAL_MODE)
_UNNAMED_ADDR_WORDS = reverse(UNNAMED_ADDR)
_SELECTION_KIND_WORDS = reverse(SELECTION_KIND)
_CALLING_CONVENTION_WORDS = reverse(CALLING_CONVENTION)

_PREEMPTION_WORDS = frozenset(['dso_local', 'dso_preemptable'])
_FAST_MATH_FLAGS = frozenset([
    'fast', 'nnan', 'ninf', 'nsz', 'arcp', 'contract', 'afn', 'reassoc',
])
_BINARY_FLAGS = _FAST_MATH_FLAGS | {'nuw', 'nsw', 'exact', 'disjoint'}
_TERMINATORS = frozenset(['ret', 'br', 'switch', 'unreachable'])

_FLOAT_KINDS = {
    TypeKind.half: A.FloatingPointFormat.HALF,
    TypeKind.float: A.FloatingPointFormat.FLOAT,
    TypeKind.double: A.FloatingPointFormat.DOUBLE,
}
_UNSUPPORTED_VALUES = {
    ValueKind.metadata_as_value: 'metadata operand',
    ValueKind.inline_asm: 'inline asm operand',
    ValueKind.block_address: 'blockaddress constant',
    ValueKind.poison_value: 'poison value',
    ValueKind.global_ifunc: 'ifunc',
    ValueKind.constant_token_none: 'token constant',
}

_ADDRSPACE = re.compile(r'addrspace\((\d+)\)')
_ALIGN = re.compile(r',\s*align\s+(\d+)')
_INDICES = re.compile(r'((?:,\s*\d+)+)\s*$')
_ATTRIBUTE_GROUP = re.compile(r'attributes #(\d+) = \{(.*)\}$')

Resolver = Callable[[], A.Definition]


class NativeDecoder:
    """Translates one llvmlite.binding.ModuleRef into a declarative Module."""

    def __init__(self, state: NativeDecodeState):
        self.state = state
        self.listing = ModuleListing(str(state.module))
        self._instruction_handlers = {
            'icmp': self._icmp,
            'fcmp': self._fcmp,
            'alloca': self._alloca,
            'load': self._load,
            'store': self._store,
            'getelementptr': self._get_element_ptr,
            'phi': self._phi,
            'select': self._select,
            'call': self._call,
            'extractvalue': self._extract_value,
            'insertvalue': self._insert_value,
        }
        self._terminator_handlers = {
            'ret': self._ret,
            'br': self._br,
            'switch': self._switch,
            'unreachable': self._unreachable,
        }

    @property
    def module(self) -> binding.ModuleRef:
        return self.state.module

    @property
    def scope(self):
        return self.state.scope

    def reader(self, text: str) -> Reader:
        return Reader(text, self.state.struct_types)

    def decode(self) -> A.Module:
        module = self.module
        self.seed_types()

        variables = list(module.global_variables)
        functions = list(module.functions)
        self._name_globals(variables, functions)
        resolvers = ([self.register_variable(v) for v in variables]
                     + [self.register_alias(name, text)
                        for name, text in self.listing.aliases]
                     + [self.register_function(f) for f in functions])
        log.debug("registered %d global names", len(resolvers))
        values = [resolve() for resolve in resolvers]

        definitions = (self.type_definitions()
                       + self.inline_assembly()
                       + values
                       + self.named_metadata()
                       + self.metadata_nodes()
                       + self.attribute_groups()
                       + self.comdats())

        return A.Module(
            name=module.name,
            source_file_name=module.source_file,
            data_layout=module.data_layout or None,
            target_triple=module.triple or None,
            definitions=tuple(definitions),
        )

    # ==========================================================================
    # Types
    # ==========================================================================

    def seed_types(self):
        """Record every identified struct of the module with its body."""
        for typ in self.module.struct_types:
            if typ.is_literal_struct:
                continue
            if not typ.name:
                raise MalformedNativeGraph("Unnamed identified struct types are not supported")
            body = None
            if not typ.is_opaque_struct:
                body = A.StructureType(bool(typ.is_packed_struct),
                                       tuple(self.decode_type(t) for t in typ.elements))
            self.state.struct_types[typ.name] = body

    def type_definitions(self) -> List[A.TypeDefinition]:
        return [A.TypeDefinition(name, body)
                for name, body in self.state.struct_types.items()]

    def float_format(self, typ) -> A.FloatingPointFormat:
        try:
            return _FLOAT_KINDS[typ.type_kind]
        except KeyError:
            raise MalformedNativeGraph(f"'{typ}' is not a supported floating point type")

    def decode_type(self, typ) -> A.Type:
        kind = typ.type_kind
        if kind == TypeKind.integer:
            return A.IntegerType(typ.type_width)
        if kind == TypeKind.pointer:
            m = _ADDRSPACE.search(str(typ))
            return A.PointerType(int(m.group(1)) if m else 0)
        if kind == TypeKind.void:
            return A.VoidType()
        if kind in _FLOAT_KINDS:
            return A.FloatingPointType(self.float_format(typ))
        if kind == TypeKind.struct:
            if typ.is_literal_struct:
                return A.StructureType(bool(typ.is_packed_struct),
                                       tuple(self.decode_type(t) for t in typ.elements))
            return A.NamedTypeReference(typ.name)
        if kind in (TypeKind.array, TypeKind.vector):
            [element] = typ.elements
            node = A.ArrayType if kind == TypeKind.array else A.VectorType
            return node(typ.element_count, self.decode_type(element))
        if kind == TypeKind.function:
            return A.FunctionType(self.decode_type(typ.get_function_return()),
                                  tuple(self.decode_type(t)
                                        for t in typ.get_function_parameters()),
                                  bool(typ.is_function_vararg))
        if kind == TypeKind.label:
            return A.LabelType()
        if kind == TypeKind.metadata:
            return A.MetadataType()
        raise MalformedNativeGraph(f"Unsupported type '{typ}'")

    # ==========================================================================
    # Constants and operands
    # ==========================================================================

    def _name_globals(self, variables, functions):
        """Unnamed globals print as @N, numbered variables first, then aliases."""
        slot = 0
        for value in variables:
            if not value.name:
                self.scope.define('global', value, str(slot))
                slot += 1
        slot += sum(1 for name, _ in self.listing.aliases if name.isdigit())
        for value in functions:
            if not value.name:
                self.scope.define('global', value, str(slot))
                slot += 1

    def global_name(self, value) -> str:
        entry = self.scope.lookup('global', value)
        if entry is not None:
            return entry.handle
        if value.name:
            return value.name
        raise MalformedNativeGraph("Unnamed global does not belong to the decoded module")

    def decode_constant(self, value) -> A.Constant:
        kind = value.value_kind
        if kind in (ValueKind.global_variable, ValueKind.function, ValueKind.global_alias):
            return A.GlobalReference(self.global_name(value))
        if kind == ValueKind.constant_int:
            bits = value.type.type_width
            return A.Int(bits, value.get_constant_value(signed_int=bits > 1))
        if kind == ValueKind.constant_fp:
            return A.Float(self.float_format(value.type), value.get_constant_value())
        if kind in _UNSUPPORTED_VALUES:
            raise MalformedNativeGraph(f"Unsupported {_UNSUPPORTED_VALUES[kind]}: {value}")
        _, constant = self.reader(str(value)).read_typed_constant()
        return constant

    def operand(self, value) -> A.Operand:
        if value.value_kind in (ValueKind.argument, ValueKind.instruction):
            return A.LocalReference(self.decode_type(value.type), self.local_name(value))
        return A.ConstantOperand(self.decode_constant(value))

    def local_name(self, value) -> str:
        entry = self.scope.lookup('local', value)
        if entry is None:
            raise MalformedNativeGraph(f"Local {value} is not defined in this function")
        return entry.handle

    def block_name(self, block) -> str:
        entry = self.scope.lookup('block', block)
        if entry is None:
            raise MalformedNativeGraph("Branch target is not a block of this function")
        return entry.handle

    # ==========================================================================
    # Global values
    # ==========================================================================

    def register_variable(self, gv) -> Resolver:
        if gv.name:
            self.scope.define('global', gv, gv.name)
        log.debug("registered global %s", self.global_name(gv))
        return lambda: self.variable(gv)

    def register_alias(self, name: str, text: str) -> Resolver:
        self.scope.define('global', name, name)
        log.debug("registered alias %s", name)
        return lambda: self.alias(name, text)

    def register_function(self, fn) -> Resolver:
        if fn.name:
            self.scope.define('global', fn, fn.name)
        log.debug("registered function %s", self.global_name(fn))
        return lambda: self.function(fn)

    def _prefix_keywords(self, reader: Reader, stop) -> dict:
        """Keywords printed between `@name =` and *stop*."""
        found = dict(linkage=A.Linkage.EXTERNAL, visibility=A.Visibility.DEFAULT,
                     dll_storage_class=None, thread_local_mode=None,
                     unnamed_addr=None, addr_space=0)
        while not reader.at('word') or reader.peek().text not in stop:
            word = reader.expect('word')
            if word == 'thread_local':
                if reader.punct('('):
                    word += '(%s)' % reader.expect('word')
                    reader.expect('punct', ')')
                found['thread_local_mode'] = member(_THREAD_LOCAL_WORDS, word,
                                                    'thread local mode')
            elif word == 'addrspace':
                reader.expect('punct', '(')
                found['addr_space'] = reader.read_int()
                reader.expect('punct', ')')
            elif word in _UNNAMED_ADDR_WORDS:
                found['unnamed_addr'] = _UNNAMED_ADDR_WORDS[word]
            elif word in _LINKAGE_WORDS:
                found['linkage'] = _LINKAGE_WORDS[word]
            elif word in _VISIBILITY_WORDS:
                found['visibility'] = _VISIBILITY_WORDS[word]
            elif word in _DLL_WORDS:
                found['dll_storage_class'] = _DLL_WORDS[word]
            elif word not in _PREEMPTION_WORDS and word != 'externally_initialized':
                raise MalformedNativeGraph(f"Unsupported global keyword '{word}'")
        return found

    def _comdat(self, reader: Reader, own_name: str) -> str:
        """`comdat` names the global's own group; `comdat($c)` names another."""
        if reader.punct('('):
            name = name_of(reader.expect('name'))
            reader.expect('punct', ')')
            return name
        return own_name

    def variable(self, gv) -> A.GlobalVariable:
        name = self.global_name(gv)
        text = self.listing.variables.get(name)
        if text is None:
            raise MalformedNativeGraph(f"No assembly for global variable '{name}'")
        reader = self.reader(text)
        keywords = self._prefix_keywords(reader, ('global', 'constant'))
        is_constant = reader.expect('word') == 'constant'
        typ = reader.read_type()
        initializer = None
        if not gv.is_declaration:
            initializer = reader.read_constant(typ)

        section = comdat = None
        alignment = 0
        while reader.punct(','):
            kind, key = reader.next()
            if key == 'section':
                section = unquote(reader.expect('string'))
            elif key == 'comdat':
                comdat = self._comdat(reader, name)
            elif key == 'align':
                alignment = reader.read_int()
            elif key in ('partition', 'code_model'):
                reader.expect('string')
            elif kind == 'name' and key.startswith('!'):
                reader.expect('name')
            else:
                raise MalformedNativeGraph(f"Unsupported global variable field '{key}'")

        return A.GlobalVariable(
            name=name,
            type=self.decode_type(gv.global_value_type),
            initializer=initializer,
            linkage=member(_LINKAGE, gv.linkage.name, 'linkage'),
            visibility=member(_VISIBILITY, gv.visibility.name, 'visibility'),
            dll_storage_class=member(_STORAGE_CLASS, gv.storage_class.name,
                                     'DLL storage class'),
            thread_local_mode=keywords['thread_local_mode'],
            addr_space=keywords['addr_space'],
            unnamed_addr=keywords['unnamed_addr'],
            is_constant=is_constant,
            section=section,
            comdat=comdat,
            alignment=alignment,
        )

    def alias(self, name: str, text: str) -> A.GlobalAlias:
        reader = self.reader(text)
        keywords = self._prefix_keywords(reader, ('alias',))
        reader.expect('word', 'alias')
        typ = reader.read_type()
        reader.expect('punct', ',')
        pointer, aliasee = reader.read_typed_constant()
        return A.GlobalAlias(
            name=name,
            type=typ,
            aliasee=aliasee,
            linkage=keywords['linkage'],
            visibility=keywords['visibility'],
            dll_storage_class=keywords['dll_storage_class'],
            thread_local_mode=keywords['thread_local_mode'],
            unnamed_addr=keywords['unnamed_addr'],
            addr_space=getattr(pointer, 'addr_space', 0),
        )

    # ==========================================================================
    # Functions
    # ==========================================================================

    def function(self, fn) -> A.Function:
        name = self.global_name(fn)
        listing = self.listing.functions.get(name)
        if listing is None:
            raise MalformedNativeGraph(f"No assembly for function '{name}'")
        ftype = fn.global_value_type
        prefix, _, suffix = listing.split_header()
        calling_convention, return_attributes = self._header_prefix(
            prefix, str(ftype.get_function_return()))
        tail = self._header_suffix(suffix, name)

        with self.scope.local_scope():
            arguments = list(fn.arguments)
            layout = [(block, list(block.instructions)) for block in fn.blocks]
            self._bind_locals(arguments, layout)
            parameters = tuple(
                A.Parameter(self.decode_type(arg.type), self.local_name(arg),
                            tuple(a.decode('utf8') for a in arg.attributes))
                for arg in arguments)
            blocks = self._blocks(name, layout, listing.statements)

        return A.Function(
            name=name,
            return_type=self.decode_type(ftype.get_function_return()),
            parameters=parameters,
            is_var_arg=bool(ftype.is_function_vararg),
            basic_blocks=blocks,
            linkage=member(_LINKAGE, fn.linkage.name, 'linkage'),
            visibility=member(_VISIBILITY, fn.visibility.name, 'visibility'),
            dll_storage_class=member(_STORAGE_CLASS, fn.storage_class.name,
                                     'DLL storage class'),
            calling_convention=calling_convention,
            return_attributes=return_attributes,
            **tail,
        )

    def _header_prefix(self, prefix: str, return_type: str):
        """Calling convention and return attributes from `define ... <type>`."""
        prefix = prefix.rstrip()
        if not prefix.endswith(return_type):
            raise MalformedNativeGraph(f"Function header {prefix!r} lacks its return type")
        calling_convention = A.CallingConvention.C
        attributes = []
        for piece in split_attributes(prefix[:len(prefix) - len(return_type)])[1:]:
            if attributes:
                attributes.append(piece)
            elif piece == 'cc':
                raise MalformedNativeGraph("Numbered calling conventions are not supported")
            elif piece in _CALLING_CONVENTION_WORDS:
                calling_convention = _CALLING_CONVENTION_WORDS[piece]
            elif not (piece in _LINKAGE_WORDS or piece in _VISIBILITY_WORDS
                      or piece in _DLL_WORDS or piece in _PREEMPTION_WORDS):
                attributes.append(piece)
        return calling_convention, tuple(attributes)

    def _header_suffix(self, suffix: str, name: str) -> dict:
        """Function attributes and trailing fields after the parameter list."""
        found = dict(function_attributes=[], section=None, comdat=None, alignment=0,
                     garbage_collector_name=None, prefix=None, personality_function=None)
        reader = self.reader(suffix)
        while not reader.at_end:
            kind, text = reader.next()
            if kind == 'group':
                found['function_attributes'].append(A.GroupID(int(text[1:])))
            elif kind == 'name' and text.startswith('!'):
                reader.expect('name')
            elif kind != 'word':
                raise MalformedNativeGraph(f"Unexpected {text!r} in function header")
            elif text in ('unnamed_addr', 'local_unnamed_addr'):
                continue
            elif text == 'addrspace':
                reader.expect('punct', '(')
                reader.read_int()
                reader.expect('punct', ')')
            elif text == 'section':
                found['section'] = unquote(reader.expect('string'))
            elif text == 'partition':
                reader.expect('string')
            elif text == 'comdat':
                found['comdat'] = self._comdat(reader, name)
            elif text == 'align':
                found['alignment'] = reader.read_int()
            elif text == 'gc':
                found['garbage_collector_name'] = unquote(reader.expect('string'))
            elif text == 'prefix':
                found['prefix'] = reader.read_typed_constant()[1]
            elif text == 'personality':
                found['personality_function'] = reader.read_typed_constant()[1]
            elif text == 'prologue':
                raise MalformedNativeGraph("Prologue data is not supported")
            else:
                found['function_attributes'].append(text)
        found['function_attributes'] = tuple(found['function_attributes'])
        return found

    def _bind_locals(self, arguments, layout):
        """Name arguments, blocks and results; unnamed ones take LLVM's slot numbers."""
        slot = 0

        def bind(kind, value):
            nonlocal slot
            name = value.name
            if not name:
                name = str(slot)
                slot += 1
            self.scope.define(kind, value, name)

        for arg in arguments:
            bind('local', arg)
        for block, instructions in layout:
            bind('block', block)
            for instr in instructions:
                if instr.type.type_kind != TypeKind.void:
                    bind('local', instr)

    def _blocks(self, name: str, layout, statements):
        count = sum(len(instructions) for _, instructions in layout)
        if count != len(statements):
            raise MalformedNativeGraph(
                f"Function '{name}' has {count} instructions but {len(statements)} "
                "printed statements")
        lines = iter(statements)
        blocks = []
        for block, instructions in layout:
            if not instructions or instructions[-1].opcode not in _TERMINATORS:
                raise MalformedNativeGraph(
                    f"Block '{self.block_name(block)}' has no supported terminator")
            items = []
            for instr in instructions[:-1]:
                statement = next(lines)
                decoded = self._instruction(instr, statement.body)
                if instr.type.type_kind == TypeKind.void:
                    items.append(A.Do(decoded, statement.attachments))
                else:
                    items.append(A.Named(self.local_name(instr), decoded,
                                         statement.attachments))
            statement = next(lines)
            terminator = instructions[-1]
            end = self._terminator_handlers[terminator.opcode](
                terminator, list(terminator.operands), statement.body)
            blocks.append(A.BasicBlock(self.block_name(block), tuple(items),
                                       A.Do(end, statement.attachments)))
        return tuple(blocks)

    # ==========================================================================
    # Instructions
    # ==========================================================================

    def _instruction(self, instr, body: str) -> A.Instruction:
        opcode = instr.opcode
        operands = list(instr.operands)
        if opcode in BINARY_OPCODES:
            return self._binary_operation(instr, operands, body)
        if opcode in CAST_OPCODES:
            [value] = operands
            return A.Cast(opcode, self.operand(value), self.decode_type(instr.type))
        handler = self._instruction_handlers.get(opcode)
        if handler is None:
            raise MalformedNativeGraph(f"Unsupported instruction '{opcode}'")
        return handler(instr, operands, body)

    def _binary_operation(self, instr, operands, body):
        reader = self.reader(body)
        reader.expect('word', instr.opcode)
        flags = reader.words(_BINARY_FLAGS)
        lhs, rhs = operands
        return A.BinaryOperation(instr.opcode, self.operand(lhs), self.operand(rhs),
                                 tuple(flags))

    def _icmp(self, instr, operands, body):
        reader = self.reader(body)
        reader.expect('word', 'icmp')
        reader.words({'samesign'})
        lhs, rhs = operands
        return A.ICmp(reader.expect('word'), self.operand(lhs), self.operand(rhs))

    def _fcmp(self, instr, operands, body):
        reader = self.reader(body)
        reader.expect('word', 'fcmp')
        reader.words(_FAST_MATH_FLAGS)
        lhs, rhs = operands
        return A.FCmp(reader.expect('word'), self.operand(lhs), self.operand(rhs))

    def _alignment(self, body: str) -> int:
        m = _ALIGN.search(body)
        return int(m.group(1)) if m else 0

    def _plain_access(self, opcode: str, body: str) -> Reader:
        reader = self.reader(body)
        reader.expect('word', opcode)
        if reader.words({'atomic', 'volatile'}):
            raise MalformedNativeGraph(f"Atomic or volatile {opcode} is not supported")
        return reader

    def _alloca(self, instr, operands, body):
        reader = self.reader(body)
        reader.expect('word', 'alloca')
        reader.words({'inalloca', 'swifterror'})
        allocated = reader.read_type()
        count = None
        if reader.punct(',') and reader.at_type():
            count = self.operand(operands[0])
        return A.Alloca(allocated, count, self._alignment(body))

    def _load(self, instr, operands, body):
        self._plain_access('load', body)
        [address] = operands
        return A.Load(self.decode_type(instr.type), self.operand(address),
                      self._alignment(body))

    def _store(self, instr, operands, body):
        self._plain_access('store', body)
        value, address = operands
        return A.Store(self.operand(address), self.operand(value), self._alignment(body))

    def _get_element_ptr(self, instr, operands, body):
        reader = self.reader(body)
        reader.expect('word', 'getelementptr')
        flags = reader.words(GEP_FLAGS)
        element_type = reader.read_type()
        address, *indices = operands
        return A.GetElementPtr(element_type, self.operand(address),
                               tuple(self.operand(i) for i in indices),
                               'inbounds' in flags)

    def _phi(self, instr, operands, body):
        return A.Phi(self.decode_type(instr.type),
                     tuple((self.operand(value), self.block_name(block))
                           for value, block in zip(operands, instr.incoming_blocks)))

    def _select(self, instr, operands, body):
        cond, lhs, rhs = operands
        return A.Select(self.operand(cond), self.operand(lhs), self.operand(rhs))

    def _call(self, instr, operands, body):
        reader = self.reader(body)
        tail = reader.words(TAIL_CALL_KINDS)
        reader.expect('word', 'call')
        reader.words(_FAST_MATH_FLAGS)
        calling_convention = A.CallingConvention.C
        if reader.at('word', 'cc'):
            raise MalformedNativeGraph("Numbered calling conventions are not supported")
        if reader.at('word') and reader.peek().text in _CALLING_CONVENTION_WORDS:
            calling_convention = _CALLING_CONVENTION_WORDS[reader.next().text]
        while not reader.at_type():
            reader.next()
            if reader.at('punct', '('):
                depth = 0
                while True:
                    text = reader.next().text
                    depth += {'(': 1, ')': -1}.get(text, 0)
                    if depth == 0:
                        break
        *arguments, callee = operands
        typ = reader.read_type(function_suffix=True)
        if not isinstance(typ, A.FunctionType):
            typ = A.FunctionType(typ, tuple(self.decode_type(a.type) for a in arguments))
        return A.Call(typ, self.operand(callee),
                      tuple(self.operand(a) for a in arguments),
                      calling_convention, tail[0] if tail else None)

    def _indices(self, body: str):
        m = _INDICES.search(body)
        if m is None:
            raise MalformedNativeGraph(f"No indices in {body!r}")
        return tuple(int(i) for i in m.group(1).split(',') if i.strip())

    def _extract_value(self, instr, operands, body):
        return A.ExtractValue(self.operand(operands[0]), self._indices(body))

    def _insert_value(self, instr, operands, body):
        aggregate, element = operands
        return A.InsertValue(self.operand(aggregate), self.operand(element),
                             self._indices(body))

    # ==========================================================================
    # Terminators
    # ==========================================================================

    def _ret(self, term, operands, body):
        if not operands:
            return A.Ret()
        return A.Ret(self.operand(operands[0]))

    def _br(self, term, operands, body):
        if len(operands) == 1:
            return A.Br(self.block_name(operands[0]))
        # Conditional branches keep their successors in reverse order
        cond, false_dest, true_dest = operands
        return A.CondBr(self.operand(cond), self.block_name(true_dest),
                        self.block_name(false_dest))

    def _switch(self, term, operands, body):
        value, default, *cases = operands
        return A.Switch(self.operand(value), self.block_name(default),
                        tuple((self.decode_constant(case), self.block_name(dest))
                              for case, dest in zip(cases[0::2], cases[1::2])))

    def _unreachable(self, term, operands, body):
        return A.Unreachable()

    # ==========================================================================
    # Module entities
    # ==========================================================================

    def inline_assembly(self):
        if not self.listing.inline_asm:
            return []
        return [A.InlineAssembly('\n'.join(self.listing.inline_asm))]

    def named_metadata(self):
        definitions = []
        for line in self.listing.named_metadata:
            name, rest = split_definition(line)
            definitions.append(A.NamedMetadataDefinition(
                name, self.reader(rest).read_node_ids()))
        return definitions

    def metadata_nodes(self):
        definitions = []
        for line in self.listing.metadata_nodes:
            md_id, rest = split_definition(line)
            definitions.append(A.MetadataNodeDefinition(
                int(md_id), self.reader(rest).read_metadata_node()))
        return definitions

    def attribute_groups(self):
        groups = []
        for line in self.listing.attribute_groups:
            m = _ATTRIBUTE_GROUP.match(line)
            if m is None:
                raise MalformedNativeGraph(f"Malformed attribute group {line!r}")
            groups.append(A.FunctionAttributeGroup(
                A.GroupID(int(m.group(1))), tuple(split_attributes(m.group(2)))))
        return groups

    def comdats(self):
        definitions = []
        for line in self.listing.comdats:
            name, rest = split_definition(line)
            reader = self.reader(rest)
            reader.expect('word', 'comdat')
            definitions.append(A.COMDATDefinition(
                name, member(_SELECTION_KIND_WORDS, reader.expect('word'),
                             'COMDAT selection kind')))
        return definitions
