"""
LLVM Assembly Reader

llvmlite.binding exposes the structure of a native module (globals,
functions, blocks, instructions, operands, types) but not every detail
printed with it. The native decoder reads those details from the module's
own printed text, which LLVM writes in one canonical form:

- Reader: a token cursor over one line, with parsers for types, typed
  constants and metadata nodes
- Statement: an instruction line split into result, body and attachments
- ModuleListing: the module text sorted into its top level entities
- split_attributes: an attribute run split into single attributes
"""
import re
import struct
from collections import namedtuple
from typing import Dict, List, Optional

from irbridge import ast_nodes as A
from irbridge.errors import MalformedNativeGraph
from irbridge.keywords import CAST_OPCODES

_TOKEN = re.compile(r'''
    (?P<space>\s+)
  | (?P<cstring>c"[^"]*")
  | (?P<string>"[^"]*")
  | (?P<name>[@%$!](?:"[^"]*"|[-a-zA-Z$._0-9]+))
  | (?P<group>\#\d+)
  | (?P<float>-?0x[KLMHR]?[0-9A-Fa-f]+|-?\d+\.\d*(?:[eE][-+]?\d+)?|-?\d+[eE][-+]?\d+)
  | (?P<int>-?\d+)
  | (?P<word>[A-Za-z_][A-Za-z0-9_.]*)
  | (?P<punct>\.\.\.|[!{}\[\]()<>,=*:|])
''', re.X)

_ESCAPE = re.compile(r'\\([0-9A-Fa-f]{2})')
_INT_TYPE = re.compile(r'i(\d+)$')
_LABEL = re.compile(r'(?:"[^"]*"|[-a-zA-Z$._0-9]+):(?:\s|$)')
_RESULT = re.compile(r'%("[^"]*"|[-a-zA-Z$._0-9]+)\s*=\s*')
_ATTACHMENT = re.compile(r',\s*!([-a-zA-Z$._0-9]+)\s+!(\d+)\s*$')
_FUNCTION_NAME = re.compile(r'@("[^"]*"|[-a-zA-Z$._0-9]+)\(')
_DEFINITION = re.compile(r'([@!$](?:"[^"]*"|[-a-zA-Z$._0-9]+))\s*=\s*')

_FLOAT_FORMATS = {
    'half': A.FloatingPointFormat.HALF,
    'float': A.FloatingPointFormat.FLOAT,
    'double': A.FloatingPointFormat.DOUBLE,
}

GEP_FLAGS = frozenset(['inbounds', 'nusw', 'nuw'])

Token = namedtuple('Token', 'kind text')
_END = Token(None, None)


def unescape_bytes(body: str) -> bytes:
    """Bytes of a quoted LLVM string body with its `\\XX` escapes undone."""
    out = bytearray()
    pos = 0
    for m in _ESCAPE.finditer(body):
        out += body[pos:m.start()].encode('utf8')
        out.append(int(m.group(1), 16))
        pos = m.end()
    out += body[pos:].encode('utf8')
    return bytes(out)


def unquote(text: str) -> str:
    """`"a\\22b"` -> `a"b`; unquoted text is returned unchanged."""
    if len(text) >= 2 and text[0] == '"' and text[-1] == '"':
        return unescape_bytes(text[1:-1]).decode('utf8')
    return text


def name_of(token: str) -> str:
    """The identifier of a sigiled name token such as `@"x y"` or `%0`."""
    return unquote(token[1:])


def tokenize(text: str) -> List[Token]:
    tokens = []
    pos = 0
    while pos < len(text):
        m = _TOKEN.match(text, pos)
        if m is None:
            raise MalformedNativeGraph(f"Unexpected text in assembly: {text[pos:pos + 20]!r}")
        pos = m.end()
        if m.lastgroup != 'space':
            tokens.append(Token(m.lastgroup, m.group()))
    return tokens


def float_literal(text: str) -> float:
    """A printed floating point literal as a Python float.

    `0x` + 16 digits is a double bit pattern (also used for float constants
    that have no short decimal form); `0xH` is a half bit pattern.
    """
    if text.startswith('0xH'):
        return struct.unpack('>e', bytes.fromhex(text[3:]))[0]
    if text.startswith('0x') and text[2] in 'KLMR':
        raise MalformedNativeGraph(f"Unsupported floating point literal {text}")
    if text.startswith('0x'):
        return struct.unpack('>d', bytes.fromhex(text[2:].rjust(16, '0')))[0]
    return float(text)


def split_attributes(text: str) -> List[str]:
    """`noundef align 8 "k"="v" range(i32 0, 10)` -> one string per attribute."""
    pieces = []
    current = []
    depth = 0
    quoted = False
    for ch in text:
        if ch == '"':
            quoted = not quoted
        elif not quoted and ch in '([{':
            depth += 1
        elif not quoted and ch in ')]}':
            depth -= 1
        if ch.isspace() and not quoted and depth == 0:
            if current:
                pieces.append(''.join(current))
                current = []
            continue
        current.append(ch)
    if current:
        pieces.append(''.join(current))

    attributes = []
    for piece in pieces:
        if piece.isdigit() and attributes and attributes[-1] == 'align':
            attributes[-1] += ' ' + piece
        else:
            attributes.append(piece)
    return attributes


def matching_paren(text: str, start: int) -> int:
    """Index of the `)` closing the `(` at *start*."""
    depth = 0
    quoted = False
    for i in range(start, len(text)):
        ch = text[i]
        if ch == '"':
            quoted = not quoted
        elif quoted:
            continue
        elif ch == '(':
            depth += 1
        elif ch == ')':
            depth -= 1
            if depth == 0:
                return i
    raise MalformedNativeGraph(f"Unbalanced parentheses in {text!r}")


# ============================================================================
# Token Reader
# ============================================================================

class Reader:
    """Cursor over the tokens of one piece of LLVM assembly.

    *structs* maps identified struct names to their bodies (None for an
    opaque struct); it decides whether a named struct constant is packed.
    """

    def __init__(self, text: str, structs: Optional[Dict[str, Optional[A.StructureType]]] = None):
        self.text = text
        self.tokens = tokenize(text)
        self.pos = 0
        self.structs = structs if structs is not None else {}

    def peek(self, offset: int = 0) -> Token:
        index = self.pos + offset
        return self.tokens[index] if index < len(self.tokens) else _END

    @property
    def at_end(self) -> bool:
        return self.pos >= len(self.tokens)

    def next(self) -> Token:
        token = self.peek()
        if token is _END:
            raise MalformedNativeGraph(f"Unexpected end of assembly in {self.text!r}")
        self.pos += 1
        return token

    def at(self, kind: str, text: Optional[str] = None, offset: int = 0) -> bool:
        token = self.peek(offset)
        return token.kind == kind and (text is None or token.text == text)

    def accept(self, kind: str, text: Optional[str] = None) -> Optional[str]:
        if self.at(kind, text):
            return self.next().text
        return None

    def expect(self, kind: str, text: Optional[str] = None) -> str:
        token = self.next()
        if token.kind != kind or (text is not None and token.text != text):
            raise MalformedNativeGraph(
                f"Expected {text or kind} but found {token.text!r} in {self.text!r}")
        return token.text

    def punct(self, text: str) -> bool:
        return self.accept('punct', text) is not None

    def word(self, text: Optional[str] = None) -> Optional[str]:
        return self.accept('word', text)

    def read_int(self) -> int:
        return int(self.expect('int'))

    def words(self, allowed) -> List[str]:
        """Consume leading words while they are in *allowed*."""
        found = []
        while self.peek().kind == 'word' and self.peek().text in allowed:
            found.append(self.next().text)
        return found

    # ------------------------------------------------------------------
    # Types
    # ------------------------------------------------------------------

    def at_type(self) -> bool:
        kind, text = self.peek()
        if kind == 'word':
            return (text in ('void', 'ptr', 'label', 'metadata') or text in _FLOAT_FORMATS
                    or _INT_TYPE.match(text) is not None)
        if kind == 'name':
            return text.startswith('%')
        return kind == 'punct' and text in ('{', '[', '<')

    def read_type(self, function_suffix: bool = False) -> A.Type:
        typ = self._base_type()
        while function_suffix and self.at('punct', '('):
            typ = self._function_params(typ)
        return typ

    def _base_type(self) -> A.Type:
        kind, text = self.next()
        if kind == 'word':
            if text == 'void':
                return A.VoidType()
            if text == 'ptr':
                space = 0
                if self.word('addrspace'):
                    self.expect('punct', '(')
                    space = self.read_int()
                    self.expect('punct', ')')
                return A.PointerType(space)
            if text in _FLOAT_FORMATS:
                return A.FloatingPointType(_FLOAT_FORMATS[text])
            if text == 'label':
                return A.LabelType()
            if text == 'metadata':
                return A.MetadataType()
            m = _INT_TYPE.match(text)
            if m:
                return A.IntegerType(int(m.group(1)))
        elif kind == 'name' and text.startswith('%'):
            return A.NamedTypeReference(name_of(text))
        elif kind == 'punct' and text == '{':
            return A.StructureType(False, self._struct_body('}'))
        elif kind == 'punct' and text == '[':
            count = self.read_int()
            self.expect('word', 'x')
            element = self.read_type()
            self.expect('punct', ']')
            return A.ArrayType(count, element)
        elif kind == 'punct' and text == '<':
            if self.punct('{'):
                body = self._struct_body('}')
                self.expect('punct', '>')
                return A.StructureType(True, body)
            count = self.read_int()
            self.expect('word', 'x')
            element = self.read_type()
            self.expect('punct', '>')
            return A.VectorType(count, element)
        raise MalformedNativeGraph(f"Unsupported type {text!r} in {self.text!r}")

    def _struct_body(self, close: str):
        elements = []
        while not self.punct(close):
            if elements:
                self.expect('punct', ',')
            elements.append(self.read_type())
        return tuple(elements)

    def _function_params(self, result: A.Type) -> A.FunctionType:
        self.expect('punct', '(')
        params = []
        var_arg = False
        while not self.punct(')'):
            if params or var_arg:
                self.expect('punct', ',')
            if self.punct('...'):
                var_arg = True
                continue
            params.append(self.read_type())
        return A.FunctionType(result, tuple(params), var_arg)

    # ------------------------------------------------------------------
    # Constants
    # ------------------------------------------------------------------

    def read_typed_constant(self):
        """(type, constant) for `<type> <value>`."""
        typ = self.read_type()
        return typ, self.read_constant(typ)

    def read_constant(self, typ: A.Type) -> A.Constant:
        kind, text = self.next()
        if kind == 'int':
            if isinstance(typ, A.FloatingPointType):
                return A.Float(typ.format, float(text))
            return A.Int(self._bits(typ), int(text))
        if kind == 'float':
            if not isinstance(typ, A.FloatingPointType):
                raise MalformedNativeGraph(f"Float literal {text} for type {typ}")
            return A.Float(typ.format, float_literal(text))
        if kind == 'name' and text.startswith('@'):
            return A.GlobalReference(name_of(text))
        if kind == 'cstring':
            data = unescape_bytes(text[2:-1])
            return A.Array(A.IntegerType(8), tuple(A.Int(8, b) for b in data))
        if kind == 'punct':
            return self._aggregate(text, typ)
        if kind == 'word':
            return self._keyword_constant(text, typ)
        raise MalformedNativeGraph(f"Unsupported constant {text!r} in {self.text!r}")

    def _bits(self, typ: A.Type) -> int:
        if not isinstance(typ, A.IntegerType):
            raise MalformedNativeGraph(f"Integer literal for type {typ}")
        return typ.bits

    def _keyword_constant(self, word: str, typ: A.Type) -> A.Constant:
        if word in ('true', 'false'):
            return A.Int(self._bits(typ), 1 if word == 'true' else 0)
        if word == 'null':
            return A.Null(typ)
        if word == 'zeroinitializer':
            return A.AggregateZero(typ)
        if word == 'undef':
            return A.Undef(typ)
        if word == 'splat':
            self.expect('punct', '(')
            _, element = self.read_typed_constant()
            self.expect('punct', ')')
            if not isinstance(typ, A.VectorType):
                raise MalformedNativeGraph(f"splat constant of type {typ}")
            return A.Vector((element,) * typ.n_elements)
        if word == 'getelementptr':
            flags = self.words(GEP_FLAGS)
            if self.word('inrange'):
                self.expect('punct', '(')
                while not self.punct(')'):
                    self.next()
            self.expect('punct', '(')
            element_type = self.read_type()
            self.expect('punct', ',')
            _, address = self.read_typed_constant()
            indices = []
            while self.punct(','):
                indices.append(self.read_typed_constant()[1])
            self.expect('punct', ')')
            return A.GetElementPtrConstant('inbounds' in flags, element_type,
                                           address, tuple(indices))
        if word in CAST_OPCODES:
            self.expect('punct', '(')
            _, operand = self.read_typed_constant()
            self.expect('word', 'to')
            target = self.read_type()
            self.expect('punct', ')')
            return A.CastConstant(word, operand, target)
        raise MalformedNativeGraph(f"Unsupported constant '{word}' in {self.text!r}")

    def _aggregate(self, open_: str, typ: A.Type) -> A.Constant:
        if open_ == '{':
            return self._struct(typ, '}')
        if open_ == '<' and self.punct('{'):
            constant = self._struct(typ, '}')
            self.expect('punct', '>')
            return constant
        if open_ == '[':
            if not isinstance(typ, A.ArrayType):
                raise MalformedNativeGraph(f"Array constant of type {typ}")
            return A.Array(typ.element_type, self._members(']'))
        if open_ == '<':
            return A.Vector(self._members('>'))
        raise MalformedNativeGraph(f"Unexpected {open_!r} in {self.text!r}")

    def _struct(self, typ: A.Type, close: str) -> A.Struct:
        members = self._members(close)
        if isinstance(typ, A.NamedTypeReference):
            body = self.structs.get(typ.name)
            return A.Struct(typ.name, body is not None and body.is_packed, members)
        if isinstance(typ, A.StructureType):
            return A.Struct(None, typ.is_packed, members)
        raise MalformedNativeGraph(f"Struct constant of type {typ}")

    def _members(self, close: str):
        members = []
        while not self.punct(close):
            if members:
                self.expect('punct', ',')
            members.append(self.read_typed_constant()[1])
        return tuple(members)

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def read_metadata_node(self):
        """Operands of `!{...}`; specialized and distinct nodes are rejected."""
        if self.at('word', 'distinct'):
            raise MalformedNativeGraph(f"Distinct metadata is not supported: {self.text!r}")
        if self.at('name') and self.peek().text.startswith('!'):
            raise MalformedNativeGraph(
                f"Specialized metadata {self.peek().text} is not supported")
        self.expect('punct', '!')
        self.expect('punct', '{')
        operands = []
        while not self.punct('}'):
            if operands:
                self.expect('punct', ',')
            operands.append(self._metadata_operand())
        return tuple(operands)

    def _metadata_operand(self):
        if self.word('null'):
            return None
        if self.at('name') and self.peek().text.startswith('!'):
            text = self.next().text
            if text.startswith('!"'):
                return A.MDString(name_of(text))
            if text[1:].isdigit():
                return A.MDNodeReference(int(text[1:]))
            raise MalformedNativeGraph(f"Unsupported metadata operand {text}")
        if self.at('punct', '!'):
            raise MalformedNativeGraph(f"Inline metadata node in {self.text!r}")
        return A.MDConstant(self.read_typed_constant()[1])

    def read_node_ids(self):
        """`!{!0, !1}` of a named metadata definition."""
        self.expect('punct', '!')
        self.expect('punct', '{')
        ids = []
        while not self.punct('}'):
            if ids:
                self.expect('punct', ',')
            text = self.expect('name')
            if not text[1:].isdigit():
                raise MalformedNativeGraph(f"Named metadata operand {text}")
            ids.append(int(text[1:]))
        return tuple(ids)


# ============================================================================
# Listing
# ============================================================================

Statement = namedtuple('Statement', 'result body attachments')


def parse_statement(line: str) -> Statement:
    """`%x = add i32 %a, 1, !note !0` -> ('x', 'add i32 %a, 1', (('note', 0),))."""
    result = None
    m = _RESULT.match(line)
    if m:
        result = unquote(m.group(1))
        line = line[m.end():]
    attachments = []
    m = _ATTACHMENT.search(line)
    while m:
        attachments.insert(0, (unquote(m.group(1)), int(m.group(2))))
        line = line[:m.start()]
        m = _ATTACHMENT.search(line)
    return Statement(result, line.strip(), tuple(attachments))


class FunctionListing:
    """A function's header line and its instruction statements."""

    def __init__(self, header: str):
        self.header = header
        self.statements: List[Statement] = []

    def split_header(self):
        """(text before the name, parameter text, text after the parameters)."""
        m = _FUNCTION_NAME.search(self.header)
        if m is None:
            raise MalformedNativeGraph(f"No function name in {self.header!r}")
        close = matching_paren(self.header, m.end() - 1)
        suffix = self.header[close + 1:].strip()
        if suffix.endswith('{'):
            suffix = suffix[:-1].rstrip()
        return self.header[:m.start()], self.header[m.end():close], suffix


class ModuleListing:
    """The printed text of a module, sorted by top level entity."""

    def __init__(self, text: str):
        self.inline_asm: List[str] = []
        self.comdats: List[str] = []
        # name -> text after `=`
        self.variables: Dict[str, str] = {}
        self.aliases: List[tuple] = []
        self.functions: Dict[str, FunctionListing] = {}
        self.named_metadata: List[str] = []
        self.metadata_nodes: List[str] = []
        self.attribute_groups: List[str] = []
        self._read(text.splitlines())

    def _read(self, lines):
        body = None
        pending = None
        for line in lines:
            stripped = line.strip()
            if body is not None:
                if stripped == '}':
                    body = None
                elif pending is not None:
                    pending.append(stripped)
                    if stripped.startswith(']'):
                        body.statements.append(parse_statement(' '.join(pending)))
                        pending = None
                elif stripped and not stripped.startswith((';', '#dbg_')) \
                        and not _LABEL.match(stripped):
                    if stripped.endswith('['):
                        pending = [stripped]
                    else:
                        body.statements.append(parse_statement(stripped))
                continue
            if not stripped or stripped.startswith(';'):
                continue
            if stripped.startswith(('source_filename', 'target ')) \
                    or stripped.startswith('%'):
                continue
            if stripped.startswith('module asm '):
                self.inline_asm.append(unquote(stripped[len('module asm '):]))
            elif stripped.startswith('$'):
                self.comdats.append(stripped)
            elif stripped.startswith('@'):
                self._global(stripped)
            elif stripped.startswith(('define ', 'declare ')):
                function = FunctionListing(stripped)
                m = _FUNCTION_NAME.search(stripped)
                if m is None:
                    raise MalformedNativeGraph(f"No function name in {stripped!r}")
                self.functions[unquote(m.group(1))] = function
                if stripped.startswith('define '):
                    body = function
            elif stripped.startswith('attributes #'):
                self.attribute_groups.append(stripped)
            elif stripped.startswith('!'):
                if stripped[1:2].isdigit():
                    self.metadata_nodes.append(stripped)
                else:
                    self.named_metadata.append(stripped)
            else:
                raise MalformedNativeGraph(f"Unsupported module line {stripped!r}")

    def _global(self, line: str):
        name, rest = split_definition(line)
        for token in tokenize(rest):
            if token.kind != 'word':
                continue
            if token.text in ('global', 'constant'):
                self.variables[name] = rest
                return
            if token.text == 'alias':
                self.aliases.append((name, rest))
                return
            if token.text == 'ifunc':
                raise MalformedNativeGraph(f"ifunc '{name}' is not supported")
        raise MalformedNativeGraph(f"Unrecognized global {line!r}")


def split_definition(line: str):
    """`@g = global i32 0` -> ('g', 'global i32 0'), for @, ! and $ names."""
    m = _DEFINITION.match(line)
    if m is None:
        raise MalformedNativeGraph(f"Expected a definition, got {line!r}")
    return name_of(m.group(1)), line[m.end():].strip()
