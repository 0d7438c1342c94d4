"""
irbridge Declarative IR Definitions

Immutable description of an LLVM IR module. Every node is a frozen
dataclass and every sequence is a tuple, so two descriptions compare equal
exactly when they describe the same module.

A Module is an ordered tuple of Definitions:
- TypeDefinition: named struct type (body may be opaque)
- COMDATDefinition: COMDAT group and its selection kind
- GlobalVariable / GlobalAlias / Function: global values
- MetadataNodeDefinition / NamedMetadataDefinition: metadata
- InlineAssembly: module level asm text
- FunctionAttributeGroup: attributes shared through #N references
"""

from dataclasses import dataclass
from typing import Optional, Tuple, Union
from enum import Enum, auto


# ============================================================================
# Enums
# ============================================================================

class Linkage(Enum):
    PRIVATE = auto()
    INTERNAL = auto()
    AVAILABLE_EXTERNALLY = auto()
    LINK_ONCE = auto()
    WEAK = auto()
    COMMON = auto()
    APPENDING = auto()
    EXTERN_WEAK = auto()
    LINK_ONCE_ODR = auto()
    WEAK_ODR = auto()
    EXTERNAL = auto()


class Visibility(Enum):
    DEFAULT = auto()
    HIDDEN = auto()
    PROTECTED = auto()


class DLLStorageClass(Enum):
    IMPORT = auto()
    EXPORT = auto()


class ThreadLocalMode(Enum):
    GENERAL_DYNAMIC = auto()
    LOCAL_DYNAMIC = auto()
    INITIAL_EXEC = auto()
    LOCAL_EXEC = auto()


class UnnamedAddr(Enum):
    LOCAL = auto()
    GLOBAL = auto()


class SelectionKind(Enum):
    ANY = auto()
    EXACT_MATCH = auto()
    LARGEST = auto()
    NO_DEDUPLICATE = auto()
    SAME_SIZE = auto()


class CallingConvention(Enum):
    C = auto()
    FAST = auto()
    COLD = auto()
    GHC = auto()
    PRESERVE_MOST = auto()
    PRESERVE_ALL = auto()
    SWIFT = auto()
    X86_STDCALL = auto()
    X86_FASTCALL = auto()


class FloatingPointFormat(Enum):
    HALF = auto()
    FLOAT = auto()
    DOUBLE = auto()


# ============================================================================
# Type Nodes
# ============================================================================

@dataclass(frozen=True)
class Type:
    """Base class for types"""
    pass


@dataclass(frozen=True)
class VoidType(Type):
    pass


@dataclass(frozen=True)
class IntegerType(Type):
    bits: int


@dataclass(frozen=True)
class FloatingPointType(Type):
    format: FloatingPointFormat


@dataclass(frozen=True)
class PointerType(Type):
    """Opaque pointer, optionally in a non-default address space"""
    addr_space: int = 0


@dataclass(frozen=True)
class FunctionType(Type):
    result_type: Type
    argument_types: Tuple[Type, ...] = ()
    is_var_arg: bool = False


@dataclass(frozen=True)
class VectorType(Type):
    n_elements: int
    element_type: Type


@dataclass(frozen=True)
class ArrayType(Type):
    n_elements: int
    element_type: Type


@dataclass(frozen=True)
class StructureType(Type):
    is_packed: bool
    element_types: Tuple[Type, ...]


@dataclass(frozen=True)
class NamedTypeReference(Type):
    name: str


@dataclass(frozen=True)
class MetadataType(Type):
    pass


@dataclass(frozen=True)
class LabelType(Type):
    pass


# ============================================================================
# Constants
# ============================================================================

@dataclass(frozen=True)
class Constant:
    """Base class for constants"""
    pass


@dataclass(frozen=True)
class Int(Constant):
    bits: int
    value: int


@dataclass(frozen=True)
class Float(Constant):
    format: FloatingPointFormat
    value: float


@dataclass(frozen=True)
class Null(Constant):
    type: Type


@dataclass(frozen=True)
class AggregateZero(Constant):
    type: Type


@dataclass(frozen=True)
class Undef(Constant):
    type: Type


@dataclass(frozen=True)
class Struct(Constant):
    type_name: Optional[str]  # None for a literal struct
    is_packed: bool
    member_values: Tuple[Constant, ...]


@dataclass(frozen=True)
class Array(Constant):
    element_type: Type
    member_values: Tuple[Constant, ...]


@dataclass(frozen=True)
class Vector(Constant):
    member_values: Tuple[Constant, ...]


@dataclass(frozen=True)
class GlobalReference(Constant):
    name: str


@dataclass(frozen=True)
class GetElementPtrConstant(Constant):
    in_bounds: bool
    element_type: Type
    address: Constant
    indices: Tuple[Constant, ...]


@dataclass(frozen=True)
class CastConstant(Constant):
    opcode: str  # "trunc", "ptrtoint", "inttoptr", "bitcast", "addrspacecast"
    operand: Constant
    type: Type


# ============================================================================
# Operands
# ============================================================================

@dataclass(frozen=True)
class Operand:
    """Base class for instruction operands"""
    pass


@dataclass(frozen=True)
class LocalReference(Operand):
    type: Type
    name: str


@dataclass(frozen=True)
class ConstantOperand(Operand):
    constant: Constant


# ============================================================================
# Instructions
# ============================================================================

@dataclass(frozen=True)
class Instruction:
    """Base class for non-terminator instructions"""
    pass


@dataclass(frozen=True)
class BinaryOperation(Instruction):
    opcode: str
    operand0: Operand
    operand1: Operand
    flags: Tuple[str, ...] = ()  # "nsw", "nuw", "exact", fast-math flags


@dataclass(frozen=True)
class ICmp(Instruction):
    predicate: str
    operand0: Operand
    operand1: Operand


@dataclass(frozen=True)
class FCmp(Instruction):
    predicate: str
    operand0: Operand
    operand1: Operand


@dataclass(frozen=True)
class Alloca(Instruction):
    allocated_type: Type
    num_elements: Optional[Operand] = None
    alignment: int = 0


@dataclass(frozen=True)
class Load(Instruction):
    type: Type
    address: Operand
    alignment: int = 0


@dataclass(frozen=True)
class Store(Instruction):
    address: Operand
    value: Operand
    alignment: int = 0


@dataclass(frozen=True)
class GetElementPtr(Instruction):
    element_type: Type
    address: Operand
    indices: Tuple[Operand, ...]
    in_bounds: bool = False


@dataclass(frozen=True)
class Cast(Instruction):
    opcode: str
    operand: Operand
    type: Type


@dataclass(frozen=True)
class Phi(Instruction):
    type: Type
    incoming: Tuple[Tuple[Operand, str], ...]  # (value, predecessor block)


@dataclass(frozen=True)
class Select(Instruction):
    condition: Operand
    true_value: Operand
    false_value: Operand


@dataclass(frozen=True)
class Call(Instruction):
    function_type: FunctionType
    callee: Operand
    arguments: Tuple[Operand, ...] = ()
    calling_convention: CallingConvention = CallingConvention.C
    tail_call: Optional[str] = None  # "tail", "musttail", "notail"


@dataclass(frozen=True)
class ExtractValue(Instruction):
    aggregate: Operand
    indices: Tuple[int, ...]


@dataclass(frozen=True)
class InsertValue(Instruction):
    aggregate: Operand
    element: Operand
    indices: Tuple[int, ...]


# ============================================================================
# Terminators
# ============================================================================

@dataclass(frozen=True)
class Terminator:
    """Base class for block terminators"""
    pass


@dataclass(frozen=True)
class Ret(Terminator):
    return_operand: Optional[Operand] = None


@dataclass(frozen=True)
class Br(Terminator):
    dest: str


@dataclass(frozen=True)
class CondBr(Terminator):
    condition: Operand
    true_dest: str
    false_dest: str


@dataclass(frozen=True)
class Switch(Terminator):
    operand: Operand
    default_dest: str
    dests: Tuple[Tuple[Constant, str], ...] = ()


@dataclass(frozen=True)
class Unreachable(Terminator):
    pass


# Metadata attachments are (kind, metadata node id) pairs, e.g. ("dbg", 3)
MetadataAttachments = Tuple[Tuple[str, int], ...]


@dataclass(frozen=True)
class Named:
    """An instruction whose result is bound to a local name"""
    name: str
    instruction: Instruction
    metadata: MetadataAttachments = ()


@dataclass(frozen=True)
class Do:
    """An instruction or terminator producing no named result"""
    instruction: Union[Instruction, Terminator]
    metadata: MetadataAttachments = ()


@dataclass(frozen=True)
class BasicBlock:
    name: str
    instructions: Tuple[Union[Named, Do], ...]
    terminator: Do


# ============================================================================
# Metadata Operands
# ============================================================================

@dataclass(frozen=True)
class MDString:
    value: str


@dataclass(frozen=True)
class MDNodeReference:
    id: int


@dataclass(frozen=True)
class MDConstant:
    constant: Constant


# None stands for a null operand
MetadataOperand = Optional[Union[MDString, MDNodeReference, MDConstant]]


# ============================================================================
# Definitions
# ============================================================================

@dataclass(frozen=True)
class GroupID:
    id: int


@dataclass(frozen=True)
class Parameter:
    type: Type
    name: str
    attributes: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Definition:
    """Base class for module level definitions"""
    pass


@dataclass(frozen=True)
class TypeDefinition(Definition):
    name: str
    type: Optional[StructureType] = None  # None declares an opaque type


@dataclass(frozen=True)
class COMDATDefinition(Definition):
    name: str
    selection_kind: SelectionKind = SelectionKind.ANY


@dataclass(frozen=True)
class GlobalVariable(Definition):
    name: str
    type: Type
    initializer: Optional[Constant] = None
    linkage: Linkage = Linkage.EXTERNAL
    visibility: Visibility = Visibility.DEFAULT
    dll_storage_class: Optional[DLLStorageClass] = None
    thread_local_mode: Optional[ThreadLocalMode] = None
    addr_space: int = 0
    unnamed_addr: Optional[UnnamedAddr] = None
    is_constant: bool = False
    section: Optional[str] = None
    comdat: Optional[str] = None
    alignment: int = 0


@dataclass(frozen=True)
class GlobalAlias(Definition):
    name: str
    type: Type
    aliasee: Constant
    linkage: Linkage = Linkage.EXTERNAL
    visibility: Visibility = Visibility.DEFAULT
    dll_storage_class: Optional[DLLStorageClass] = None
    thread_local_mode: Optional[ThreadLocalMode] = None
    unnamed_addr: Optional[UnnamedAddr] = None
    addr_space: int = 0


@dataclass(frozen=True)
class Function(Definition):
    name: str
    return_type: Type
    parameters: Tuple[Parameter, ...] = ()
    is_var_arg: bool = False
    basic_blocks: Tuple[BasicBlock, ...] = ()  # empty for a declaration
    linkage: Linkage = Linkage.EXTERNAL
    visibility: Visibility = Visibility.DEFAULT
    dll_storage_class: Optional[DLLStorageClass] = None
    calling_convention: CallingConvention = CallingConvention.C
    return_attributes: Tuple[str, ...] = ()
    function_attributes: Tuple[Union[str, GroupID], ...] = ()
    section: Optional[str] = None
    comdat: Optional[str] = None
    alignment: int = 0
    garbage_collector_name: Optional[str] = None
    prefix: Optional[Constant] = None
    personality_function: Optional[Constant] = None

    @property
    def type(self) -> FunctionType:
        return FunctionType(self.return_type,
                            tuple(p.type for p in self.parameters),
                            self.is_var_arg)


@dataclass(frozen=True)
class MetadataNodeDefinition(Definition):
    id: int
    operands: Tuple[MetadataOperand, ...]


@dataclass(frozen=True)
class NamedMetadataDefinition(Definition):
    name: str
    node_ids: Tuple[int, ...]


@dataclass(frozen=True)
class InlineAssembly(Definition):
    assembly: str


@dataclass(frozen=True)
class FunctionAttributeGroup(Definition):
    group_id: GroupID
    attributes: Tuple[str, ...]


# ============================================================================
# Module
# ============================================================================

@dataclass(frozen=True)
class Module:
    name: str
    source_file_name: str = "<string>"
    data_layout: Optional[str] = None
    target_triple: Optional[str] = None
    definitions: Tuple[Definition, ...] = ()
