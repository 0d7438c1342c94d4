"""
Assembly keyword tables for the declarative enumerations.

The encoder maps enum members to the keywords the graph prints; the
decoder maps keywords back. An empty keyword means "print nothing".
"""
from irbridge.ast_nodes import (
    CallingConvention, DLLStorageClass, FloatingPointFormat, Linkage,
    SelectionKind, ThreadLocalMode, UnnamedAddr, Visibility,
)

LINKAGE = {
    Linkage.PRIVATE: 'private',
    Linkage.INTERNAL: 'internal',
    Linkage.AVAILABLE_EXTERNALLY: 'available_externally',
    Linkage.LINK_ONCE: 'linkonce',
    Linkage.WEAK: 'weak',
    Linkage.COMMON: 'common',
    Linkage.APPENDING: 'appending',
    Linkage.EXTERN_WEAK: 'extern_weak',
    Linkage.LINK_ONCE_ODR: 'linkonce_odr',
    Linkage.WEAK_ODR: 'weak_odr',
    Linkage.EXTERNAL: 'external',
}

VISIBILITY = {
    Visibility.DEFAULT: '',
    Visibility.HIDDEN: 'hidden',
    Visibility.PROTECTED: 'protected',
}

DLL_STORAGE_CLASS = {
    None: '',
    DLLStorageClass.IMPORT: 'dllimport',
    DLLStorageClass.EXPORT: 'dllexport',
}

THREAD_LOCAL_MODE = {
    None: '',
    ThreadLocalMode.GENERAL_DYNAMIC: 'thread_local',
    ThreadLocalMode.LOCAL_DYNAMIC: 'thread_local(localdynamic)',
    ThreadLocalMode.INITIAL_EXEC: 'thread_local(initialexec)',
    ThreadLocalMode.LOCAL_EXEC: 'thread_local(localexec)',
}

UNNAMED_ADDR = {
    None: '',
    UnnamedAddr.LOCAL: 'local_unnamed_addr',
    UnnamedAddr.GLOBAL: 'unnamed_addr',
}

SELECTION_KIND = {
    SelectionKind.ANY: 'any',
    SelectionKind.EXACT_MATCH: 'exactmatch',
    SelectionKind.LARGEST: 'largest',
    SelectionKind.NO_DEDUPLICATE: 'nodeduplicate',
    SelectionKind.SAME_SIZE: 'samesize',
}

CALLING_CONVENTION = {
    CallingConvention.C: '',
    CallingConvention.FAST: 'fastcc',
    CallingConvention.COLD: 'coldcc',
    CallingConvention.GHC: 'ghccc',
    CallingConvention.PRESERVE_MOST: 'preserve_mostcc',
    CallingConvention.PRESERVE_ALL: 'preserve_allcc',
    CallingConvention.SWIFT: 'swiftcc',
    CallingConvention.X86_STDCALL: 'x86_stdcallcc',
    CallingConvention.X86_FASTCALL: 'x86_fastcallcc',
}

FLOATING_POINT_FORMAT = {
    FloatingPointFormat.HALF: 'half',
    FloatingPointFormat.FLOAT: 'float',
    FloatingPointFormat.DOUBLE: 'double',
}

BINARY_OPCODES = frozenset([
    'add', 'sub', 'mul', 'udiv', 'sdiv', 'urem', 'srem',
    'shl', 'lshr', 'ashr', 'and', 'or', 'xor',
    'fadd', 'fsub', 'fmul', 'fdiv', 'frem',
])

CAST_OPCODES = frozenset([
    'trunc', 'zext', 'sext', 'fptrunc', 'fpext', 'fptoui', 'fptosi',
    'uitofp', 'sitofp', 'ptrtoint', 'inttoptr', 'bitcast', 'addrspacecast',
])

# Casts LLVM still accepts as constant expressions
CONSTANT_CAST_OPCODES = frozenset([
    'trunc', 'ptrtoint', 'inttoptr', 'bitcast', 'addrspacecast',
])

TAIL_CALL_KINDS = frozenset(['tail', 'musttail', 'notail'])


def reverse(table):
    """Keyword -> enum member map for one of the tables above."""
    return {keyword: member for member, keyword in table.items()}
