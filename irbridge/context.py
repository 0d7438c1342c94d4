"""
Per-run translation state.

Tables that live for one encode or one decode run are fields of these
objects and are threaded through every translator class; nothing is kept
at module level between runs.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List as PyList, Optional

from llvmlite import ir

from irbridge.graph import GraphModule
from irbridge.scope import ScopeTable


@dataclass
class FunctionShell:
    """A function under construction and its basic-block shells."""
    function: Any
    blocks: PyList[ir.Block] = field(default_factory=list)


@dataclass
class EncodeState:
    """State of one declarative-to-graph run."""
    module: GraphModule
    scope: ScopeTable = field(default_factory=ScopeTable)
    # Current function while its body is being filled
    function: Optional[Any] = None


@dataclass
class DecodeState:
    """State of one graph-to-declarative run."""
    module: GraphModule
    scope: ScopeTable = field(default_factory=ScopeTable)
    # Identified struct types touched so far, keyed by id() of the type
    struct_types: Dict[int, ir.IdentifiedStructType] = field(default_factory=dict)
    # id() of metadata node -> its integer identifier
    metadata_ids: Dict[int, int] = field(default_factory=dict)


@dataclass
class NativeDecodeState:
    """State of one native-module-to-declarative run."""
    module: Any  # llvmlite.binding.ModuleRef
    scope: ScopeTable = field(default_factory=ScopeTable)
    # Identified struct name -> body, None for an opaque struct
    struct_types: Dict[str, Any] = field(default_factory=dict)
