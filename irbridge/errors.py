"""
irbridge Error Taxonomy

Every failure the translator can report is an IRBridgeError subclass:

- UnresolvedReference: a forward placeholder was never promoted
- ParseFailure: the native parser rejected its input
- LinkFailure: the native linker reported failure
- MalformedNativeGraph: the decoder met a value of unexpected shape
- EncodingFailure: a declarative value could not be translated
- EmitFailure: the native backend rejected a graph at the print boundary
- VerifyFailure: the LLVM verifier rejected a module
- DisposedModule: a handle was used after its slot was emptied
"""


class IRBridgeError(Exception):
    """Base exception for IR translation errors"""
    pass


class UnresolvedReference(IRBridgeError):
    """A referenced identifier was never defined"""

    def __init__(self, kind: str, identifier):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"Unresolved {kind} reference '{identifier}'")


class ParseFailure(IRBridgeError):
    """The native parser rejected assembly or bitcode input"""
    pass


class LinkFailure(IRBridgeError):
    """The native linker could not merge two modules"""
    pass


class MalformedNativeGraph(IRBridgeError):
    """Decoding observed a graph value of unexpected shape"""
    pass


class EncodingFailure(IRBridgeError):
    """A declarative value has no graph counterpart"""
    pass


class EmitFailure(IRBridgeError):
    """The native backend refused to print or emit a graph"""
    pass


class VerifyFailure(IRBridgeError):
    """LLVM's verifier found the module ill-formed"""
    pass


class DisposedModule(IRBridgeError):
    """A module handle was used after disposal"""
    pass
