"""Graph or native module -> declarative Module translation."""
from irbridge.decode.core import Decoder
from irbridge.decode.native import NativeDecoder

__all__ = ['Decoder', 'NativeDecoder']
