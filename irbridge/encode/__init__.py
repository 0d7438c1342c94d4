"""Declarative Module -> graph translation."""
from irbridge.encode.core import Encoder

__all__ = ['Encoder']
