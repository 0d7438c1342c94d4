"""
Native LLVM boundary.

- initialize_targets: one-time target and asm printer registration
- target_machine: a TargetMachine for a triple (the host by default)
- OutputKind / File: output selection and path wrapper used by
  irbridge.module.emit and the write_*_to_file functions
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from llvmlite import binding

from irbridge.errors import EmitFailure

log = logging.getLogger(__name__)

_initialized = False


class OutputKind(Enum):
    """What emit() produces."""
    LLVM_ASSEMBLY = "llvm"
    BITCODE = "bitcode"
    TARGET_ASSEMBLY = "asm"
    OBJECT = "obj"

    @property
    def is_binary(self) -> bool:
        return self in (OutputKind.BITCODE, OutputKind.OBJECT)

    @property
    def needs_target(self) -> bool:
        return self in (OutputKind.TARGET_ASSEMBLY, OutputKind.OBJECT)


@dataclass(frozen=True)
class File:
    """A filesystem path used as an output destination."""
    path: str

    def write(self, data):
        mode = 'wb' if isinstance(data, bytes) else 'w'
        with open(self.path, mode) as f:
            f.write(data)
        log.debug("wrote %d %s to %s", len(data),
                  'bytes' if mode == 'wb' else 'characters', self.path)


def initialize_targets():
    """Register the native target and all other targets, once per process."""
    global _initialized
    if _initialized:
        return
    try:
        binding.initialize()
    except RuntimeError:
        # Newer llvmlite versions initialize LLVM on import
        log.debug("llvmlite initializes LLVM itself")
    binding.initialize_native_target()
    binding.initialize_native_asmprinter()
    binding.initialize_all_targets()
    binding.initialize_all_asmprinters()
    _initialized = True


def target_machine(triple: Optional[str] = None, cpu: str = '',
                   features: str = '', opt: int = 2):
    """Create a TargetMachine for *triple*, defaulting to the host."""
    initialize_targets()
    try:
        if triple is None:
            target = binding.Target.from_default_triple()
        else:
            target = binding.Target.from_triple(triple)
    except RuntimeError as e:
        raise EmitFailure(f"No target for triple '{triple}': {e}") from e
    log.debug("target machine for %s (cpu=%r, features=%r, opt=%d)",
              target.triple, cpu, features, opt)
    return target.create_target_machine(cpu=cpu, features=features, opt=opt)
