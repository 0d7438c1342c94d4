#!/usr/bin/env python3
"""
irbc: LLVM module driver

Usage:
    python irbc.py <input> [--link more ...] [--emit kind] [-o output]

Examples:
    python irbc.py main.ll                          # Print normalized LLVM IR
    python irbc.py main.ll --link util.ll lib.bc    # Link, print the result
    python irbc.py main.ll --emit bitcode           # Produces main.bc
    python irbc.py main.bc --emit obj -o main.o     # Produces main.o
    python irbc.py main.ll --emit asm --triple x86_64-unknown-linux-gnu
    python irbc.py main.ll --verify                 # Run the LLVM verifier
"""

import sys
import os
import argparse
import logging

from irbridge import (
    IRBridgeError, OutputKind, emit, link_modules, module_from_bitcode,
    module_from_llvm_assembly, target_machine, verify_module,
)

log = logging.getLogger("irbc")

_EXTENSIONS = {
    OutputKind.BITCODE: ".bc",
    OutputKind.OBJECT: ".o",
}


def load_module(path: str):
    """Parse a .bc file as bitcode and anything else as LLVM assembly."""
    if path.endswith(".bc"):
        with open(path, "rb") as f:
            return module_from_bitcode(f.read())
    with open(path, "r") as f:
        return module_from_llvm_assembly(f.read())


def default_output(input_path: str, kind: OutputKind):
    """Binary kinds go next to the input; text goes to stdout (None)."""
    if kind not in _EXTENSIONS:
        return None
    return os.path.splitext(input_path)[0] + _EXTENSIONS[kind]


def run(input_path: str, link=(), kind: OutputKind = OutputKind.LLVM_ASSEMBLY,
        output_path: str = None, verify: bool = False, triple: str = None):
    """
    Load, link, check and emit one module.

    Args:
        input_path: .ll or .bc file
        link: further .ll / .bc files linked into the first, left to right
        kind: what to emit
        output_path: destination file (default: see default_output)
        verify: run LLVM's verifier on the linked module
        triple: target triple for target assembly and object output
    """
    print(f"Loading {input_path}...", file=sys.stderr)
    with load_module(input_path) as module:
        for path in link:
            print(f"Linking {path}...", file=sys.stderr)
            link_modules(module, load_module(path))

        if verify:
            print("Verifying...", file=sys.stderr)
            verify_module(module)

        if triple is not None:
            module.target_triple = triple
        machine = target_machine(module.target_triple) if kind.needs_target else None
        log.debug("emitting %s for %s", kind.value, module.target_triple or "host")
        data = emit(module, kind, machine)

    if output_path is None:
        output_path = default_output(input_path, kind)
    if output_path is None:
        sys.stdout.write(data.decode("utf8"))
        return
    with open(output_path, "wb") as f:
        f.write(data)
    print(f"Wrote {output_path}", file=sys.stderr)


def main():
    parser = argparse.ArgumentParser(
        description="LLVM module driver",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s main.ll                         Print normalized LLVM IR
  %(prog)s main.ll --link util.ll          Link util.ll into main.ll
  %(prog)s main.ll --emit bitcode          Write main.bc
  %(prog)s main.ll --emit obj -o main.o    Write main.o
        """
    )

    parser.add_argument("input", help="Input module (.ll or .bc)")
    parser.add_argument("--link", nargs="+", default=[], metavar="MODULE",
                        help="Modules to link into the input, in order")
    parser.add_argument("--emit", choices=[k.value for k in OutputKind],
                        default=OutputKind.LLVM_ASSEMBLY.value,
                        help="Output kind (default: llvm)")
    parser.add_argument("-o", "--output",
                        help="Output file (default: stdout for llvm/asm, "
                             "input with .bc/.o for bitcode/obj)")
    parser.add_argument("--verify", action="store_true",
                        help="Run the LLVM verifier before emitting")
    parser.add_argument("--triple", help="Target triple (default: module or host)")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Log debug output to stderr")

    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format="%(name)s: %(message)s")

    try:
        run(args.input,
            link=args.link,
            kind=OutputKind(args.emit),
            output_path=args.output,
            verify=args.verify,
            triple=args.triple)
    except IRBridgeError as e:
        print(f"irbc failed: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Internal error: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        sys.exit(2)


if __name__ == "__main__":
    main()
