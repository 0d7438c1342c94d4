"""
Pytest configuration and fixtures for irbridge tests.

Provides reusable fixtures for:
- Building declarative modules
- Encoding them and reading back the LLVM assembly
- Running the irbc driver as a subprocess
"""

import pytest
import subprocess
import os
import sys
from pathlib import Path

from irbridge import ast_nodes as A
from irbridge import module_from_ast, module_llvm_assembly


@pytest.fixture
def irbc_root():
    """Path to the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def make_module():
    """
    Fixture that returns a function building a declarative Module.

    Usage:
        module_ast = make_module(A.GlobalVariable("g", A.IntegerType(32)), triple="x86_64-unknown-linux-gnu")
    """
    def _make(*definitions, name: str = "test", triple: str = None,
              data_layout: str = None) -> A.Module:
        return A.Module(name, "test.ll", data_layout, triple, tuple(definitions))

    return _make


@pytest.fixture
def assemble(make_module):
    """
    Fixture that encodes definitions and returns the module's LLVM assembly.

    Usage:
        text = assemble(add_function())
        assert "@add" in text
    """
    def _assemble(*definitions, **kwargs) -> str:
        with module_from_ast(make_module(*definitions, **kwargs)) as module:
            return module_llvm_assembly(module)

    return _assemble


@pytest.fixture
def run_irbc(irbc_root):
    """
    Fixture that returns a function running the irbc driver.

    Usage:
        result = run_irbc("main.ll", "--emit", "bitcode", cwd=tmp_path)
        assert result.returncode == 0
    """
    def _run(*args, cwd=None, text=True) -> subprocess.CompletedProcess:
        irbc = os.path.join(irbc_root, "irbc.py")
        env = dict(os.environ)
        env["PYTHONPATH"] = os.pathsep.join(
            [str(irbc_root)] + ([env["PYTHONPATH"]] if env.get("PYTHONPATH") else []))
        return subprocess.run(
            [sys.executable, irbc] + [str(a) for a in args],
            capture_output=True,
            text=text,
            cwd=cwd or irbc_root,
            env=env,
        )

    return _run


@pytest.fixture
def write_ll(tmp_path):
    """
    Fixture that writes LLVM assembly to a temporary .ll file.

    Usage:
        path = write_ll("main", "define i32 @main() { ret i32 0 }")
    """
    def _write(stem: str, text: str) -> Path:
        path = tmp_path / f"{stem}.ll"
        path.write_text(text)
        return path

    return _write
