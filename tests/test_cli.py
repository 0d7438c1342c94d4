"""
Tests for the irbc command line driver.
"""

MAIN = """
declare i32 @answer()

define i32 @main() {
  %v = call i32 @answer()
  ret i32 %v
}
"""

ANSWER = """
define i32 @answer() {
  ret i32 42
}
"""


class TestIrbc:
    """Driving irbc as a subprocess."""

    def test_prints_llvm_ir(self, run_irbc, write_ll):
        """Without --emit the normalized IR goes to stdout"""
        path = write_ll("main", MAIN)
        result = run_irbc(path)
        assert result.returncode == 0, result.stderr
        assert "define i32 @main()" in result.stdout
        assert "Loading" in result.stderr

    def test_emit_bitcode_next_to_input(self, run_irbc, write_ll, tmp_path):
        """--emit bitcode writes <input>.bc"""
        path = write_ll("main", MAIN)
        result = run_irbc(path, "--emit", "bitcode")
        assert result.returncode == 0, result.stderr
        assert (tmp_path / "main.bc").read_bytes().startswith(b'BC\xc0\xde')

    def test_link(self, run_irbc, write_ll):
        """--link pulls definitions from further modules"""
        main = write_ll("main", MAIN)
        answer = write_ll("answer", ANSWER)
        result = run_irbc(main, "--link", answer)
        assert result.returncode == 0, result.stderr
        assert "define i32 @answer()" in result.stdout
        assert "Linking" in result.stderr

    def test_bitcode_input(self, run_irbc, write_ll, tmp_path):
        """.bc inputs are read as bitcode"""
        answer = write_ll("answer", ANSWER)
        assert run_irbc(answer, "--emit", "bitcode").returncode == 0
        result = run_irbc(tmp_path / "answer.bc")
        assert result.returncode == 0, result.stderr
        assert "ret i32 42" in result.stdout

    def test_output_path(self, run_irbc, write_ll, tmp_path):
        """-o picks the destination"""
        path = write_ll("main", MAIN)
        out = tmp_path / "out" / "main.txt"
        out.parent.mkdir()
        result = run_irbc(path, "-o", out)
        assert result.returncode == 0, result.stderr
        assert "define i32 @main()" in out.read_text()
        assert result.stdout == ""

    def test_object_output(self, run_irbc, write_ll, tmp_path):
        """--emit obj writes an object file for the host"""
        path = write_ll("answer", ANSWER)
        result = run_irbc(path, "--emit", "obj")
        assert result.returncode == 0, result.stderr
        assert (tmp_path / "answer.o").stat().st_size > 0

    def test_verify(self, run_irbc, write_ll):
        """--verify reports verifier errors as failures"""
        path = write_ll("bad", "define i32 @f() {\n  %x = add i32 %x, 1\n  ret i32 %x\n}\n")
        result = run_irbc(path, "--verify")
        assert result.returncode == 1
        assert "irbc failed" in result.stderr

    def test_parse_error(self, run_irbc, write_ll):
        """Unparseable input exits with status 1"""
        path = write_ll("broken", "define i32 @f( {")
        result = run_irbc(path)
        assert result.returncode == 1
        assert "irbc failed" in result.stderr
