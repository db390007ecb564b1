"""
Command line and phase driver tests
"""

import pytest
import main as retl_main
from main import main, run_source, create_arg_parser, run_interactive_mode


class TestRunSource:

  def test_success(self):
    value, diagnostics = run_source("1 + 1")
    assert value['value'] == 2
    assert diagnostics == []

  def test_syntax_error_stops_before_evaluation(self, capsys):
    value, diagnostics = run_source('println("never"); let = 1')
    assert value is None
    assert diagnostics[0]['severity'] == "syntax"
    assert capsys.readouterr().out == ""

  def test_semantic_error_stops_before_evaluation(self, capsys):
    value, diagnostics = run_source('println("never"); let x: Missing = 1; x')
    assert value is None
    assert diagnostics[0]['severity'] == "semantic"
    assert capsys.readouterr().out == ""

  def test_int_literal_out_of_range(self):
    _, diagnostics = run_source("2147483648")
    assert diagnostics[0]['severity'] == "semantic"

  def test_evaluation_error(self):
    value, diagnostics = run_source("[1](3)")
    assert value['kind'] == "Error"
    assert diagnostics[0]['severity'] == "evaluation"


class TestCommandLine:

  def test_flags(self):
    args = create_arg_parser().parse_args(["-d", "--analyze", "prog.retl"])
    assert args.debug and args.analyze
    assert args.script == "prog.retl"

  def test_rejects_other_extensions(self, tmp_path, capsys):
    script = tmp_path / "prog.txt"
    script.write_text("1")
    with pytest.raises(SystemExit) as info:
      main([str(script)])
    assert info.value.code == 1
    assert ".retl" in capsys.readouterr().out

  def test_missing_script(self, tmp_path):
    with pytest.raises(SystemExit):
      main([str(tmp_path / "absent.retl")])

  def test_runs_script(self, tmp_path, capsys):
    script = tmp_path / "hello.retl"
    script.write_text('let greeting = "hello";\nprintln(greeting)\n')
    main([str(script)])
    assert capsys.readouterr().out == "hello\n"

  def test_failing_script_reports_in_red(self, tmp_path, capsys):
    script = tmp_path / "bad.retl"
    script.write_text("let x = 1;\nx(0)\n")
    with pytest.raises(SystemExit) as info:
      main([str(script)])
    assert info.value.code == 1
    out = capsys.readouterr().out
    assert "\033[31m" in out
    assert "Evaluation error" in out
    assert "Line: 2" in out

  def test_parse_flag_prints_cst(self, tmp_path, capsys):
    script = tmp_path / "p.retl"
    script.write_text("let x = 1; x")
    main(["--parse", str(script)])
    out = capsys.readouterr().out
    assert out.startswith("LET(x)")
    assert "REFERENCE" in out

  def test_analyze_flag_prints_ast(self, tmp_path, capsys):
    script = tmp_path / "a.retl"
    script.write_text("alias N = int; let x: N = 1; x")
    main(["--analyze", str(script)])
    out = capsys.readouterr().out
    assert "ALIAS" in out
    assert "alias N = int" in out


@pytest.fixture
def repl(monkeypatch, capsys):
  """Feed lines to the REPL and return what it printed"""
  def feed(*lines):
    pending = iter(lines + ("exit",))
    monkeypatch.setattr(retl_main, "setup_readline", lambda: None)
    monkeypatch.setattr("builtins.input", lambda prompt="": next(pending))
    run_interactive_mode()
    return capsys.readouterr().out
  return feed


class TestInteractive:

  def test_bindings_persist(self, repl):
    out = repl("let y = 5", "y * 2")
    assert "=> 10 : int" in out

  def test_errors_do_not_end_session(self, repl):
    out = repl("let = 1", "[1](4)", "1 + 1")
    assert "=> 2 : int" in out

  def test_deep_nesting_does_not_end_session(self, repl):
    out = repl("(" * 3000 + "1" + ")" * 3000, "1 + 1")
    assert "=> 2 : int" in out

  def test_parse_command(self, repl):
    out = repl(":parse 1 + 2")
    assert "PRIMITIVE(+)" in out
