"""
RETL Programming Language - Main Entry Point
A small functional scripting language for ETL-style data manipulation
"""

import sys
import argparse
from pathlib import Path
from typing import Optional, Dict, List, Tuple
import os

# Readline support for history and auto-completion
try:
  import readline
  READLINE_AVAILABLE = True
except ImportError:
  READLINE_AVAILABLE = False

from error_handling import (
  RETLParseError,
  INTERNAL,
  format_diagnostic,
  has_errors,
  record_diagnostic,
  record_parse_error
)
from environment import env_names, env_lookup_value
from parsing import create_parser, pretty_print_cst, KEYWORDS
from semantics import analyze_program, pretty_print_ast
from interpreter import (
  make_execution_context,
  create_builtin_runtime_env,
  run_program,
  interpret_toplevel
)
from stdlib import list_builtin_functions
from type_system import type_to_string
from utilities import render_value


VERSION = "RETL v0.3.0"
SCRIPT_EXTENSION = ".retl"

RED = "\033[31m"
RESET = "\033[0m"


def create_arg_parser() -> argparse.ArgumentParser:
  """Create command line argument parser"""
  parser = argparse.ArgumentParser(
      description='RETL Programming Language - functional scripting for ETL-style data work',
      formatter_class=argparse.RawDescriptionHelpFormatter,
      epilog="""
Examples:
  %(prog)s script.retl            # Run a RETL script
  %(prog)s -i                     # Interactive mode
  %(prog)s --parse script.retl    # Parse and show CST
  %(prog)s --analyze script.retl  # Parse, analyze and show AST
  %(prog)s --debug script.retl    # Run with debug output
        """
  )

  parser.add_argument(
      'script',
      nargs='?',
      help='RETL script file to execute'
  )

  parser.add_argument(
      '-i', '--interactive',
      action='store_true',
      help='Start interactive mode'
  )

  parser.add_argument(
      '--parse',
      action='store_true',
      help='Parse file and show CST (for debugging)'
  )

  parser.add_argument(
      '--analyze',
      action='store_true',
      help='Parse and analyze file, show AST (for debugging)'
  )

  parser.add_argument(
      '-d', '--debug',
      action='store_true',
      help='Enable debug output for all stages'
  )

  parser.add_argument(
      '--version',
      action='version',
      version=VERSION
  )

  return parser


# ============================================================================
# PHASE DRIVER
# ============================================================================

def print_diagnostics(diagnostics: List[Dict]) -> None:
  """Report diagnostics in red"""
  for diagnostic in diagnostics:
    print(f"{RED}{format_diagnostic(diagnostic)}{RESET}")


def parse_source(parser, source: str, filename: str, diagnostics: List[Dict]) -> Optional[Tuple]:
  """Parse, turning syntax errors and parser faults into diagnostics"""
  try:
    return parser.parse_string(source, filename)
  except RETLParseError as e:
    record_parse_error(diagnostics, e)
  except RecursionError:
    record_diagnostic(diagnostics, INTERNAL, "Program nested too deeply to parse")
  except Exception as e:
    record_diagnostic(diagnostics, INTERNAL, f"Internal parser error: {type(e).__name__}: {e}")
  return None


def analyze_source(cst: Tuple, aliases: Optional[Dict], diagnostics: List[Dict],
                   debug: bool = False) -> Optional[Tuple[Dict, Dict]]:
  """Analyze, turning analyzer faults into diagnostics"""
  try:
    return analyze_program(cst, aliases, diagnostics, debug)
  except RecursionError:
    record_diagnostic(diagnostics, INTERNAL, "Program nested too deeply to analyze")
  except Exception as e:
    record_diagnostic(diagnostics, INTERNAL, f"Internal analyzer error: {type(e).__name__}: {e}")
  return None


def run_source(source: str, filename: str = "<input>", debug: bool = False) -> Tuple[Optional[Dict], List[Dict]]:
  """
  Parse, analyze and evaluate a program.
  Stops after the first phase that reports anything; returns the
  program's value (None if it never ran) and the diagnostics.
  """
  diagnostics: List[Dict] = []

  if debug:
    print(f"=== Parsing {filename} ===")
  cst = parse_source(create_parser(debug), source, filename, diagnostics)
  if cst is None:
    return None, diagnostics

  if debug:
    print(f"=== Analyzing {filename} ===")
  analyzed = analyze_source(cst, None, diagnostics, debug)
  if analyzed is None or has_errors(diagnostics):
    return None, diagnostics
  ast, _ = analyzed

  if debug:
    print(f"=== Evaluating {filename} ===")
  context = make_execution_context(debug, diagnostics)
  value = run_program(ast, create_builtin_runtime_env(), context)
  return value, diagnostics


def check_script_path(script_path: str) -> None:
  if not script_path.endswith(SCRIPT_EXTENSION):
    print(f"Error: RETL scripts must have the {SCRIPT_EXTENSION} extension: '{script_path}'")
    sys.exit(1)
  if not Path(script_path).exists():
    print(f"Error: Script file '{script_path}' does not exist")
    sys.exit(1)


def read_script(script_path: str) -> str:
  try:
    with open(script_path, 'r', encoding='utf-8') as f:
      return f.read()
  except PermissionError:
    print(f"Error: Permission denied reading '{script_path}'")
    sys.exit(1)
  except UnicodeDecodeError as e:
    print(f"Error: Cannot decode file '{script_path}': {e}")
    print("  Hint: Make sure the file is a text file with UTF-8 encoding")
    sys.exit(1)


def parse_file(script_path: str, debug: bool = False) -> None:
  """Parse a RETL script file and show the CST"""
  source = read_script(script_path)
  diagnostics: List[Dict] = []
  cst = parse_source(create_parser(debug), source, script_path, diagnostics)
  if cst is None:
    print_diagnostics(diagnostics)
    sys.exit(1)
  print(pretty_print_cst(cst))


def analyze_file(script_path: str, debug: bool = False) -> None:
  """Parse and analyze a RETL script file and show the AST"""
  source = read_script(script_path)
  diagnostics: List[Dict] = []
  cst = parse_source(create_parser(debug), source, script_path, diagnostics)
  analyzed = analyze_source(cst, None, diagnostics, debug) if cst is not None else None
  if analyzed is None:
    print_diagnostics(diagnostics)
    sys.exit(1)

  ast, aliases = analyzed
  print(pretty_print_ast(ast))
  for name, alias_type in aliases.items():
    print(f"alias {name} = {type_to_string(alias_type)}")
  if has_errors(diagnostics):
    print_diagnostics(diagnostics)
    sys.exit(1)


def run_script_file(script_path: str, debug: bool = False) -> None:
  """Run a RETL script file with full interpretation"""
  source = read_script(script_path)
  value, diagnostics = run_source(source, script_path, debug)

  if has_errors(diagnostics):
    print_diagnostics(diagnostics)
    sys.exit(1)
  if debug and value is not None:
    print(f"Result: {render_value(value)} : {type_to_string(value['type'])}")


# ============================================================================
# INTERACTIVE MODE
# ============================================================================

def setup_readline():
  """Setup readline with history and auto-completion"""
  if not READLINE_AVAILABLE:
    return

  history_file = os.path.expanduser("~/.retl_history")
  try:
    readline.read_history_file(history_file)
  except OSError:
    pass  # First run, no history yet

  readline.set_history_length(1000)

  completions = KEYWORDS + list_builtin_functions() + [":parse", ":analyze", ":env", ":help", "exit"]

  def completer(text, state):
    options = [cmd for cmd in completions if cmd.startswith(text)]
    if state < len(options):
      return options[state]
    return None

  readline.set_completer(completer)
  readline.parse_and_bind("tab: complete")

  import atexit
  atexit.register(readline.write_history_file, history_file)


def print_help() -> None:
  print("REPL Commands:")
  print("  :parse <code>     - Show parsed CST")
  print("  :analyze <code>   - Show analyzed AST")
  print("  :env              - Show current bindings")
  print("  :help             - Show this help")
  print("  exit              - Exit REPL")
  print()
  print("Language features:")
  print("  let x = 5; x + 3                    - Binding with continuation")
  print("  let f = \\x: int -> int { x * 2 }    - Lambda")
  print("  map(f, [1, 2, 3])                   - Builtin call")
  print("  [1, 2, 3] |> map(f)                 - Pipeline")
  print("  match x { case 1..5 => \"small\", case _ => \"big\" }")


def print_session_env(session_env: Dict) -> None:
  builtins = set(list_builtin_functions())
  names = [n for n in env_names(session_env) if n not in builtins and not n.startswith("dummy$")]
  if not names:
    print("  (no user-defined bindings)")
    return
  for name in names:
    value = env_lookup_value(session_env, name)
    val_str = render_value(value)
    if len(val_str) > 60:
      val_str = val_str[:57] + "..."
    print(f"  {name} = {val_str} : {type_to_string(value['type'])}")


def run_interactive_mode(debug: bool = False) -> None:
  """Run RETL in interactive mode; bindings and aliases persist across lines"""
  print(f"{VERSION} - Interactive Mode")
  print("Type 'exit' to quit, ':help' for commands")
  if READLINE_AVAILABLE:
    print("Readline enabled: Use ↑/↓ for history, Tab for completion")
  if debug:
    print("Debug mode enabled")
  print()

  setup_readline()
  parser = create_parser(debug)
  session_env = create_builtin_runtime_env()
  session_aliases: Dict = {}

  while True:
    try:
      code = input("retl> ")
    except (KeyboardInterrupt, EOFError):
      print("\nGoodbye!")
      break

    stripped = code.strip()
    if stripped == "exit":
      break
    if not stripped:
      continue
    if stripped == ":help":
      print_help()
      continue
    if stripped == ":env":
      print("Current environment:")
      print_session_env(session_env)
      continue

    diagnostics: List[Dict] = []
    show_cst = stripped.startswith(":parse ")
    show_ast = stripped.startswith(":analyze ")
    if show_cst or show_ast:
      stripped = stripped.split(" ", 1)[1]

    cst = parse_source(parser, stripped, "<repl>", diagnostics)
    if cst is None:
      print_diagnostics(diagnostics)
      continue
    if show_cst:
      print(pretty_print_cst(cst))
      continue

    analyzed = analyze_source(cst, session_aliases, diagnostics, debug)
    if analyzed is None:
      print_diagnostics(diagnostics)
      continue
    ast, aliases = analyzed
    if show_ast:
      print(pretty_print_ast(ast))
    if has_errors(diagnostics):
      print_diagnostics(diagnostics)
      continue
    if show_ast:
      continue

    context = make_execution_context(debug, diagnostics)
    value, new_env = interpret_toplevel(ast, session_env, context)
    if has_errors(diagnostics):
      print_diagnostics(diagnostics)
      continue

    session_env, session_aliases = new_env, aliases
    if value['kind'] != "Null":
      print(f"=> {render_value(value)} : {type_to_string(value['type'])}")


def main(argv: Optional[List[str]] = None) -> None:
  """Main entry point for RETL"""
  arg_parser = create_arg_parser()
  args = arg_parser.parse_args(argv)

  if args.script:
    check_script_path(args.script)
    if args.parse:
      parse_file(args.script, debug=args.debug)
    elif args.analyze:
      analyze_file(args.script, debug=args.debug)
    else:
      run_script_file(args.script, debug=args.debug)

  elif args.interactive:
    run_interactive_mode(debug=args.debug)

  else:
    arg_parser.print_help()


if __name__ == "__main__":
  main()
