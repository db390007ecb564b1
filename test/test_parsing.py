"""
Parsing tests for RETL
Shapes of the concrete syntax tree
"""

import pytest
from parsing import RETLParser, cst_kind, cst_payload, find_nodes_by_type
from error_handling import RETLParseError


@pytest.fixture
def parser():
  """Provide a fresh parser for each test"""
  return RETLParser()


class TestExpressions:

  def test_literals(self, parser):
    assert cst_payload(parser.parse_string("42")) == 42
    assert cst_payload(parser.parse_string('"hi"')) == "hi"
    assert cst_payload(parser.parse_string("'\\n'")) == "\n"
    assert cst_kind(parser.parse_string("null")) == "NULL"
    assert cst_payload(parser.parse_string("true")) is True

  def test_precedence(self, parser):
    node = parser.parse_string("1 + 2 * 3")
    assert cst_kind(node) == "PRIMITIVE"
    assert cst_payload(node)["op"] == "+"
    assert cst_payload(cst_payload(node)["right"])["op"] == "*"

  def test_unary(self, parser):
    node = parser.parse_string("!true")
    assert cst_payload(node)["op"] == "!"
    assert cst_payload(node)["right"] is None

  def test_call_and_access(self, parser):
    node = parser.parse_string("f(1, 2).0")
    assert cst_kind(node) == "TUPLE_ACCESS"
    call = cst_payload(node)["target"]
    assert cst_kind(call) == "APPLICATION"
    assert len(cst_payload(call)["args"]) == 2

  def test_pipeline_appends_argument(self, parser):
    node = parser.parse_string("xs |> map(f)")
    assert cst_kind(node) == "APPLICATION"
    args = cst_payload(node)["args"]
    assert [cst_payload(a) for a in args] == ["f", "xs"]

  def test_collections(self, parser):
    assert cst_kind(parser.parse_string("[1, 2]")) == "LIST"
    assert cst_kind(parser.parse_string('(1, "a")')) == "TUPLE"
    assert cst_kind(parser.parse_string("(1)")) == "INT"
    assert cst_kind(parser.parse_string("()")) == "EMPTY"
    assert cst_kind(parser.parse_string('{"a": 1}')) == "DICT"
    schema = parser.parse_string("schema { name: string, age: int }")
    assert [name for name, _ in cst_payload(schema)] == ["name", "age"]

  def test_lambda(self, parser):
    node = parser.parse_string("\\x: int, y: int -> int { x + y }")
    assert cst_kind(node) == "LAMBDA"
    assert [name for name, _ in cst_payload(node)["params"]] == ["x", "y"]

  def test_else_if_chain(self, parser):
    node = parser.parse_string("if (c) { 1 } else if (d) { 2 } else { 3 }")
    assert cst_kind(cst_payload(node)["else"]) == "BRANCH"


class TestStatements:

  def test_let_scopes_over_rest(self, parser):
    node = parser.parse_string("let x: int = 5; x + 3")
    assert cst_kind(node) == "LET"
    payload = cst_payload(node)
    assert payload["ident"] == "x"
    assert cst_kind(payload["next"]) == "PRIMITIVE"

  def test_expression_statement_becomes_dummy_let(self, parser):
    node = parser.parse_string("println(1); 2")
    assert cst_kind(node) == "LET"
    assert cst_payload(node)["ident"].startswith("dummy$")

  def test_alias(self, parser):
    node = parser.parse_string("alias Row = tuple[int, string]; 1")
    assert cst_kind(node) == "ALIAS"
    assert cst_kind(cst_payload(node)["type"]) == "TYPE_TUPLE"

  def test_comments_ignored(self, parser):
    assert cst_payload(parser.parse_string("// note\n7 // trailing")) == 7

  def test_empty_program(self, parser):
    assert cst_kind(parser.parse_string("")) == "EMPTY"


class TestPatterns:

  def test_case_patterns(self, parser):
    node = parser.parse_string(
        'match v { case n: int if n > 0 => 1, case 1 | 2 => 2, case 1..5 => 3, case "a" => 4, case _ => 5 }')
    kinds = [cst_kind(p) for p, _ in cst_payload(node)["cases"]]
    assert kinds == ["PATTERN_TYPE", "PATTERN_MULTI", "PATTERN_RANGE", "PATTERN_LITERAL", "PATTERN_ANY"]

  def test_negative_range(self, parser):
    node = parser.parse_string("match v { case -3..3 => 0 }")
    pattern, _ = cst_payload(node)["cases"][0]
    assert cst_payload(pattern) == (-3, 3)

  def test_find_nodes(self, parser):
    node = parser.parse_string("let a = 1; let b = a + 1; a + b")
    assert len(find_nodes_by_type(node, "REFERENCE")) == 3


class TestParseErrors:

  @pytest.mark.parametrize("source", ["let = 5", "1 +", "if (x) { 1", "let x = 1;;"])
  def test_invalid_programs_raise(self, parser, source):
    with pytest.raises(RETLParseError):
      parser.parse_string(source)

  def test_error_position(self, parser):
    with pytest.raises(RETLParseError) as info:
      parser.parse_string("let x = 1;\nlet = 2")
    assert info.value.line == 2


class TestPositions:

  def test_node_on_new_line(self, parser):
    node = parser.parse_string("let x = 1;\n  f(x)")
    call = cst_payload(node)["next"]
    assert cst_kind(call) == "APPLICATION"
    assert (call[2].line, call[2].column) == (2, 3)

  def test_operator_takes_left_operand_position(self, parser):
    node = parser.parse_string("let x = 1;\nx + 1")
    sum_node = cst_payload(node)["next"]
    assert (sum_node[2].line, sum_node[2].column) == (2, 1)

  def test_nested_operators_are_plain_nodes(self, parser):
    node = parser.parse_string("-1 - 1")
    left = cst_payload(node)["left"]
    assert isinstance(left, tuple)
    assert cst_payload(left)["op"] == "-"
