"""
Built-in function tests
"""

import io
import sys
import pytest

from stdlib import list_builtin_functions, parse_csv_field, format_csv_field
from type_system import INT_TYPE, BOOL_TYPE, CHAR_TYPE, STRING_TYPE
from utilities import int_value, null_value


class TestHigherOrder:

  def test_map(self, evaluate):
    assert evaluate("map(\\x: int -> int { x + 1 }, [1, 2, 3])") == [2, 3, 4]

  def test_map_changes_element_type(self, evaluate):
    assert evaluate("type(map(\\x: int -> string { intToString(x) }, [1, 2]))") == "list[string]"

  def test_filter(self, evaluate):
    assert evaluate("filter(\\x: int -> bool { x % 2 == 0 }, range(0, 7))") == [0, 2, 4, 6]

  def test_filter_needs_bool_predicate(self, messages):
    assert messages("filter(\\x: int -> int { x }, [1])")

  def test_foldl_sum(self, evaluate):
    assert evaluate("foldl(0, [1, 2, 3, 4], \\acc: int, x: int -> int { acc + x })") == 10

  def test_fold_direction(self, evaluate):
    chars = "['a', 'b', 'c']"
    f = "\\acc: string, c: string -> string { acc ++ c }"
    assert evaluate(f'foldl("", {chars}, {f})') == "abc"
    assert evaluate(f'foldr("", {chars}, {f})') == "cba"

  def test_fold_type_mismatch(self, messages):
    assert messages('foldl("", [1, 2], \\acc: string, x: int -> string { acc })')

  def test_zip(self, evaluate):
    assert evaluate('zip([1, 2], ["a", "b"])') == [(1, "a"), (2, "b")]

  def test_zip_length_mismatch(self, run):
    value, diagnostics = run("zip([1, 2, 3], [1])")
    assert value['value'] == []
    assert "zip requires lists of equal length, got 3 and 1" in [d['message'] for d in diagnostics]


class TestListsAndStrings:

  def test_slice(self, evaluate):
    assert evaluate("slice([1, 2, 3, 4], 1, 3)") == [2, 3]

  @pytest.mark.parametrize("args", ["-1, 2", "2, 1", "0, 9"])
  def test_slice_bounds(self, messages, args):
    assert any(m.startswith("slice: invalid range") for m in messages(f"slice([1, 2, 3], {args})"))

  def test_substr(self, evaluate):
    assert evaluate('substr("hello", 1, 4)') == "ell"

  def test_substr_bounds(self, messages):
    assert "substr: invalid range 0..9 for length 5" in messages('substr("hello", 0, 9)')

  @pytest.mark.parametrize("source, expected", [
      ('len("hello")', 5),
      ("len([1, 2])", 2),
      ('len({"a": 1})', 1),
      ("len([])", 0),
  ])
  def test_len(self, evaluate, source, expected):
    assert evaluate(source) == expected

  def test_len_of_scalar(self, messages):
    assert "Cannot get length of int" in messages("len(5)")

  @pytest.mark.parametrize("source, expected", [
      ("type(1)", "int"),
      ("type('c')", "char"),
      ('type((1, "a"))', "tuple[int,string]"),
      ('type({"a": true})', "dict[string: bool]"),
      ("type(\\x: int -> bool { true })", "lambda[int->bool]"),
  ])
  def test_type(self, evaluate, source, expected):
    assert evaluate(source) == expected

  def test_range_is_half_open(self, evaluate):
    assert evaluate("range(2, 5)") == [2, 3, 4]
    assert evaluate("range(5, 2)") == []


class TestConsole:

  def test_print_and_println(self, evaluate, capsys):
    evaluate('print("a"); print(true); println(\'c\'); println(3)')
    assert capsys.readouterr().out == "atruec\n3\n"

  def test_print_rejects_collections(self, messages):
    assert "Cannot print value of type list[int]" in messages("println([1])")

  def test_readln(self, evaluate, monkeypatch):
    monkeypatch.setattr(sys, "stdin", io.StringIO("first line\nsecond\n"))
    assert evaluate("readln()") == "first line"

  def test_readln_at_eof(self, evaluate, monkeypatch):
    monkeypatch.setattr(sys, "stdin", io.StringIO(""))
    assert evaluate("readln()") == ""

  def test_conversions(self, evaluate):
    assert evaluate("intToString(42)") == "42"
    assert evaluate('stringToInt("-17")') == -17

  def test_string_to_int_rejects(self, messages):
    assert 'Cannot convert "4x" to int' in messages('stringToInt("4x")')
    assert messages('stringToInt("99999999999")')

  @pytest.mark.parametrize("text", ["1_000", "\u0663", "+5", ""])
  def test_string_to_int_needs_plain_digits(self, messages, text):
    assert f'Cannot convert "{text}" to int' in messages(f'stringToInt("{text}")')


TABLE_PROGRAM = """
  let people = schema { name: string, age: int };
  let t = createTable(people, [("ann", 31), ("bob", 25), ("cy", 40)]);
"""


class TestTables:

  def test_count(self, evaluate):
    assert evaluate(TABLE_PROGRAM + "count(t)") == 3

  def test_column(self, evaluate):
    assert evaluate(TABLE_PROGRAM + 'column(t, "age")') == [31, 25, 40]

  def test_unknown_column(self, messages):
    assert "Unknown column: height" in messages(TABLE_PROGRAM + 'column(t, "height")')

  def test_collect(self, evaluate):
    assert evaluate(TABLE_PROGRAM + "collect(t)")[0] == ("ann", 31)

  def test_table_is_a_list(self, evaluate):
    source = TABLE_PROGRAM + "map(\\r: tuple[string, int] -> int { r.1 }, t)"
    assert evaluate(source) == [31, 25, 40]

  def test_row_must_fit_schema(self, messages):
    source = 'createTable(schema { a: int }, [("x", 1)])'
    assert any(m.startswith("createTable: row 0") for m in messages(source))

  def test_count_needs_table(self, messages):
    assert messages("count([1, 2])")


class TestCSV:

  def test_round_trip(self, evaluate, tmp_path):
    path = tmp_path / "people.csv"
    evaluate(TABLE_PROGRAM + f'writeCSV("{path}", t, true)')
    assert path.read_text().splitlines()[0] == "name,age"

    source = f"""
      let people = schema {{ name: string, age: int }};
      let u = readCSV("{path}", people, true);
      column(u, "name")
    """
    assert evaluate(source) == ["ann", "bob", "cy"]

  def test_bad_rows_are_skipped(self, run, tmp_path):
    path = tmp_path / "data.csv"
    path.write_text("1,true\nx,false\n3\n4,false\n")
    value, diagnostics = run(f'readCSV("{path}", schema {{ n: int, b: bool }}, false)')
    assert len(value['value']['rows']) == 2
    assert len(diagnostics) == 2

  def test_missing_file(self, messages, tmp_path):
    path = tmp_path / "missing.csv"
    assert any(m.startswith("readCSV: cannot read") for m in
               messages(f'readCSV("{path}", schema {{ n: int }}, false)'))

  def test_parse_csv_field(self):
    assert parse_csv_field(" 12", INT_TYPE) == int_value(12)
    assert parse_csv_field("true", BOOL_TYPE)["value"] is True
    assert parse_csv_field("ab", CHAR_TYPE) is None
    assert parse_csv_field("", STRING_TYPE)["value"] == ""
    assert parse_csv_field("yes", BOOL_TYPE) is None
    assert parse_csv_field("1_000", INT_TYPE) is None

  def test_format_null_field(self):
    assert format_csv_field(null_value()) == ""


class TestRegistry:

  def test_every_builtin_is_registered(self):
    names = set(list_builtin_functions())
    assert {"map", "filter", "foldl", "foldr", "zip", "slice", "substr", "len", "type",
            "range", "print", "println", "readln", "intToString", "stringToInt",
            "createTable", "column", "collect", "count", "readCSV", "writeCSV"} <= names

  def test_builtins_are_values(self, evaluate):
    assert evaluate("let f = len; f([1, 2, 3])") == 3

  def test_builtin_arity(self, messages):
    assert any("requires 2 arguments" in m for m in messages("range(1)"))
