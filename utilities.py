"""
Utilities module for the RETL interpreter
Runtime value model plus the common helpers shared by the evaluator and
the standard library
"""

from typing import Any, Dict, List, Optional, Callable, Tuple
import operator
import re

from type_system import (
  INT_TYPE,
  BOOL_TYPE,
  CHAR_TYPE,
  STRING_TYPE,
  NULL_TYPE,
  SCHEMA_TYPE,
  UNKNOWN_TYPE,
  list_type,
  tuple_type,
  dict_type,
  func_type,
  type_to_string
)


I32_MIN = -2 ** 31
I32_MAX = 2 ** 31 - 1

# Plain decimal integer text: no underscores, no non-ASCII digits
INT_TEXT = re.compile(r"-?[0-9]+")


# ==================== VALUE CONSTRUCTORS ====================

def make_value(kind: str, value: Any, type_info: Dict) -> Dict:
  """Create an immutable runtime value"""
  return {
      'kind': kind,
      'value': value,
      'type': type_info
  }


def int_value(n: int) -> Dict:
  return make_value("Int", n, INT_TYPE)


def bool_value(b: bool) -> Dict:
  return make_value("Bool", bool(b), BOOL_TYPE)


def char_value(c: str) -> Dict:
  return make_value("Char", c, CHAR_TYPE)


def string_value(s: str) -> Dict:
  return make_value("String", s, STRING_TYPE)


def null_value() -> Dict:
  return make_value("Null", None, NULL_TYPE)


def list_value(elements: List[Dict], element_type: Dict) -> Dict:
  return make_value("List", list(elements), list_type(element_type))


def tuple_value(elements: List[Dict], element_types: Optional[List[Dict]] = None) -> Dict:
  if element_types is None:
    element_types = [e['type'] for e in elements]
  return make_value("Tuple", list(elements), tuple_type(element_types))


def dict_value(pairs: List[Tuple[Dict, Dict]], key_type: Dict, value_type: Dict) -> Dict:
  """Ordered association list; duplicate keys are kept in order"""
  return make_value("Dict", list(pairs), dict_type(key_type, value_type))


def schema_value(columns: List[Tuple[str, Dict]]) -> Dict:
  return make_value("Schema", list(columns), SCHEMA_TYPE)


def table_value(schema: Dict, rows: List[Dict]) -> Dict:
  """A schema plus its rows; typed as a list of row tuples"""
  column_types = [t for _, t in schema['value']]
  return make_value("Table", {
      'schema': schema,
      'rows': list(rows)
  }, list_type(tuple_type(column_types)))


def func_value(
  params: List[Tuple[str, Dict]],
  return_type: Dict,
  body: Optional[Dict],
  closure_env: Optional[Dict],
  builtin: Optional[str] = None
) -> Dict:
  """Create a function value with its captured environment"""
  return make_value("Func", {
      'builtin': builtin,
      'params': list(params),
      'return_type': return_type,
      'body': body,
      'closure_env': closure_env
  }, func_type([t for _, t in params], return_type))


def error_value(message: str = "") -> Dict:
  """Evaluation sentinel; always typed Unknown"""
  return make_value("Error", message, UNKNOWN_TYPE)


# ==================== TYPE CHECKING UTILITIES ====================

def is_error(val: Dict) -> bool:
  return val['kind'] == "Error"


def is_value_dict(val: Any) -> bool:
  """
  Check if value is a wrapped runtime value

  Args:
    val: Value to check

  Returns:
    True if val is a dict with 'kind', 'value' and 'type' keys
  """
  return isinstance(val, dict) and 'kind' in val and 'value' in val and 'type' in val


def in_i32_range(n: int) -> bool:
  return I32_MIN <= n <= I32_MAX


def parse_int_text(text: str) -> Optional[int]:
  """Integer value of decimal text (surrounding whitespace allowed), None if malformed"""
  text = text.strip()
  if not INT_TEXT.fullmatch(text):
    return None
  return int(text)


def sequence_elements(val: Dict) -> Optional[List[Dict]]:
  """
  Elements of any list-like value

  Args:
    val: Runtime value

  Returns:
    The element values of a List, Tuple or Table (its rows), the
    chars of a String, the (key, value) tuples of a Dict, or None for
    values that have no elements

  Examples:
    sequence_elements(string_value("ab")) -> [char 'a', char 'b']
    sequence_elements(int_value(3)) -> None
  """
  kind = val['kind']
  if kind in ("List", "Tuple"):
    return val['value']
  if kind == "Table":
    return val['value']['rows']
  if kind == "String":
    return [char_value(c) for c in val['value']]
  if kind == "Dict":
    return [tuple_value([k, v]) for k, v in val['value']]
  return None


def as_list(val: Dict) -> Optional[Dict]:
  """View a Table as the List of its rows; Lists pass through"""
  if val['kind'] == "List":
    return val
  if val['kind'] == "Table":
    return make_value("List", val['value']['rows'], val['type'])
  return None


# ==================== EQUALITY AND RENDERING ====================

def values_equal(a: Dict, b: Dict) -> bool:
  """Structural equality over runtime values"""
  a_kind = "List" if a['kind'] == "Table" else a['kind']
  b_kind = "List" if b['kind'] == "Table" else b['kind']
  if a_kind != b_kind:
    return False

  if a_kind in ("List", "Tuple"):
    xs, ys = sequence_elements(a), sequence_elements(b)
    return len(xs) == len(ys) and all(values_equal(x, y) for x, y in zip(xs, ys))
  elif a_kind == "Dict":
    return (len(a['value']) == len(b['value']) and
            all(values_equal(k1, k2) and values_equal(v1, v2)
                for (k1, v1), (k2, v2) in zip(a['value'], b['value'])))
  elif a_kind == "Func":
    return a['value'] is b['value']
  elif a_kind == "Error":
    return False
  return a['value'] == b['value']


def render_scalar(val: Dict) -> Optional[str]:
  """Printable text of an Int/Bool/Char/String value, None otherwise"""
  kind = val['kind']
  if kind == "Bool":
    return "true" if val['value'] else "false"
  if kind in ("Int", "Char", "String"):
    return str(val['value'])
  return None


def render_value(val: Dict) -> str:
  """Render any value the way the REPL echoes it"""
  kind = val['kind']
  if kind == "String":
    return f'"{val["value"]}"'
  elif kind == "Char":
    return f"'{val['value']}'"
  elif kind in ("Int", "Bool"):
    return render_scalar(val)
  elif kind == "Null":
    return "null"
  elif kind == "List":
    return "[" + ", ".join(render_value(e) for e in val['value']) + "]"
  elif kind == "Tuple":
    return "(" + ", ".join(render_value(e) for e in val['value']) + ")"
  elif kind == "Dict":
    return "{" + ", ".join(f"{render_value(k)}: {render_value(v)}"
                           for k, v in val['value']) + "}"
  elif kind == "Schema":
    return "schema { " + ", ".join(f"{name}: {type_to_string(t)}"
                                   for name, t in val['value']) + " }"
  elif kind == "Table":
    schema = val['value']['schema']
    return f"table({render_value(schema)}, {len(val['value']['rows'])} rows)"
  elif kind == "Func":
    builtin = val['value']['builtin']
    if builtin is not None:
      return f"<builtin {builtin}>"
    return f"<{type_to_string(val['type'])}>"
  return "<error>"


def unwrap_value(val: Any) -> Any:
  """Recursively unwrap value dicts to extract raw Python values"""
  if not is_value_dict(val):
    return val
  kind = val['kind']
  if kind == "List":
    return [unwrap_value(e) for e in val['value']]
  elif kind == "Tuple":
    return tuple(unwrap_value(e) for e in val['value'])
  elif kind == "Dict":
    return {unwrap_value(k): unwrap_value(v) for k, v in val['value']}
  elif kind == "Schema":
    return [(name, type_to_string(t)) for name, t in val['value']]
  elif kind == "Table":
    return [unwrap_value(row) for row in val['value']['rows']]
  elif kind == "Func":
    return render_value(val)
  elif kind == "Error":
    return None
  return val['value']


# ==================== ERROR MESSAGE BUILDERS ====================

def type_mismatch_message(
  func_name: str,
  param_name: str,
  expected: str,
  actual: Dict
) -> str:
  """
  Generate type mismatch message

  Args:
    func_name: Function name
    param_name: Parameter name
    expected: Expected type
    actual: Actual value dict

  Returns:
    Formatted message
  """
  return (f"{func_name} requires {expected} for {param_name}, "
          f"got {type_to_string(actual['type'])}")


def arity_message(func_name: str, expected: int, got: int) -> str:
  return f"{func_name} requires {expected} arguments, got {got}"


def operation_message(op: str, left: Dict, right: Optional[Dict] = None) -> str:
  if right is None:
    return f"Cannot apply {op} to {type_to_string(left['type'])}"
  return (f"Cannot {op} {type_to_string(left['type'])} "
          f"and {type_to_string(right['type'])}")


def index_message(what: str, index: int, size: int) -> str:
  return f"{what} index {index} out of range for length {size}"


def bounds_message(func_name: str, start: int, end: int, size: int) -> str:
  return f"{func_name}: invalid range {start}..{end} for length {size}"


# ==================== BINARY OPERATION FACTORIES ====================

def truncating_div(a: int, b: int) -> int:
  """Integer division rounding toward zero"""
  q = abs(a) // abs(b)
  return q if (a < 0) == (b < 0) else -q


def truncating_mod(a: int, b: int) -> int:
  """Remainder carrying the sign of the dividend"""
  return a - b * truncating_div(a, b)


def binary_arithmetic_op(
  op: Callable[[int, int], int],
  op_name: str,
  checks_zero: bool = False
) -> Callable[[Dict, Dict], Dict]:
  """
  Factory for binary arithmetic operations over 32-bit ints

  Args:
    op: Python operator function (e.g., operator.add)
    op_name: Name for error messages
    checks_zero: Reject a zero right operand (division, modulo)

  Returns:
    Function that performs the operation, returning an Error value
    for bad operands, division by zero or overflow

  Examples:
    retl_add = binary_arithmetic_op(operator.add, "add")
    retl_add(int_value(1), int_value(2)) -> int_value(3)
  """
  def arithmetic(x: Dict, y: Dict) -> Dict:
    if x['kind'] != "Int" or y['kind'] != "Int":
      return error_value(operation_message(op_name, x, y))
    if checks_zero and y['value'] == 0:
      return error_value("Division by zero")
    result = op(x['value'], y['value'])
    if not in_i32_range(result):
      return error_value(f"Integer overflow in {op_name}")
    return int_value(result)

  return arithmetic


def binary_comparison_op(
  op: Callable[[Any, Any], bool],
  op_name: str,
  allowed_kinds: Optional[List[str]] = None
) -> Callable[[Dict, Dict], Dict]:
  """
  Factory for binary comparison operations

  Args:
    op: Python operator function (e.g., operator.lt)
    op_name: Name for error messages
    allowed_kinds: Value kinds that support this operation

  Returns:
    Function that performs the comparison

  Examples:
    retl_lt = binary_comparison_op(operator.lt, "compare")
    retl_lt(int_value(1), int_value(2)) -> bool_value(True)
  """
  if allowed_kinds is None:
    allowed_kinds = ["Int", "Char", "String"]

  def comparison(x: Dict, y: Dict) -> Dict:
    if x['kind'] != y['kind'] or x['kind'] not in allowed_kinds:
      return error_value(operation_message(op_name, x, y))
    return bool_value(op(x['value'], y['value']))

  return comparison


def binary_logical_op(op: Callable[[bool, bool], bool], op_name: str) -> Callable[[Dict, Dict], Dict]:
  def logical(x: Dict, y: Dict) -> Dict:
    if x['kind'] != "Bool" or y['kind'] != "Bool":
      return error_value(operation_message(op_name, x, y))
    return bool_value(op(x['value'], y['value']))

  return logical


def logical_and(a: bool, b: bool) -> bool:
  return a and b


def logical_or(a: bool, b: bool) -> bool:
  return a or b


ARITHMETIC_OPERATORS = {
    '+': binary_arithmetic_op(operator.add, "add"),
    '-': binary_arithmetic_op(operator.sub, "subtract"),
    '*': binary_arithmetic_op(operator.mul, "multiply"),
    '/': binary_arithmetic_op(truncating_div, "divide", checks_zero=True),
    '%': binary_arithmetic_op(truncating_mod, "take remainder of", checks_zero=True),
}

COMPARISON_OPERATORS = {
    '<': binary_comparison_op(operator.lt, "compare"),
    '<=': binary_comparison_op(operator.le, "compare"),
    '>': binary_comparison_op(operator.gt, "compare"),
    '>=': binary_comparison_op(operator.ge, "compare"),
}

LOGICAL_OPERATORS = {
    '&&': binary_logical_op(logical_and, "and"),
    '||': binary_logical_op(logical_or, "or"),
}
