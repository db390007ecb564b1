"""
RETL Standard Library
Built-in functions, primitive operators and the CSV codec
Pure functional style using immutable dictionaries

Builtins never import the evaluator: higher-order builtins receive it as
the `interpret` callable carried in their call site.
"""

from typing import Dict, Callable, List, Optional
import csv
import sys

from error_handling import record_diagnostic, EVALUATION, INTERNAL
from environment import make_runtime_env, env_bind_values, env_lookup_value
from type_system import (
  INT_TYPE,
  BOOL_TYPE,
  CHAR_TYPE,
  STRING_TYPE,
  NULL_TYPE,
  SCHEMA_TYPE,
  UNKNOWN_TYPE,
  ANY_TYPE,
  list_type,
  tuple_type,
  func_type,
  element_type,
  type_conforms,
  type_conforms_no_error,
  types_conform,
  has_unknown_types,
  type_to_string
)
from utilities import (
  int_value,
  bool_value,
  char_value,
  string_value,
  null_value,
  list_value,
  tuple_value,
  table_value,
  error_value,
  is_error,
  as_list,
  sequence_elements,
  values_equal,
  render_scalar,
  in_i32_range,
  parse_int_text,
  type_mismatch_message,
  arity_message,
  operation_message,
  bounds_message,
  ARITHMETIC_OPERATORS,
  COMPARISON_OPERATORS,
  LOGICAL_OPERATORS
)


# ============================================================================
# CALL SITES
# ============================================================================

def make_call_site(interpret: Callable, context: Dict, call_exp: Optional[Dict]) -> Dict:
  """What a builtin needs from its caller: the evaluator and where to report"""
  return {
      'interpret': interpret,
      'context': context,
      'call_exp': call_exp
  }


def _span(call_exp: Optional[Dict]):
  return call_exp.get('span') if call_exp else None


def fail(call: Dict, message: str) -> Dict:
  """Record an evaluation diagnostic at the call site and return the sentinel"""
  record_diagnostic(call['context']['diagnostics'], EVALUATION, message,
                    _span(call['call_exp']))
  return error_value(message)


# ============================================================================
# PRIMITIVE OPERATORS
# ============================================================================

def _negate(x: Dict) -> Dict:
  if x['kind'] != "Int":
    return error_value(operation_message("negate", x))
  if not in_i32_range(-x['value']):
    return error_value("Integer overflow in negate")
  return int_value(-x['value'])


def _not(x: Dict) -> Dict:
  if x['kind'] != "Bool":
    return error_value(operation_message("!", x))
  return bool_value(not x['value'])


def _concat(x: Dict, y: Dict) -> Dict:
  if x['kind'] in ("String", "Char") and y['kind'] in ("String", "Char"):
    return string_value(x['value'] + y['value'])
  xs, ys = as_list(x), as_list(y)
  if xs is None or ys is None:
    return error_value(operation_message("concatenate", x, y))
  resolved = type_conforms_no_error(element_type(xs['type']), element_type(ys['type']))
  if has_unknown_types(resolved):
    return error_value(operation_message("concatenate", x, y))
  return list_value(xs['value'] + ys['value'], resolved)


def _identical(x: Dict, y: Dict) -> Dict:
  return bool_value(values_equal(x, y) and x['type'] == y['type'])


BINARY_OPERATORS: Dict[str, Callable[[Dict, Dict], Dict]] = {
    **ARITHMETIC_OPERATORS,
    **COMPARISON_OPERATORS,
    **LOGICAL_OPERATORS,
    '++': _concat,
    '==': lambda x, y: bool_value(values_equal(x, y)),
    '!=': lambda x, y: bool_value(not values_equal(x, y)),
    '===': _identical,
}

UNARY_OPERATORS: Dict[str, Callable[[Dict], Dict]] = {
    '-': _negate,
    '!': _not,
}


def apply_operator(op: str, left: Dict, right: Optional[Dict], context: Dict, span=None) -> Dict:
  """Value-level semantics of a primitive operator; right is None for unary"""
  if right is None:
    impl = UNARY_OPERATORS.get(op)
    result = impl(left) if impl else error_value(f"Unknown unary operator: {op}")
  else:
    impl = BINARY_OPERATORS.get(op)
    result = impl(left, right) if impl else error_value(f"Unknown operator: {op}")

  if is_error(result):
    record_diagnostic(context['diagnostics'], EVALUATION, result['value'], span)
  return result


# ============================================================================
# FUNCTION CALLS
# ============================================================================

def call_function(func: Dict, args: List[Dict], interpret: Callable,
                  context: Dict, call_exp: Optional[Dict] = None) -> Dict:
  """
  Apply a function value to already-evaluated arguments.
  Arguments are bound into a fresh frame on top of the function's
  captured environment, never the caller's.
  """
  diagnostics = context['diagnostics']
  fn = func['value']
  params = fn['params']
  name = fn['builtin'] or "lambda"

  if len(args) != len(params):
    message = arity_message(name, len(params), len(args))
    record_diagnostic(diagnostics, EVALUATION, message, _span(call_exp))
    return error_value(message)

  bindings = {}
  for arg, (param_name, param_type) in zip(args, params):
    if is_error(arg):
      return arg
    resolved = type_conforms(arg['type'], param_type, _span(call_exp), diagnostics)
    if resolved == UNKNOWN_TYPE:
      return error_value(type_mismatch_message(name, param_name, type_to_string(param_type), arg))
    bindings[param_name] = {**arg, 'type': resolved}

  if fn['closure_env'] is None:
    call_env = make_runtime_env(None, bindings)
  else:
    call_env = env_bind_values(fn['closure_env'], bindings)

  if fn['builtin'] is not None:
    return dispatch(fn['builtin'], call_env, call_exp, interpret, context)
  return interpret(fn['body'], call_env, fn['return_type'], context)


def dispatch(identifier: str, env: Dict, call_exp: Optional[Dict],
             interpret: Callable, context: Dict) -> Dict:
  """Run a builtin with its arguments read from env by parameter name"""
  call = make_call_site(interpret, context, call_exp)
  builtin = BUILTIN_FUNCTIONS.get(identifier)
  if builtin is None:
    record_diagnostic(context['diagnostics'], INTERNAL,
                      f"Unknown built-in function: {identifier}", _span(call_exp))
    return error_value(f"Unknown built-in function: {identifier}")

  if context.get('debug'):
    print(f"Builtin: {identifier}")

  args = []
  for param_name, _ in builtin['params']:
    arg = env_lookup_value(env, param_name)
    if arg is None:
      return fail(call, f"{identifier}: missing argument {param_name}")
    args.append(arg)
  return builtin['impl'](call, *args)


def _apply(call: Dict, func: Dict, args: List[Dict]) -> Dict:
  return call_function(func, args, call['interpret'], call['context'], call['call_exp'])


# ============================================================================
# HIGHER-ORDER FUNCTIONS
# ============================================================================

def retl_map(call: Dict, f: Dict, xs: Dict) -> Dict:
  """Apply f to every element, keeping order"""
  lst = as_list(xs)
  if lst is None:
    return fail(call, type_mismatch_message("map", "xs", "list", xs))

  results = []
  for elem in lst['value']:
    result = _apply(call, f, [elem])
    if is_error(result):
      return result
    results.append(result)
  return list_value(results, f['value']['return_type'])


def retl_filter(call: Dict, f: Dict, xs: Dict) -> Dict:
  """Keep the elements for which the predicate yields true"""
  if not types_conform(f['value']['return_type'], BOOL_TYPE):
    return fail(call, "filter requires a predicate returning bool, got "
                + type_to_string(f['value']['return_type']))
  lst = as_list(xs)
  if lst is None:
    return fail(call, type_mismatch_message("filter", "xs", "list", xs))

  kept = []
  for elem in lst['value']:
    result = _apply(call, f, [elem])
    if is_error(result):
      return result
    if result['kind'] != "Bool":
      return fail(call, type_mismatch_message("filter", "predicate result", "bool", result))
    if result['value']:
      kept.append(elem)
  return list_value(kept, element_type(lst['type']))


def _fold(call: Dict, name: str, init: Dict, xs: Dict, f: Dict, from_right: bool) -> Dict:
  lst = as_list(xs)
  if lst is None:
    return fail(call, type_mismatch_message(name, "xs", "list", xs))

  params = f['value']['params']
  acc_param, elem_param = params[0][1], params[1][1]
  acc_type = init['type']
  elem_type = element_type(lst['type'])

  # a char list folds into a string accumulator one-char strings at a time
  widen = elem_type == CHAR_TYPE and acc_type == STRING_TYPE
  if widen and types_conform(STRING_TYPE, elem_param):
    elem_type = STRING_TYPE

  if not widen and not types_conform(acc_type, elem_type):
    return fail(call, f"{name}: accumulator type {type_to_string(acc_type)} "
                f"does not match element type {type_to_string(elem_type)}")
  if not types_conform(acc_type, acc_param) or not types_conform(elem_type, elem_param):
    return fail(call, f"{name}: function of type {type_to_string(f['type'])} cannot fold "
                f"{type_to_string(elem_type)} into {type_to_string(acc_type)}")

  elements = lst['value'][::-1] if from_right else lst['value']
  acc = init
  for elem in elements:
    if elem_type == STRING_TYPE and elem['kind'] == "Char":
      elem = string_value(elem['value'])
    acc = _apply(call, f, [acc, elem])
    if is_error(acc):
      return acc
  return acc


def retl_foldl(call: Dict, init: Dict, xs: Dict, f: Dict) -> Dict:
  """f(acc, elem) from the first element to the last"""
  return _fold(call, "foldl", init, xs, f, from_right=False)


def retl_foldr(call: Dict, init: Dict, xs: Dict, f: Dict) -> Dict:
  """f(acc, elem) from the last element to the first"""
  return _fold(call, "foldr", init, xs, f, from_right=True)


# ============================================================================
# LIST AND STRING FUNCTIONS
# ============================================================================

def retl_zip(call: Dict, xs: Dict, ys: Dict) -> Dict:
  left, right = as_list(xs), as_list(ys)
  pair_type = tuple_type([element_type(xs['type']), element_type(ys['type'])])
  if len(left['value']) != len(right['value']):
    fail(call, f"zip requires lists of equal length, got "
         f"{len(left['value'])} and {len(right['value'])}")
    return list_value([], pair_type)
  pairs = [tuple_value([a, b]) for a, b in zip(left['value'], right['value'])]
  return list_value(pairs, pair_type)


def _check_bounds(call: Dict, name: str, start: int, end: int, size: int) -> Optional[Dict]:
  if start < 0 or start > end or end > size:
    return fail(call, bounds_message(name, start, end, size))
  return None


def retl_slice(call: Dict, xs: Dict, start: Dict, end: Dict) -> Dict:
  lst = as_list(xs)
  bad = _check_bounds(call, "slice", start['value'], end['value'], len(lst['value']))
  if bad is not None:
    return bad
  return list_value(lst['value'][start['value']:end['value']], element_type(lst['type']))


def retl_substr(call: Dict, s: Dict, start: Dict, end: Dict) -> Dict:
  bad = _check_bounds(call, "substr", start['value'], end['value'], len(s['value']))
  if bad is not None:
    return bad
  return string_value(s['value'][start['value']:end['value']])


def retl_len(call: Dict, x: Dict) -> Dict:
  if x['kind'] in ("Int", "Bool", "Char", "Null", "Schema", "Func"):
    return fail(call, f"Cannot get length of {type_to_string(x['type'])}")
  return int_value(len(sequence_elements(x)))


def retl_type(call: Dict, x: Dict) -> Dict:
  return string_value(type_to_string(x['type']))


def retl_range(call: Dict, start: Dict, end: Dict) -> Dict:
  """Half-open integer range"""
  return list_value([int_value(i) for i in range(start['value'], end['value'])], INT_TYPE)


# ============================================================================
# CONSOLE I/O AND CONVERSIONS
# ============================================================================

def retl_print(call: Dict, x: Dict) -> Dict:
  """Print a scalar value to stdout"""
  text = render_scalar(x)
  if text is None:
    return fail(call, f"Cannot print value of type {type_to_string(x['type'])}")
  print(text, end='')
  return null_value()


def retl_println(call: Dict, x: Dict) -> Dict:
  """Print a scalar value with newline"""
  text = render_scalar(x)
  if text is None:
    return fail(call, f"Cannot print value of type {type_to_string(x['type'])}")
  print(text)
  return null_value()


def retl_readln(call: Dict) -> Dict:
  line = sys.stdin.readline()
  return string_value(line.rstrip("\n"))


def retl_int_to_string(call: Dict, n: Dict) -> Dict:
  return string_value(str(n['value']))


def retl_string_to_int(call: Dict, s: Dict) -> Dict:
  n = parse_int_text(s['value'])
  if n is None:
    return fail(call, f"Cannot convert \"{s['value']}\" to int")
  if not in_i32_range(n):
    return fail(call, f"Integer overflow converting \"{s['value']}\"")
  return int_value(n)


# ============================================================================
# TABLES
# ============================================================================

def validate_row(row: Dict, schema: Dict) -> Optional[str]:
  """Problem with a row against a schema, or None if it fits"""
  columns = schema['value']
  if row['kind'] != "Tuple":
    return f"Table rows must be tuples, got {type_to_string(row['type'])}"
  if len(row['value']) != len(columns):
    return f"Row has {len(row['value'])} fields, schema has {len(columns)} columns"
  for field, (name, column_type) in zip(row['value'], columns):
    if not types_conform(field['type'], column_type):
      return (f"Column {name} expects {type_to_string(column_type)}, "
              f"got {type_to_string(field['type'])}")
  return None


def _require_table(call: Dict, name: str, table: Dict) -> Optional[Dict]:
  if table['kind'] != "Table":
    return fail(call, type_mismatch_message(name, "table", "table", table))
  return None


def retl_create_table(call: Dict, schema: Dict, rows: Dict) -> Dict:
  rows = as_list(rows)
  for index, row in enumerate(rows['value']):
    problem = validate_row(row, schema)
    if problem is not None:
      return fail(call, f"createTable: row {index}: {problem}")
  return table_value(schema, rows['value'])


def retl_column(call: Dict, table: Dict, name: Dict) -> Dict:
  bad = _require_table(call, "column", table)
  if bad is not None:
    return bad
  columns = table['value']['schema']['value']
  for index, (column_name, column_type) in enumerate(columns):
    if column_name == name['value']:
      values = [row['value'][index] for row in table['value']['rows']]
      return list_value(values, column_type)
  return fail(call, f"Unknown column: {name['value']}")


def retl_collect(call: Dict, table: Dict) -> Dict:
  bad = _require_table(call, "collect", table)
  if bad is not None:
    return bad
  return list_value(table['value']['rows'], element_type(table['type']))


def retl_count(call: Dict, table: Dict) -> Dict:
  bad = _require_table(call, "count", table)
  if bad is not None:
    return bad
  return int_value(len(table['value']['rows']))


# ============================================================================
# CSV CODEC
# ============================================================================

def read_csv_rows(path: str) -> List[List[str]]:
  with open(path, newline='') as f:
    return [row for row in csv.reader(f)]


def write_csv_rows(path: str, rows: List[List[str]]) -> None:
  with open(path, 'w', newline='') as f:
    csv.writer(f).writerows(rows)


def parse_csv_field(text: str, column_type: Dict) -> Optional[Dict]:
  """Convert one CSV field to a value of the column type, None if it does not fit"""
  name = column_type['name']
  if name == "Int":
    n = parse_int_text(text)
    return int_value(n) if n is not None and in_i32_range(n) else None
  elif name == "Bool":
    if text.strip() in ("true", "false"):
      return bool_value(text.strip() == "true")
    return None
  elif name == "Char":
    return char_value(text) if len(text) == 1 else None
  elif name in ("String", "Any"):
    return string_value(text)
  elif name == "Null":
    return null_value() if text == "" else None
  return None


def format_csv_field(value: Dict) -> Optional[str]:
  if value['kind'] == "Null":
    return ""
  return render_scalar(value)


def retl_read_csv(call: Dict, path: Dict, schema: Dict, header: Dict) -> Dict:
  """Load a CSV file as a table; rows that do not fit the schema are reported and skipped"""
  try:
    raw_rows = read_csv_rows(path['value'])
  except OSError as e:
    return fail(call, f"readCSV: cannot read {path['value']}: {e.strerror}")

  columns = schema['value']
  rows = []
  start = 1 if header['value'] else 0
  for line_number, raw in enumerate(raw_rows[start:], start=start + 1):
    if len(raw) != len(columns):
      fail(call, f"readCSV: line {line_number}: expected {len(columns)} fields, got {len(raw)}")
      continue
    fields = [parse_csv_field(text, t) for text, (_, t) in zip(raw, columns)]
    bad = [name for field, (name, _) in zip(fields, columns) if field is None]
    if bad:
      fail(call, f"readCSV: line {line_number}: invalid value for column {bad[0]}")
      continue
    rows.append(tuple_value(fields, [t for _, t in columns]))
  return table_value(schema, rows)


def retl_write_csv(call: Dict, path: Dict, table: Dict, header: Dict) -> Dict:
  bad = _require_table(call, "writeCSV", table)
  if bad is not None:
    return bad

  out = []
  if header['value']:
    out.append([name for name, _ in table['value']['schema']['value']])
  for row in table['value']['rows']:
    fields = [format_csv_field(v) for v in row['value']]
    if any(field is None for field in fields):
      return fail(call, "writeCSV: only scalar columns can be written")
    out.append(fields)

  try:
    write_csv_rows(path['value'], out)
  except OSError as e:
    return fail(call, f"writeCSV: cannot write {path['value']}: {e.strerror}")
  return null_value()


# ============================================================================
# BUILT-IN FUNCTION REGISTRY
# ============================================================================

def make_builtin_function(name: str, params: List[tuple], return_type: Dict, impl: Callable) -> Dict:
  """Create a built-in function entry"""
  return {
      'name': name,
      'params': params,
      'return_type': return_type,
      'impl': impl
  }


ANY_LIST = list_type(ANY_TYPE)

BUILTIN_FUNCTIONS: Dict[str, Dict] = {
    # Higher-order functions
    "map": make_builtin_function(
        "map", [("f", func_type([ANY_TYPE], ANY_TYPE)), ("xs", ANY_LIST)], ANY_LIST, retl_map),
    "filter": make_builtin_function(
        "filter", [("f", func_type([ANY_TYPE], BOOL_TYPE)), ("xs", ANY_LIST)], ANY_LIST, retl_filter),
    "foldl": make_builtin_function(
        "foldl", [("init", ANY_TYPE), ("xs", ANY_LIST), ("f", func_type([ANY_TYPE, ANY_TYPE], ANY_TYPE))],
        ANY_TYPE, retl_foldl),
    "foldr": make_builtin_function(
        "foldr", [("init", ANY_TYPE), ("xs", ANY_LIST), ("f", func_type([ANY_TYPE, ANY_TYPE], ANY_TYPE))],
        ANY_TYPE, retl_foldr),

    # List and string functions
    "zip": make_builtin_function(
        "zip", [("xs", ANY_LIST), ("ys", ANY_LIST)], list_type(tuple_type([ANY_TYPE, ANY_TYPE])), retl_zip),
    "slice": make_builtin_function(
        "slice", [("xs", ANY_LIST), ("start", INT_TYPE), ("end", INT_TYPE)], ANY_LIST, retl_slice),
    "substr": make_builtin_function(
        "substr", [("s", STRING_TYPE), ("start", INT_TYPE), ("end", INT_TYPE)], STRING_TYPE, retl_substr),
    "len": make_builtin_function("len", [("x", ANY_TYPE)], INT_TYPE, retl_len),
    "type": make_builtin_function("type", [("x", ANY_TYPE)], STRING_TYPE, retl_type),
    "range": make_builtin_function(
        "range", [("start", INT_TYPE), ("end", INT_TYPE)], list_type(INT_TYPE), retl_range),

    # I/O functions
    "print": make_builtin_function("print", [("x", ANY_TYPE)], NULL_TYPE, retl_print),
    "println": make_builtin_function("println", [("x", ANY_TYPE)], NULL_TYPE, retl_println),
    "readln": make_builtin_function("readln", [], STRING_TYPE, retl_readln),
    "intToString": make_builtin_function("intToString", [("n", INT_TYPE)], STRING_TYPE, retl_int_to_string),
    "stringToInt": make_builtin_function("stringToInt", [("s", STRING_TYPE)], INT_TYPE, retl_string_to_int),

    # Tables
    "createTable": make_builtin_function(
        "createTable", [("schema", SCHEMA_TYPE), ("rows", ANY_LIST)], ANY_LIST, retl_create_table),
    "column": make_builtin_function(
        "column", [("table", ANY_LIST), ("name", STRING_TYPE)], ANY_LIST, retl_column),
    "collect": make_builtin_function("collect", [("table", ANY_LIST)], ANY_LIST, retl_collect),
    "count": make_builtin_function("count", [("table", ANY_LIST)], INT_TYPE, retl_count),
    "readCSV": make_builtin_function(
        "readCSV", [("path", STRING_TYPE), ("schema", SCHEMA_TYPE), ("header", BOOL_TYPE)],
        ANY_LIST, retl_read_csv),
    "writeCSV": make_builtin_function(
        "writeCSV", [("path", STRING_TYPE), ("table", ANY_LIST), ("header", BOOL_TYPE)],
        NULL_TYPE, retl_write_csv),
}


def list_builtin_functions() -> List[str]:
  """List all available built-in functions"""
  return list(BUILTIN_FUNCTIONS.keys())
