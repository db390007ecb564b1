"""
RETL Interpreter - Pure Functional Style
No classes, only pure functions and immutable data structures
Every node's value is conformed to the type its context expects; failures
become Error values plus a diagnostic and evaluation carries on
"""

from typing import Dict, Optional, Tuple

from error_handling import record_diagnostic, EVALUATION, INTERNAL
from environment import make_runtime_env, env_bind_value, env_lookup_value
from type_system import (
  BOOL_TYPE,
  INT_TYPE,
  NULL_TYPE,
  UNKNOWN_TYPE,
  ANY_TYPE,
  type_conforms,
  types_conform,
  has_unknown_types,
  type_to_string
)
from utilities import (
  make_value,
  int_value,
  char_value,
  null_value,
  list_value,
  tuple_value,
  dict_value,
  schema_value,
  func_value,
  error_value,
  is_error,
  as_list,
  sequence_elements,
  values_equal,
  render_value,
  arity_message,
  index_message
)
from stdlib import BUILTIN_FUNCTIONS, apply_operator, call_function


# ============================================================================
# DATA STRUCTURES (Immutable Dictionaries)
# ============================================================================

def make_execution_context(debug: bool = False, diagnostics: Optional[list] = None) -> Dict:
  """Per-run settings plus the diagnostics collection every phase appends to"""
  return {
      'debug': debug,
      'diagnostics': diagnostics if diagnostics is not None else []
  }


def create_builtin_runtime_env() -> Dict:
  """Root environment holding a function value for every builtin"""
  bindings = {
      name: func_value(builtin['params'], builtin['return_type'], None, None, builtin=name)
      for name, builtin in BUILTIN_FUNCTIONS.items()
  }
  return make_runtime_env(None, bindings)


# ============================================================================
# HELPERS
# ============================================================================

def _report(context: Dict, message: str, span=None) -> Dict:
  record_diagnostic(context['diagnostics'], EVALUATION, message, span)
  return error_value(message)


def _conform_value(val: Dict, expected_type: Dict, span, context: Dict) -> Dict:
  """Retag val with the type agreed with its context, or poison it"""
  if is_error(val):
    return val
  resolved = type_conforms(val['type'], expected_type, span, context['diagnostics'])
  if resolved == UNKNOWN_TYPE:
    return error_value(f"Type mismatch, {type_to_string(val['type'])} vs. {type_to_string(expected_type)}")
  if resolved == val['type']:
    return val
  return {**val, 'type': resolved}


def _expected_parameters(expected_type: Dict, name: str, arity: int) -> Optional[list]:
  if expected_type['name'] == name and len(expected_type['parameters']) == arity:
    return expected_type['parameters']
  return None


def _first_error(values) -> Optional[Dict]:
  for val in values:
    if is_error(val):
      return val
  return None


def _walk_bindings(exp: Optional[Dict], env: Dict, context: Dict) -> Tuple[Optional[Dict], Dict]:
  """Evaluate a let/alias chain iteratively; returns the tail and its environment"""
  node = exp
  while node is not None and node['type'] in ("LET", "ALIAS"):
    if node['type'] == "LET":
      value = node['value']
      bound = interpret(value['let_exp'], env, value['let_type'], context)
      env = env_bind_value(env, value['ident'], bound)
    node = node['value']['next']
  return node, env


# ============================================================================
# EVALUATION FUNCTIONS
# ============================================================================

def interpret(exp: Dict, env: Dict, expected_type: Dict = UNKNOWN_TYPE,
              context: Optional[Dict] = None) -> Dict:
  """
  Evaluate an AST node under the type its context expects.
  Never raises for program errors: they come back as Error values.
  """
  if context is None:
    context = make_execution_context()

  if context['debug']:
    print(f"Evaluating: {exp['type']}")

  node_type = exp['type']

  if node_type == "LIT":
    return interpret_literal(exp, env, expected_type, context)
  elif node_type in ("LET", "ALIAS"):
    return interpret_let(exp, env, expected_type, context)
  elif node_type == "LAMBDA":
    return interpret_lambda(exp, env, expected_type, context)
  elif node_type == "APPLICATION":
    return interpret_application(exp, env, expected_type, context)
  elif node_type == "MATCH":
    return interpret_match(exp, env, expected_type, context)
  elif node_type == "PRIMITIVE":
    return interpret_primitive(exp, env, expected_type, context)
  elif node_type == "REFERENCE":
    return interpret_reference(exp, env, expected_type, context)
  elif node_type == "BRANCH":
    return interpret_branch(exp, env, expected_type, context)
  elif node_type == "ITER":
    return interpret_iter(exp, env, expected_type, context)
  elif node_type == "LIST_DEF":
    return interpret_list_def(exp, env, expected_type, context)
  elif node_type == "TUPLE_DEF":
    return interpret_tuple_def(exp, env, expected_type, context)
  elif node_type == "TUPLE_ACCESS":
    return interpret_tuple_access(exp, env, expected_type, context)
  elif node_type == "DICT_DEF":
    return interpret_dict_def(exp, env, expected_type, context)
  elif node_type == "SCHEMA_DEF":
    return _conform_value(schema_value(exp['value']['columns']), expected_type, exp['span'], context)
  elif node_type == "EMPTY":
    return _conform_value(null_value(), expected_type, exp['span'], context)

  record_diagnostic(context['diagnostics'], INTERNAL, f"Unknown node type: {node_type}", exp.get('span'))
  return error_value(f"Unknown node type: {node_type}")


def interpret_literal(exp: Dict, env: Dict, expected_type: Dict, context: Dict) -> Dict:
  lit = exp['value']
  return _conform_value(make_value(lit['kind'], lit['literal'], exp['type_info']),
                        expected_type, exp['span'], context)


def interpret_let(exp: Dict, env: Dict, expected_type: Dict, context: Dict) -> Dict:
  """Bind each link of the chain, then evaluate what follows it"""
  tail, env = _walk_bindings(exp, env, context)
  if tail is None:
    return _conform_value(null_value(), expected_type, exp['span'], context)
  return interpret(tail, env, expected_type, context)


def interpret_lambda(exp: Dict, env: Dict, expected_type: Dict, context: Dict) -> Dict:
  value = exp['value']
  func = func_value(value['params'], value['return_type'], value['body'], env)
  return _conform_value(func, expected_type, exp['span'], context)


def interpret_application(exp: Dict, env: Dict, expected_type: Dict, context: Dict) -> Dict:
  """Index a string, list or dict, or call a function"""
  span = exp['span']
  args = exp['value']['args']
  callee = interpret(exp['value']['callee'], env, UNKNOWN_TYPE, context)
  if is_error(callee):
    return callee
  kind = callee['kind']

  if kind == "String" and len(args) == 1:
    index = interpret(args[0], env, INT_TYPE, context)
    if is_error(index):
      return index
    text = callee['value']
    if not 0 <= index['value'] < len(text):
      return _report(context, index_message("String", index['value'], len(text)), span)
    result = char_value(text[index['value']])

  elif kind in ("List", "Table") and len(args) == 1:
    index = interpret(args[0], env, INT_TYPE, context)
    if is_error(index):
      return index
    elements = as_list(callee)['value']
    if not 0 <= index['value'] < len(elements):
      return _report(context, index_message("List", index['value'], len(elements)), span)
    result = elements[index['value']]

  elif kind == "Dict" and len(args) == 1:
    key = interpret(args[0], env, callee['type']['parameters'][0], context)
    if is_error(key):
      return key
    for k, v in callee['value']:
      if values_equal(k, key):
        result = v
        break
    else:
      return _report(context, f"Key not found: {render_value(key)}", span)

  elif kind == "Func":
    params = callee['value']['params']
    if len(args) != len(params):
      name = callee['value']['builtin'] or "lambda"
      return _report(context, arity_message(name, len(params), len(args)), span)
    arg_values = [interpret(arg, env, param_type, context)
                  for arg, (_, param_type) in zip(args, params)]
    bad = _first_error(arg_values)
    if bad is not None:
      return bad
    result = call_function(callee, arg_values, interpret, context, exp)

  else:
    return _report(context, f"Cannot apply value of type {type_to_string(callee['type'])} "
                   f"to {len(args)} arguments", span)

  return _conform_value(result, expected_type, span, context)


def literal_matches(subject: Dict, literal_node: Dict) -> bool:
  literal = literal_node['value']
  return subject['kind'] == literal['kind'] and subject['value'] == literal['literal']


def match_pattern(pattern: Dict, subject: Dict, env: Dict, context: Dict) -> Tuple[Optional[Dict], Optional[Dict]]:
  """
  Try one case pattern against the subject.
  Returns (case environment or None if no match, Error value if the guard failed).
  """
  pattern_type = pattern['type']
  value = pattern['value']

  if pattern_type == "PATTERN_ANY":
    return env, None
  elif pattern_type == "PATTERN_TYPE":
    if not types_conform(subject['type'], value['case_type']):
      return None, None
    case_env = env_bind_value(env, value['ident'], subject)
    if value['predicate'] is None:
      return case_env, None
    guard = interpret(value['predicate'], case_env, BOOL_TYPE, context)
    if is_error(guard):
      return None, guard
    return (case_env if guard['value'] else None), None
  elif pattern_type == "PATTERN_LITERAL":
    return (env if literal_matches(subject, value['literal']) else None), None
  elif pattern_type == "PATTERN_MULTI":
    matched = any(literal_matches(subject, lit) for lit in value['literals'])
    return (env if matched else None), None
  elif pattern_type == "PATTERN_RANGE":
    matched = subject['kind'] == "Int" and subject['value'] in value['range']
    return (env if matched else None), None
  return None, None


def interpret_match(exp: Dict, env: Dict, expected_type: Dict, context: Dict) -> Dict:
  """First case whose pattern matches wins"""
  subject = interpret(exp['value']['subject'], env, UNKNOWN_TYPE, context)
  if is_error(subject):
    return subject

  for pattern, body in exp['value']['cases']:
    case_env, failed = match_pattern(pattern, subject, env, context)
    if failed is not None:
      return failed
    if case_env is not None:
      return interpret(body, case_env, expected_type, context)

  return _report(context, f"No case matched value {render_value(subject)}", exp['span'])


def interpret_primitive(exp: Dict, env: Dict, expected_type: Dict, context: Dict) -> Dict:
  value = exp['value']
  left = interpret(value['left'], env, UNKNOWN_TYPE, context)
  right = None
  if value['right'] is not None:
    right = interpret(value['right'], env, UNKNOWN_TYPE, context)

  bad = _first_error([left] + ([right] if right is not None else []))
  if bad is not None:
    return bad
  result = apply_operator(value['op'], left, right, context, exp['span'])
  return _conform_value(result, expected_type, exp['span'], context)


def interpret_reference(exp: Dict, env: Dict, expected_type: Dict, context: Dict) -> Dict:
  name = exp['value']['ident']
  value = env_lookup_value(env, name)
  if value is None:
    return _report(context, f"Unbound identifier: {name}", exp['span'])
  return _conform_value(value, expected_type, exp['span'], context)


def interpret_branch(exp: Dict, env: Dict, expected_type: Dict, context: Dict) -> Dict:
  value = exp['value']
  then_branch, else_branch = value['then'], value['else']

  # both arms must agree when their static types are known; no else means null
  then_static = then_branch['type_info']
  else_static = else_branch['type_info'] if else_branch is not None else NULL_TYPE
  if not has_unknown_types(then_static) and not has_unknown_types(else_static):
    type_conforms(then_static, else_static, exp['span'], context['diagnostics'])

  condition = interpret(value['cond'], env, BOOL_TYPE, context)
  if is_error(condition):
    return condition

  if condition['value']:
    return interpret(then_branch, env, expected_type, context)
  elif else_branch is not None:
    return interpret(else_branch, env, expected_type, context)
  return _conform_value(null_value(), expected_type, exp['span'], context)


def interpret_iter(exp: Dict, env: Dict, expected_type: Dict, context: Dict) -> Dict:
  """Run the body once per element; an int iterates 0..n-1"""
  value = exp['value']
  iterable = interpret(value['iterable'], env, UNKNOWN_TYPE, context)
  if is_error(iterable):
    return iterable

  if iterable['kind'] == "Int":
    elements = [int_value(i) for i in range(max(iterable['value'], 0))]
  else:
    elements = sequence_elements(iterable)
    if elements is None:
      return _report(context, f"Cannot iterate over {type_to_string(iterable['type'])}", exp['span'])

  for index in range(len(elements)):
    body_env = env_bind_value(env, value['ident'], elements[index])
    interpret(value['body'], body_env, UNKNOWN_TYPE, context)

  return _conform_value(null_value(), expected_type, exp['span'], context)


def interpret_list_def(exp: Dict, env: Dict, expected_type: Dict, context: Dict) -> Dict:
  """All elements share the first element's type, or an expected union"""
  elements = exp['value']['elements']
  expected = _expected_parameters(expected_type, "List", 1)
  expected_element = expected[0] if expected else UNKNOWN_TYPE

  if not elements:
    element_type = ANY_TYPE if has_unknown_types(expected_element) else expected_element
    return _conform_value(list_value([], element_type), expected_type, exp['span'], context)

  first = interpret(elements[0], env, expected_element, context)
  element_type = expected_element if expected_element['name'] == "Union" else first['type']
  values = [first] + [interpret(e, env, element_type, context) for e in elements[1:]]

  bad = _first_error(values)
  if bad is not None:
    return bad
  return _conform_value(list_value(values, element_type), expected_type, exp['span'], context)


def interpret_tuple_def(exp: Dict, env: Dict, expected_type: Dict, context: Dict) -> Dict:
  elements = exp['value']['elements']
  slots = _expected_parameters(expected_type, "Tuple", len(elements)) or [UNKNOWN_TYPE] * len(elements)
  values = [interpret(e, env, slot, context) for e, slot in zip(elements, slots)]

  bad = _first_error(values)
  if bad is not None:
    return bad
  return _conform_value(tuple_value(values), expected_type, exp['span'], context)


def interpret_tuple_access(exp: Dict, env: Dict, expected_type: Dict, context: Dict) -> Dict:
  index = exp['value']['index']
  target = interpret(exp['value']['target'], env, UNKNOWN_TYPE, context)
  if is_error(target):
    return target
  if target['kind'] != "Tuple":
    return _report(context, f"Cannot access field .{index} of {type_to_string(target['type'])}", exp['span'])
  if index >= len(target['value']):
    return _report(context, index_message("Tuple", index, len(target['value'])), exp['span'])
  return _conform_value(target['value'][index], expected_type, exp['span'], context)


def interpret_dict_def(exp: Dict, env: Dict, expected_type: Dict, context: Dict) -> Dict:
  """Ordered association list; the first pair fixes key and value types"""
  pairs = exp['value']['pairs']
  expected = _expected_parameters(expected_type, "Dict", 2)
  key_type, value_type = expected if expected else (UNKNOWN_TYPE, UNKNOWN_TYPE)

  if not pairs:
    empty = dict_value([],
                       ANY_TYPE if has_unknown_types(key_type) else key_type,
                       ANY_TYPE if has_unknown_types(value_type) else value_type)
    return _conform_value(empty, expected_type, exp['span'], context)

  evaluated = []
  for key_exp, value_exp in pairs:
    key = interpret(key_exp, env, key_type, context)
    val = interpret(value_exp, env, value_type, context)
    if not evaluated:
      key_type = key_type if key_type['name'] == "Union" else key['type']
      value_type = value_type if value_type['name'] == "Union" else val['type']
    evaluated.append((key, val))

  bad = _first_error([v for pair in evaluated for v in pair])
  if bad is not None:
    return bad
  return _conform_value(dict_value(evaluated, key_type, value_type), expected_type, exp['span'], context)


# ============================================================================
# PROGRAM EVALUATION
# ============================================================================

def _internal_failure(context: Dict, message: str, span=None) -> Dict:
  record_diagnostic(context['diagnostics'], INTERNAL, message, span)
  return error_value(message)


def run_program(ast: Dict, env: Optional[Dict] = None, context: Optional[Dict] = None) -> Dict:
  """
  Evaluate a whole program.
  Interpreter faults (stack exhaustion on pathological nesting, broken
  invariants) become internal diagnostics instead of escaping.
  """
  if context is None:
    context = make_execution_context()
  if env is None:
    env = create_builtin_runtime_env()

  try:
    return interpret(ast, env, UNKNOWN_TYPE, context)
  except RecursionError:
    return _internal_failure(context, "Maximum nesting depth exceeded during evaluation", ast.get('span'))
  except Exception as e:
    return _internal_failure(context, f"Internal interpreter error: {type(e).__name__}: {e}", ast.get('span'))


def interpret_toplevel(exp: Dict, env: Dict, context: Optional[Dict] = None) -> Tuple[Dict, Dict]:
  """Like run_program, but also returns env extended by the program's let chain"""
  if context is None:
    context = make_execution_context()

  try:
    tail, new_env = _walk_bindings(exp, env, context)
    if tail is None:
      return null_value(), new_env
    return interpret(tail, new_env, UNKNOWN_TYPE, context), new_env
  except RecursionError:
    return _internal_failure(context, "Maximum nesting depth exceeded during evaluation", exp.get('span')), env
  except Exception as e:
    return _internal_failure(context, f"Internal interpreter error: {type(e).__name__}: {e}", exp.get('span')), env
