"""
RETL Semantics Analysis - Pure Functional Style
Turns the parser's CST into the evaluator's AST: resolves type
expressions and aliases, assigns static types, expands range patterns
and collapses duplicate dict-literal keys
"""

from typing import Any, Dict, List, Optional, Tuple
from error_handling import SourcePosition, record_diagnostic, SEMANTIC
from type_system import (
  INT_TYPE,
  BOOL_TYPE,
  CHAR_TYPE,
  STRING_TYPE,
  NULL_TYPE,
  SCHEMA_TYPE,
  UNKNOWN_TYPE,
  SCALAR_TYPES,
  list_type,
  tuple_type,
  dict_type,
  union_type,
  func_type,
  has_unknown_types,
  type_to_string
)
from utilities import in_i32_range


BOOL_OPERATORS = {"<", "<=", ">", ">=", "==", "!=", "===", "&&", "||", "!"}

LITERAL_KINDS = {
    "INT": ("Int", INT_TYPE),
    "BOOL": ("Bool", BOOL_TYPE),
    "CHAR": ("Char", CHAR_TYPE),
    "STRING": ("String", STRING_TYPE),
    "NULL": ("Null", NULL_TYPE),
}


# ============================================================================
# DATA STRUCTURES (Immutable Dictionaries)
# ============================================================================

def make_ast_node(node_type: str, value: Any, span: Optional[SourcePosition] = None,
                  type_info: Optional[Dict] = None) -> Dict:
  """Create an immutable AST node dictionary"""
  return {
      'type': node_type,
      'value': value,
      'span': span,
      'type_info': type_info or UNKNOWN_TYPE
  }


def make_analysis_context(aliases: Optional[Dict] = None, diagnostics: Optional[List[Dict]] = None,
                          debug: bool = False) -> Dict:
  return {
      'aliases': aliases or {},
      'diagnostics': diagnostics,
      'debug': debug
  }


def _with_aliases(ctx: Dict, aliases: Dict) -> Dict:
  return {**ctx, 'aliases': aliases}


# ============================================================================
# TYPE EXPRESSIONS
# ============================================================================

def resolve_type(type_cst: Optional[Tuple], ctx: Dict) -> Dict:
  """Turn a type CST into a type term, looking alias names up in scope"""
  if type_cst is None:
    return UNKNOWN_TYPE
  kind, payload, position = type_cst

  if kind == "TYPE_ATOM":
    return SCALAR_TYPES[payload]
  elif kind == "TYPE_LIST":
    return list_type(resolve_type(payload, ctx))
  elif kind == "TYPE_TUPLE":
    return tuple_type([resolve_type(t, ctx) for t in payload])
  elif kind == "TYPE_DICT":
    return dict_type(resolve_type(payload[0], ctx), resolve_type(payload[1], ctx))
  elif kind == "TYPE_UNION":
    return union_type([resolve_type(t, ctx) for t in payload])
  elif kind == "TYPE_LAMBDA":
    params, return_type = payload
    return func_type([resolve_type(t, ctx) for t in params], resolve_type(return_type, ctx))
  elif kind == "TYPE_REF":
    if payload in ctx['aliases']:
      return ctx['aliases'][payload]
    record_diagnostic(ctx['diagnostics'], SEMANTIC, f"Unknown type: {payload}", position)
    return UNKNOWN_TYPE

  record_diagnostic(ctx['diagnostics'], SEMANTIC, f"Invalid type expression: {kind}", position)
  return UNKNOWN_TYPE


# ============================================================================
# EXPRESSIONS
# ============================================================================

def analyze_expression(cst: Tuple, ctx: Dict) -> Dict:
  """Analyze one CST node"""
  kind, payload, position = cst

  if ctx['debug']:
    print(f"Analyzing: {kind}")

  if kind in LITERAL_KINDS:
    return analyze_literal(cst, ctx)
  elif kind in ("LET", "ALIAS"):
    ast, _ = analyze_chain(cst, ctx)
    return ast
  elif kind == "REFERENCE":
    return make_ast_node("REFERENCE", {'ident': payload}, position)
  elif kind == "LAMBDA":
    return analyze_lambda(cst, ctx)
  elif kind == "APPLICATION":
    return make_ast_node("APPLICATION", {
        'callee': analyze_expression(payload['callee'], ctx),
        'args': [analyze_expression(a, ctx) for a in payload['args']]
    }, position)
  elif kind == "PRIMITIVE":
    return analyze_primitive(cst, ctx)
  elif kind == "BRANCH":
    return make_ast_node("BRANCH", {
        'cond': analyze_expression(payload['cond'], ctx),
        'then': analyze_expression(payload['then'], ctx),
        'else': analyze_expression(payload['else'], ctx) if payload['else'] is not None else None
    }, position)
  elif kind == "MATCH":
    return analyze_match(cst, ctx)
  elif kind == "FOREACH":
    return make_ast_node("ITER", {
        'ident': payload['ident'],
        'iterable': analyze_expression(payload['iterable'], ctx),
        'body': analyze_expression(payload['body'], ctx)
    }, position)
  elif kind == "LIST":
    return analyze_list(cst, ctx)
  elif kind == "TUPLE":
    return analyze_tuple(cst, ctx)
  elif kind == "TUPLE_ACCESS":
    return analyze_tuple_access(cst, ctx)
  elif kind == "DICT":
    return analyze_dict(cst, ctx)
  elif kind == "SCHEMA":
    return analyze_schema(cst, ctx)
  elif kind == "EMPTY":
    return make_ast_node("EMPTY", None, position, NULL_TYPE)

  record_diagnostic(ctx['diagnostics'], SEMANTIC, f"Unexpected syntax node: {kind}", position)
  return make_ast_node("EMPTY", None, position, NULL_TYPE)


def analyze_literal(cst: Tuple, ctx: Dict) -> Dict:
  kind, payload, position = cst
  value_kind, static_type = LITERAL_KINDS[kind]
  if kind == "INT" and not in_i32_range(payload):
    record_diagnostic(ctx['diagnostics'], SEMANTIC,
                      f"Integer literal {payload} does not fit in 32 bits", position)
  return make_ast_node("LIT", {'kind': value_kind, 'literal': payload}, position, static_type)


def analyze_chain(cst: Tuple, ctx: Dict) -> Tuple[Dict, Dict]:
  """
  Analyze a let/alias chain without recursing per link.
  Returns the AST and the aliases visible after the last link.
  """
  links = []
  aliases = ctx['aliases']
  node = cst
  while node is not None and node[0] in ("LET", "ALIAS"):
    kind, payload, position = node
    link_ctx = _with_aliases(ctx, aliases)
    if kind == "ALIAS":
      alias_type = resolve_type(payload['type'], link_ctx)
      aliases = {**aliases, payload['ident']: alias_type}
      links.append(("ALIAS", payload['ident'], alias_type, None, position))
    else:
      let_type = resolve_type(payload['type'], link_ctx)
      let_exp = analyze_expression(payload['value'], link_ctx)
      links.append(("LET", payload['ident'], let_type, let_exp, position))
    node = payload['next']

  result = analyze_expression(node, _with_aliases(ctx, aliases)) if node is not None else None
  for kind, ident, link_type, let_exp, position in reversed(links):
    static = result['type_info'] if result is not None else NULL_TYPE
    if kind == "ALIAS":
      result = make_ast_node("ALIAS", {
          'ident': ident,
          'alias_type': link_type,
          'next': result
      }, position, static)
    else:
      result = make_ast_node("LET", {
          'ident': ident,
          'let_type': link_type,
          'let_exp': let_exp,
          'next': result
      }, position, static)
  return result, aliases


def analyze_lambda(cst: Tuple, ctx: Dict) -> Dict:
  _, payload, position = cst
  params = [(name, resolve_type(t, ctx)) for name, t in payload['params']]
  return_type = resolve_type(payload['return_type'], ctx)
  names = [name for name, _ in params]
  for name in set(names):
    if names.count(name) > 1:
      record_diagnostic(ctx['diagnostics'], SEMANTIC, f"Duplicate parameter: {name}", position)
  return make_ast_node("LAMBDA", {
      'params': params,
      'return_type': return_type,
      'body': analyze_expression(payload['body'], ctx)
  }, position, func_type([t for _, t in params], return_type))


def analyze_primitive(cst: Tuple, ctx: Dict) -> Dict:
  _, payload, position = cst
  op = payload['op']
  static = BOOL_TYPE if op in BOOL_OPERATORS else UNKNOWN_TYPE
  return make_ast_node("PRIMITIVE", {
      'op': op,
      'left': analyze_expression(payload['left'], ctx),
      'right': analyze_expression(payload['right'], ctx) if payload['right'] is not None else None
  }, position, static)


def analyze_list(cst: Tuple, ctx: Dict) -> Dict:
  _, payload, position = cst
  elements = [analyze_expression(e, ctx) for e in payload]
  static = UNKNOWN_TYPE
  if elements and not any(has_unknown_types(e['type_info']) for e in elements):
    static = list_type(elements[0]['type_info'])
  return make_ast_node("LIST_DEF", {'elements': elements}, position, static)


def analyze_tuple(cst: Tuple, ctx: Dict) -> Dict:
  _, payload, position = cst
  elements = [analyze_expression(e, ctx) for e in payload]
  static = UNKNOWN_TYPE
  if not any(has_unknown_types(e['type_info']) for e in elements):
    static = tuple_type([e['type_info'] for e in elements])
  return make_ast_node("TUPLE_DEF", {'elements': elements}, position, static)


def analyze_tuple_access(cst: Tuple, ctx: Dict) -> Dict:
  _, payload, position = cst
  target = analyze_expression(payload['target'], ctx)
  index = payload['index']
  static = UNKNOWN_TYPE
  target_type = target['type_info']
  if target_type['name'] == "Tuple":
    arity = len(target_type['parameters'])
    if index >= arity:
      record_diagnostic(ctx['diagnostics'], SEMANTIC,
                        f"Tuple index {index} out of range for {type_to_string(target_type)}", position)
    else:
      static = target_type['parameters'][index]
  return make_ast_node("TUPLE_ACCESS", {'target': target, 'index': index}, position, static)


def analyze_dict(cst: Tuple, ctx: Dict) -> Dict:
  """Dict literal; a repeated key keeps its first position and its last value"""
  _, payload, position = cst
  keys: List[Tuple[str, Any]] = []
  pairs: Dict[Tuple[str, Any], Tuple[Dict, Dict]] = {}
  for key_cst, value_cst in payload:
    identity = (key_cst[0], key_cst[1])
    if identity not in pairs:
      keys.append(identity)
    pairs[identity] = (analyze_literal(key_cst, ctx), analyze_expression(value_cst, ctx))
  return make_ast_node("DICT_DEF", {'pairs': [pairs[k] for k in keys]}, position)


def analyze_schema(cst: Tuple, ctx: Dict) -> Dict:
  _, payload, position = cst
  columns = []
  for name, type_cst in payload:
    if any(name == existing for existing, _ in columns):
      record_diagnostic(ctx['diagnostics'], SEMANTIC, f"Duplicate column: {name}", position)
    columns.append((name, resolve_type(type_cst, ctx)))
  return make_ast_node("SCHEMA_DEF", {'columns': columns}, position, SCHEMA_TYPE)


# ============================================================================
# PATTERNS
# ============================================================================

def analyze_match(cst: Tuple, ctx: Dict) -> Dict:
  _, payload, position = cst
  cases = []
  for pattern_cst, body_cst in payload['cases']:
    cases.append((analyze_pattern(pattern_cst, ctx), analyze_expression(body_cst, ctx)))
  return make_ast_node("MATCH", {
      'subject': analyze_expression(payload['subject'], ctx),
      'cases': cases
  }, position)


def analyze_pattern(cst: Tuple, ctx: Dict) -> Dict:
  kind, payload, position = cst

  if kind == "PATTERN_TYPE":
    predicate = payload['predicate']
    return make_ast_node("PATTERN_TYPE", {
        'ident': payload['ident'],
        'case_type': resolve_type(payload['type'], ctx),
        'predicate': analyze_expression(predicate, ctx) if predicate is not None else None
    }, position)
  elif kind == "PATTERN_LITERAL":
    return make_ast_node("PATTERN_LITERAL", {'literal': analyze_literal(payload, ctx)}, position)
  elif kind == "PATTERN_MULTI":
    return make_ast_node("PATTERN_MULTI", {
        'literals': [analyze_literal(lit, ctx) for lit in payload]
    }, position)
  elif kind == "PATTERN_RANGE":
    low, high = payload
    if low > high:
      record_diagnostic(ctx['diagnostics'], SEMANTIC, f"Empty range pattern {low}..{high}", position)
    return make_ast_node("PATTERN_RANGE", {'range': range(low, high + 1)}, position)
  return make_ast_node("PATTERN_ANY", None, position)


# ============================================================================
# PROGRAM ANALYSIS
# ============================================================================

def analyze_program(cst: Tuple, aliases: Optional[Dict] = None,
                    diagnostics: Optional[List[Dict]] = None,
                    debug: bool = False) -> Tuple[Dict, Dict]:
  """
  Analyze a parsed program.
  Returns (ast, aliases); the aliases include those declared by the
  program's top-level chain so a REPL session can carry them forward.
  """
  ctx = make_analysis_context(aliases, diagnostics, debug)
  if cst[0] in ("LET", "ALIAS"):
    return analyze_chain(cst, ctx)
  return analyze_expression(cst, ctx), ctx['aliases']


def pretty_print_ast(ast: Dict, indent: int = 0) -> str:
  """Render an AST for --analyze and the REPL"""
  pad = "  " * indent
  node_type = ast['type']
  value = ast['value']
  header = f"{pad}{node_type} : {type_to_string(ast['type_info'])}"

  if node_type == "LIT":
    return f"{header} = {value['literal']!r}\n"
  elif node_type == "REFERENCE":
    return f"{header} {value['ident']}\n"
  elif node_type == "PATTERN_RANGE":
    bounds = f"{value['range'][0]}..{value['range'][-1]}" if value['range'] else "empty"
    return f"{pad}PATTERN_RANGE {bounds}\n"
  elif node_type == "PATTERN_ANY":
    return f"{pad}PATTERN_ANY\n"

  if isinstance(value, dict):
    extras = [f"{k}={v}" for k, v in value.items() if isinstance(v, (str, int))]
    typed = [f"{k}={type_to_string(v)}" for k, v in value.items()
             if isinstance(v, dict) and 'parameters' in v]
    if extras or typed:
      header += " (" + ", ".join(extras + typed) + ")"
  result = header + "\n"

  for child in _ast_children(value):
    result += pretty_print_ast(child, indent + 1)
  return result


def _ast_children(value: Any) -> List[Dict]:
  children = []
  if isinstance(value, dict) and 'type' in value and 'span' in value:
    return [value]
  if isinstance(value, dict):
    for v in value.values():
      children.extend(_ast_children(v))
  elif isinstance(value, (list, tuple)):
    for v in value:
      children.extend(_ast_children(v))
  return children
