"""
RETL Type System - Pure Functional Style
Structural type terms as immutable dictionaries and the bidirectional
conformance check used at every evaluation boundary
"""

from typing import Dict, List, Optional
from error_handling import SourcePosition, record_diagnostic, TYPE


# ============================================================================
# DATA STRUCTURES (Immutable Dictionaries)
# ============================================================================

def make_type(name: str, parameters: Optional[List[Dict]] = None) -> Dict:
  """Create an immutable type term"""
  return {
      'name': name,
      'parameters': parameters or []
  }


INT_TYPE = make_type("Int")
BOOL_TYPE = make_type("Bool")
CHAR_TYPE = make_type("Char")
STRING_TYPE = make_type("String")
NULL_TYPE = make_type("Null")
SCHEMA_TYPE = make_type("Schema")
UNKNOWN_TYPE = make_type("Unknown")
ANY_TYPE = make_type("Any")

SCALAR_TYPES = {
    "int": INT_TYPE,
    "bool": BOOL_TYPE,
    "char": CHAR_TYPE,
    "string": STRING_TYPE,
    "null": NULL_TYPE,
    "schema": SCHEMA_TYPE,
    "any": ANY_TYPE,
}


def list_type(element_type: Dict) -> Dict:
  return make_type("List", [element_type])


def tuple_type(element_types: List[Dict]) -> Dict:
  return make_type("Tuple", list(element_types))


def dict_type(key_type: Dict, value_type: Dict) -> Dict:
  return make_type("Dict", [key_type, value_type])


def union_type(member_types: List[Dict]) -> Dict:
  return make_type("Union", list(member_types))


def func_type(param_types: List[Dict], return_type: Dict) -> Dict:
  """Function types keep the return type apart from the parameters"""
  return {
      'name': "Func",
      'parameters': list(param_types),
      'return_type': return_type
  }


def element_type(t: Dict) -> Dict:
  """Element type of a list type, Unknown for anything else"""
  if t['name'] == "List":
    return t['parameters'][0]
  return UNKNOWN_TYPE


# ============================================================================
# RENDERING
# ============================================================================

def _type_list_as_string(ts: List[Dict]) -> str:
  return ",".join(type_to_string(t) for t in ts)


def type_to_string(t: Dict) -> str:
  """Textual rendering of a type, as shown by the `type` builtin"""
  name = t['name']
  params = t['parameters']
  if name == "Union":
    return f"union[{_type_list_as_string(params)}]"
  elif name == "List":
    return f"list[{type_to_string(params[0])}]"
  elif name == "Tuple":
    return f"tuple[{_type_list_as_string(params)}]"
  elif name == "Dict":
    return f"dict[{type_to_string(params[0])}: {type_to_string(params[1])}]"
  elif name == "Func":
    return f"lambda[{_type_list_as_string(params)}->{type_to_string(t['return_type'])}]"
  return name.lower()


# ============================================================================
# CONFORMANCE
# ============================================================================

def well_formed(t: Dict) -> Dict:
  """Rebuild a type term, re-validating nested structure"""
  name = t['name']
  if name == "Func":
    return func_type([well_formed(p) for p in t['parameters']],
                     well_formed(t['return_type']))
  if name in ("Union", "List", "Tuple", "Dict"):
    return make_type(name, [well_formed(p) for p in t['parameters']])
  return make_type(name)


def has_unknown_types(t: Dict) -> bool:
  """True if Unknown occurs anywhere inside t"""
  if t['name'] == "Unknown":
    return True
  if any(has_unknown_types(p) for p in t['parameters']):
    return True
  return t['name'] == "Func" and has_unknown_types(t['return_type'])


def _pairwise(ts1: List[Dict], ts2: List[Dict]) -> Optional[List[Dict]]:
  if not ts1 or not ts2 or len(ts1) != len(ts2):
    return None
  return [_type_conforms(a, b) for a, b in zip(ts1, ts2)]


def _union_member(union: Dict, other: Dict) -> Dict:
  for member in union['parameters']:
    resolved = _type_conforms(member, other)
    if not has_unknown_types(resolved):
      return resolved
  return UNKNOWN_TYPE


def _type_conforms(t1: Dict, t2: Dict) -> Dict:
  n1, n2 = t1['name'], t2['name']

  if t1 == t2:
    return well_formed(t1)
  if n1 == "Any":
    return well_formed(t2)
  if n2 == "Any":
    return well_formed(t1)

  if n1 == "Union" and n2 == "Union":
    members = _pairwise(t1['parameters'], t2['parameters'])
    if members is None:
      return UNKNOWN_TYPE
    return union_type(members)
  if n1 == "Union":
    return _union_member(t1, t2)
  if n2 == "Union":
    return _union_member(t2, t1)

  if n1 == "List" and n2 == "List":
    return list_type(_type_conforms(t1['parameters'][0], t2['parameters'][0]))

  if n1 == "Tuple" and n2 == "Tuple":
    elements = _pairwise(t1['parameters'], t2['parameters'])
    if elements is not None:
      return tuple_type(elements)

  if n1 == "Dict" and n2 == "Dict":
    return dict_type(_type_conforms(t1['parameters'][0], t2['parameters'][0]),
                     _type_conforms(t1['parameters'][1], t2['parameters'][1]))

  if n1 == "Func" and n2 == "Func":
    params = _pairwise(t1['parameters'], t2['parameters'])
    if params is not None:
      return func_type(params, _type_conforms(t1['return_type'], t2['return_type']))

  if n2 == "Unknown":
    return well_formed(t1)
  if n1 == "Unknown":
    return well_formed(t2)

  return UNKNOWN_TYPE


def type_conforms(
  t1: Dict,
  t2: Dict,
  position: Optional[SourcePosition] = None,
  diagnostics: Optional[List[Dict]] = None
) -> Dict:
  """
  Unify two type terms

  Args:
    t1: Type of the value or expression
    t2: Type expected by the context
    position: Source position reported on mismatch
    diagnostics: Collection a mismatch is appended to

  Returns:
    The resolved type, or Unknown if the terms cannot be unified.
    A resolved type with a nested Unknown counts as a mismatch.

  Examples:
    type_conforms(ANY_TYPE, INT_TYPE) -> INT_TYPE
    type_conforms(list_type(INT_TYPE), list_type(ANY_TYPE)) -> list_type(INT_TYPE)
    type_conforms(INT_TYPE, STRING_TYPE) -> UNKNOWN_TYPE (diagnostic recorded)
  """
  resolved = _type_conforms(t1, t2)
  if has_unknown_types(resolved):
    record_diagnostic(
        diagnostics, TYPE,
        f"Type mismatch, {type_to_string(t1)} vs. {type_to_string(t2)}",
        position)
    return UNKNOWN_TYPE
  return resolved


def type_conforms_no_error(t1: Dict, t2: Dict) -> Dict:
  """Same algorithm without the diagnostic; may return partial Unknowns"""
  return _type_conforms(t1, t2)


def types_conform(t1: Dict, t2: Dict) -> bool:
  return not has_unknown_types(_type_conforms(t1, t2))
