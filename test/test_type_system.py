"""
Type conformance tests
"""

import pytest
from type_system import (
  INT_TYPE,
  BOOL_TYPE,
  CHAR_TYPE,
  STRING_TYPE,
  NULL_TYPE,
  UNKNOWN_TYPE,
  ANY_TYPE,
  list_type,
  tuple_type,
  dict_type,
  union_type,
  func_type,
  type_conforms,
  types_conform,
  has_unknown_types,
  type_to_string
)


class TestConformance:
  """Unification of type terms"""

  @pytest.mark.parametrize("t", [INT_TYPE, STRING_TYPE, list_type(CHAR_TYPE),
                                 tuple_type([INT_TYPE, BOOL_TYPE]),
                                 func_type([INT_TYPE], INT_TYPE)])
  def test_reflexive(self, t):
    assert type_conforms(t, t) == t

  def test_any_yields_other_side(self):
    assert type_conforms(ANY_TYPE, INT_TYPE) == INT_TYPE
    assert type_conforms(list_type(STRING_TYPE), ANY_TYPE) == list_type(STRING_TYPE)

  def test_list_is_congruent(self):
    assert type_conforms(list_type(INT_TYPE), list_type(ANY_TYPE)) == list_type(INT_TYPE)
    assert type_conforms(list_type(INT_TYPE), list_type(STRING_TYPE)) == UNKNOWN_TYPE

  def test_tuple_arity_is_strict(self):
    assert not types_conform(tuple_type([INT_TYPE]), tuple_type([INT_TYPE, INT_TYPE]))
    assert types_conform(tuple_type([INT_TYPE, ANY_TYPE]), tuple_type([ANY_TYPE, STRING_TYPE]))

  def test_func_arity_is_strict(self):
    one = func_type([INT_TYPE], INT_TYPE)
    two = func_type([INT_TYPE, INT_TYPE], INT_TYPE)
    assert not types_conform(one, two)
    assert type_conforms(one, func_type([ANY_TYPE], ANY_TYPE)) == one

  def test_dict_components(self):
    assert type_conforms(dict_type(STRING_TYPE, INT_TYPE),
                         dict_type(ANY_TYPE, INT_TYPE)) == dict_type(STRING_TYPE, INT_TYPE)
    assert not types_conform(dict_type(STRING_TYPE, INT_TYPE), dict_type(INT_TYPE, INT_TYPE))

  def test_union_member(self):
    u = union_type([INT_TYPE, STRING_TYPE])
    assert type_conforms(STRING_TYPE, u) == STRING_TYPE
    assert type_conforms(u, INT_TYPE) == INT_TYPE
    assert not types_conform(BOOL_TYPE, u)

  def test_unions_conform_elementwise(self):
    left = union_type([INT_TYPE, ANY_TYPE])
    right = union_type([ANY_TYPE, STRING_TYPE])
    assert type_conforms(left, right) == union_type([INT_TYPE, STRING_TYPE])
    assert not types_conform(union_type([INT_TYPE, BOOL_TYPE]), union_type([INT_TYPE, STRING_TYPE]))

  def test_unions_of_different_arity_fail(self):
    diagnostics = []
    narrow = union_type([INT_TYPE, STRING_TYPE])
    wide = union_type([INT_TYPE, STRING_TYPE, BOOL_TYPE])
    assert type_conforms(narrow, wide, None, diagnostics) == UNKNOWN_TYPE
    assert diagnostics[0]['message'] == "Type mismatch, union[int,string] vs. union[int,string,bool]"
    assert not types_conform(wide, narrow)

  def test_scalars_do_not_mix(self):
    assert not types_conform(INT_TYPE, NULL_TYPE)
    assert not types_conform(CHAR_TYPE, STRING_TYPE)

  def test_unknown_defers(self):
    assert type_conforms(INT_TYPE, UNKNOWN_TYPE) == INT_TYPE
    assert type_conforms(UNKNOWN_TYPE, BOOL_TYPE) == BOOL_TYPE

  def test_mismatch_records_diagnostic(self):
    diagnostics = []
    assert type_conforms(INT_TYPE, STRING_TYPE, None, diagnostics) == UNKNOWN_TYPE
    assert len(diagnostics) == 1
    assert diagnostics[0]['severity'] == "type"
    assert diagnostics[0]['message'] == "Type mismatch, int vs. string"

  def test_nested_unknown_is_mismatch(self):
    assert has_unknown_types(list_type(UNKNOWN_TYPE))
    assert type_conforms(list_type(list_type(INT_TYPE)),
                         list_type(list_type(BOOL_TYPE))) == UNKNOWN_TYPE


class TestTypeRendering:
  """type_to_string output"""

  @pytest.mark.parametrize("t, expected", [
      (INT_TYPE, "int"),
      (list_type(STRING_TYPE), "list[string]"),
      (tuple_type([INT_TYPE, CHAR_TYPE]), "tuple[int,char]"),
      (dict_type(STRING_TYPE, INT_TYPE), "dict[string: int]"),
      (union_type([INT_TYPE, NULL_TYPE]), "union[int,null]"),
  ])
  def test_rendering(self, t, expected):
    assert type_to_string(t) == expected

  def test_lambda_rendering(self):
    assert type_to_string(func_type([INT_TYPE, INT_TYPE], BOOL_TYPE)) == "lambda[int,int->bool]"
