"""
Environment frame tests
"""

from environment import make_runtime_env, env_bind_value, env_bind_values, env_lookup_value, env_names
from utilities import int_value, string_value


class TestEnvironment:

  def test_bind_does_not_touch_parent(self):
    root = make_runtime_env()
    child = env_bind_value(root, "x", int_value(1))
    assert env_lookup_value(child, "x") == int_value(1)
    assert env_lookup_value(root, "x") is None

  def test_shadowing(self):
    env = env_bind_value(make_runtime_env(), "x", int_value(1))
    inner = env_bind_value(env, "x", string_value("s"))
    assert env_lookup_value(inner, "x") == string_value("s")
    assert env_lookup_value(env, "x") == int_value(1)

  def test_names_innermost_first(self):
    env = env_bind_values(make_runtime_env(None, {"a": int_value(1)}),
                          {"b": int_value(2), "a": int_value(3)})
    assert env_names(env) == ["b", "a"]

  def test_lookup_misses(self):
    assert env_lookup_value(make_runtime_env(), "nothing") is None
