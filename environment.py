"""
RETL Environment - scope frames
Each binding context is a new frame pointing at its parent; frames are
never modified after creation, so nested scopes and closures share the
enclosing chain without copying it.
"""

from typing import Dict, List, Optional


# ============================================================================
# DATA STRUCTURES (Immutable Dictionaries)
# ============================================================================

def make_runtime_env(parent: Optional[Dict] = None, bindings: Optional[Dict] = None) -> Dict:
  """Create an immutable runtime environment"""
  return {
      'parent': parent,
      'bindings': dict(bindings) if bindings else {}
  }


# ============================================================================
# ENVIRONMENT OPERATIONS
# ============================================================================

def env_bind_value(env: Dict, name: str, value: Dict) -> Dict:
  """Return new environment with name bound to value"""
  return make_runtime_env(env, {name: value})


def env_bind_values(env: Dict, bindings: Dict) -> Dict:
  """Return new environment with several names bound in one frame"""
  return make_runtime_env(env, bindings)


def env_lookup_value(env: Optional[Dict], name: str) -> Optional[Dict]:
  """Look up a value in the environment chain"""
  while env is not None:
    if name in env['bindings']:
      return env['bindings'][name]
    env = env['parent']
  return None


def env_names(env: Optional[Dict]) -> List[str]:
  """Visible names, innermost first"""
  seen = []
  while env is not None:
    for name in env['bindings']:
      if name not in seen:
        seen.append(name)
    env = env['parent']
  return seen
