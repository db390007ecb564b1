"""
Test configuration for RETL tests
"""

import pytest
import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from main import run_source
from utilities import unwrap_value


@pytest.fixture
def run():
  """Run a program, returning (value, diagnostics)"""
  def _run(source):
    return run_source(source, "<test>")
  return _run


@pytest.fixture
def evaluate(run):
  """Run a program that must succeed and return its raw Python value"""
  def _evaluate(source):
    value, diagnostics = run(source)
    assert diagnostics == [], [d['message'] for d in diagnostics]
    return unwrap_value(value)
  return _evaluate


@pytest.fixture
def messages(run):
  """Run a program and return its diagnostic messages"""
  def _messages(source):
    _, diagnostics = run(source)
    return [d['message'] for d in diagnostics]
  return _messages
