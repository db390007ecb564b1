"""
Diagnostics for the RETL pipeline
Every phase appends to a shared diagnostics list instead of raising;
only the parser raises (RETLParseError), and the driver converts it.
"""

from dataclasses import dataclass
from typing import List, Optional, Dict
from pyparsing import ParseException
import re


SYNTAX = "syntax"
SEMANTIC = "semantic"
TYPE = "type"
EVALUATION = "evaluation"
INTERNAL = "internal"


@dataclass(frozen=True)
class SourcePosition:
    """Line/column of a token plus the text of its line"""
    filename: str
    line: int
    column: int
    line_text: str = ""

    def __str__(self) -> str:
        return f"{self.filename}:{self.line}:{self.column}"

    def position(self) -> str:
        """Render the line with a caret under the column"""
        marker = "-" * max(self.column - 1, 0) + "^"
        return f"Line: {self.line}, column: {self.column}\n{self.line_text}\n{marker}"


# ============================================================================
# DATA STRUCTURES (Immutable Dictionaries)
# ============================================================================

def make_diagnostic(
    severity: str,
    message: str,
    position: Optional[SourcePosition] = None
) -> Dict:
    """Create an immutable diagnostic structure"""
    return {
        'severity': severity,
        'message': message,
        'position': position
    }


def format_diagnostic(diagnostic: Dict) -> str:
    """Format diagnostic as string"""
    text = f"{diagnostic['severity'].capitalize()} error: {diagnostic['message']}"
    if diagnostic['position'] is not None:
        text += "\n" + diagnostic['position'].position()
    return text


# ============================================================================
# DIAGNOSTICS COLLECTION
# ============================================================================

def record_diagnostic(
    diagnostics: Optional[List[Dict]],
    severity: str,
    message: str,
    position: Optional[SourcePosition] = None
) -> Dict:
    """Append a diagnostic to the collection (if any) and return it"""
    diagnostic = make_diagnostic(severity, message, position)
    if diagnostics is not None:
        diagnostics.append(diagnostic)
    return diagnostic


def has_errors(diagnostics: List[Dict]) -> bool:
    """Phase gate used by the driver"""
    return len(diagnostics) > 0


# ============================================================================
# PARSE ERRORS
# ============================================================================

def source_line(source_text: str, line_num: int) -> Optional[str]:
    """Text of a 1-based line, None past the end of input"""
    lines = source_text.splitlines() or [""]
    if 0 < line_num <= len(lines):
        return lines[line_num - 1]
    return None


def excerpt(source_text: str, line_num: int, col_num: int, radius: int = 2) -> str:
    """Numbered lines around line_num with a caret under the failing column"""
    lines = source_text.splitlines()
    first = max(1, line_num - radius)
    last = min(len(lines), line_num + radius)
    out = []
    for number in range(first, last + 1):
        out.append(f"{number:4d}: {lines[number - 1]}")
        if number == line_num:
            out.append(" " * (5 + col_num) + "^")
    return '\n'.join(out)


def extract_expected(exc: ParseException) -> List[str]:
    """Expected-token description from a pyparsing message"""
    found = re.search(r"Expected\s+(.+?)(?:,\s+found|\s+\(|$)", str(exc))
    return [found.group(1)] if found else ["valid syntax"]


def extract_got(source_text: str, line_num: int, col_num: int) -> str:
    """Up to ten characters of source at the failure point"""
    text = source_line(source_text, line_num)
    if text is None:
        return "end of input"
    snippet = text[col_num - 1:col_num + 9].strip()
    return f"'{snippet}'" if snippet else "end of line"


def generate_suggestions(got: str, expected: List[str]) -> List[str]:
    """Generate helpful suggestions based on the error"""
    suggestions = []

    if got.startswith("'=") and "=>" not in got:
        suggestions.append("Bindings are written 'let name = value', comparisons use '=='")

    if "{" in got and "if" not in got:
        suggestions.append("Blocks follow 'if', 'else', 'foreach' and lambda return types")

    if "->" in str(expected):
        suggestions.append("Lambdas need a return type: \\x: int -> int { ... }")

    if "=>" in str(expected):
        suggestions.append("Match cases are written 'case <pattern> => <expression>'")

    if got.startswith("';"):
        suggestions.append("A trailing ';' must be followed by an expression or end of input")

    return suggestions


class RETLParseError(Exception):
    """Parse failure with source context"""
    def __init__(self, message: str, line: int = 0, column: int = 0,
                 filename: str = "<input>", expected: Optional[List[str]] = None,
                 got: Optional[str] = None, context: Optional[str] = None,
                 suggestions: Optional[List[str]] = None, line_text: str = ""):
        self.message = message
        self.line = line
        self.column = column
        self.filename = filename
        self.expected = expected or []
        self.got = got
        self.context = context
        self.suggestions = suggestions or []
        self.line_text = line_text
        super().__init__(message)

    def position(self) -> SourcePosition:
        return SourcePosition(self.filename, self.line, self.column, self.line_text)

    def __str__(self) -> str:
        error_msg = f"Parse error at line {self.line}, column {self.column}:\n"
        error_msg += f"  {self.message}\n"

        if self.expected:
            error_msg += f"  Expected: {', '.join(self.expected)}\n"

        if self.got:
            error_msg += f"  Got: {self.got}\n"

        if self.context:
            error_msg += f"  Context:\n{self.context}\n"

        if self.suggestions:
            error_msg += "  Suggestions:\n"
            for suggestion in self.suggestions:
                error_msg += f"    - {suggestion}\n"

        return error_msg


def record_parse_error(diagnostics: List[Dict], error: RETLParseError) -> Dict:
    """Convert a parse failure into a syntax diagnostic"""
    message = error.message.split('\n')[0] if not error.expected else \
        f"Expected {', '.join(error.expected)}, got {error.got or 'nothing'}"
    for suggestion in error.suggestions:
        message += f"\n  Hint: {suggestion}"
    position = error.position() if error.line else None
    return record_diagnostic(diagnostics, SYNTAX, message, position)


def enhance_parse_exception(exc: ParseException, source_text: str,
                            filename: str = "<input>") -> RETLParseError:
    """Convert pyparsing exception to a RETLParseError"""
    line_num = exc.lineno
    col_num = exc.column

    expected = extract_expected(exc)
    got = extract_got(source_text, line_num, col_num)
    return RETLParseError(
        message=str(exc),
        line=line_num,
        column=col_num,
        filename=filename,
        expected=expected,
        got=got,
        context=excerpt(source_text, line_num, col_num),
        suggestions=generate_suggestions(got, expected),
        line_text=source_line(source_text, line_num) or ""
    )
