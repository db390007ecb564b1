"""
RETL Programming Language Parser
pyparsing grammar producing a concrete syntax tree of tagged tuples

Every CST node is a tuple (KIND, payload, position) where position is a
SourcePosition of the node's first token.
"""

import re
from typing import List, Any, Tuple

# Import pyparsing with error handling
try:
    from pyparsing import (
        Forward, Keyword, Literal, Regex, Suppress, QuotedString,
        Optional as PyParsingOptional, ZeroOrMore, OneOrMore, MatchFirst,
        ParserElement, ParseException, ParseResults, StringEnd, infix_notation, OpAssoc,
        one_of, dbl_slash_comment, lineno, col, line
    )
    # Enable packrat parsing for performance
    ParserElement.enable_packrat()
except ImportError:
    raise ImportError("pyparsing library not found. Install with: pip install pyparsing")

from error_handling import SourcePosition, RETLParseError, enhance_parse_exception


KEYWORDS = [
    "let", "alias", "if", "else", "match", "case", "foreach", "in", "schema",
    "true", "false", "null", "int", "bool", "char", "string", "list", "dict",
    "tuple", "union", "lambda", "any",
]

SCALAR_TYPE_NAMES = ["int", "bool", "char", "string", "null", "schema", "any"]

CHAR_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "0": "\0", "\\": "\\", "'": "'", '"': '"'}

# Whitespace and // comments in front of a token
LEADING_IGNORABLE = re.compile(r"(?:\s+|//[^\n]*)*")


def cst_kind(node: Tuple) -> str:
    return node[0]


def cst_payload(node: Tuple) -> Any:
    return node[1]


def unwrap_node(item: Any) -> Any:
    """Strip ParseResults groups around a CST node

    Newer pyparsing releases hand nested infix_notation results to parse
    actions still wrapped in a ParseResults.
    """
    while isinstance(item, ParseResults) and len(item) == 1:
        item = item[0]
    return item


def unescape_char(text: str) -> str:
    """'c' or '\\n' style literal to its character"""
    body = text[1:-1]
    if body.startswith("\\"):
        return CHAR_ESCAPES.get(body[1:], body[1:])
    return body


class RETLGrammar:
    """RETL grammar definition using pyparsing"""

    def __init__(self, debug: bool = False):
        self.debug = debug
        self._filename = "<input>"
        self._setup_grammar()

    def _position(self, s: str, loc: int) -> SourcePosition:
        # loc can sit before the whitespace the first token skipped
        loc = LEADING_IGNORABLE.match(s, loc).end()
        return SourcePosition(self._filename, lineno(loc, s), col(loc, s), line(loc, s))

    def _node(self, kind: str, build=None):
        """Parse action producing (kind, build(tokens), position)"""
        def action(s, loc, t):
            t = [unwrap_node(item) for item in t]
            payload = build(t) if build is not None else (t[0] if len(t) else None)
            return (kind, payload, self._position(s, loc))
        return action

    def _setup_grammar(self):
        """Setup the RETL grammar"""

        # Forward declarations for recursive structures
        expression = Forward()
        statements = Forward()
        type_expr = Forward()
        branch = Forward()

        # Keywords
        kw = {name: Keyword(name) for name in KEYWORDS}
        excluded_keywords = MatchFirst([kw[name] for name in KEYWORDS])

        LBRACE, RBRACE = Suppress("{"), Suppress("}")
        LBRACK, RBRACK = Suppress("["), Suppress("]")
        LPAREN, RPAREN = Suppress("("), Suppress(")")
        COMMA, COLON, SEMI = Suppress(","), Suppress(":"), Suppress(";")
        ARROW, FAT_ARROW = Suppress("->"), Suppress("=>")
        # '=' that is not the start of '==' or '=>'
        EQUALS = Suppress(Regex(r"=(?![=>])"))

        # Identifiers (a lone '_' is the wildcard pattern)
        identifier = ~excluded_keywords + Regex(r"[A-Za-z][A-Za-z0-9_]*|_[A-Za-z0-9_]+")

        # Literals
        int_literal = Regex(r"\d+").set_parse_action(self._node("INT", lambda t: int(t[0])))
        signed_int = Regex(r"-?\d+").set_parse_action(self._node("INT", lambda t: int(t[0])))
        bool_literal = (kw["true"] | kw["false"]).set_parse_action(
            self._node("BOOL", lambda t: t[0] == "true"))
        null_literal = Keyword("null").set_parse_action(self._node("NULL", lambda t: None))
        char_literal = Regex(r"'(?:[^'\\]|\\.)'").set_parse_action(
            self._node("CHAR", lambda t: unescape_char(t[0])))
        string_literal = QuotedString('"', esc_char='\\').set_parse_action(
            self._node("STRING", lambda t: t[0]))

        literal = int_literal | bool_literal | null_literal | char_literal | string_literal
        pattern_literal = signed_int | bool_literal | null_literal | char_literal | string_literal

        # Type expressions
        def type_list_of(element):
            return element + ZeroOrMore(COMMA + element)

        type_atom = MatchFirst([kw[name] for name in SCALAR_TYPE_NAMES]).set_parse_action(
            self._node("TYPE_ATOM", lambda t: t[0]))
        type_list = (Suppress(kw["list"]) + LBRACK + type_expr + RBRACK).set_parse_action(
            self._node("TYPE_LIST"))
        type_tuple = (Suppress(kw["tuple"]) + LBRACK + type_list_of(type_expr) + RBRACK).set_parse_action(
            self._node("TYPE_TUPLE", lambda t: list(t)))
        type_dict = (Suppress(kw["dict"]) + LBRACK + type_expr + COLON + type_expr + RBRACK).set_parse_action(
            self._node("TYPE_DICT", lambda t: (t[0], t[1])))
        type_union = (Suppress(kw["union"]) + LBRACK + type_list_of(type_expr) + RBRACK).set_parse_action(
            self._node("TYPE_UNION", lambda t: list(t)))
        type_lambda = (
            Suppress(kw["lambda"]) + LBRACK +
            PyParsingOptional(type_list_of(type_expr)) + ARROW + type_expr +
            RBRACK
        ).set_parse_action(self._node("TYPE_LAMBDA", lambda t: (list(t[:-1]), t[-1])))
        type_ref = identifier.copy().set_parse_action(self._node("TYPE_REF", lambda t: t[0]))

        type_expr <<= type_list | type_tuple | type_dict | type_union | type_lambda | type_atom | type_ref

        # Blocks
        block = (LBRACE + PyParsingOptional(statements) + RBRACE).set_parse_action(
            lambda s, loc, t: unwrap_node(t[0]) if len(t) else ("EMPTY", None, self._position(s, loc)))

        # Lambda: \x: int, y: int -> int { x + y }
        param = (identifier + COLON + type_expr).set_parse_action(lambda t: (t[0], t[1]))
        lambda_expr = (
            Suppress("\\") + PyParsingOptional(param + ZeroOrMore(COMMA + param)) +
            ARROW + type_expr + block
        ).set_parse_action(self._node("LAMBDA", lambda t: {
            "params": list(t[:-2]),
            "return_type": t[-2],
            "body": t[-1]
        }))

        # Branch: if c { a } else if d { b } else { e }
        branch <<= (
            Suppress(kw["if"]) + expression + block +
            PyParsingOptional(Suppress(kw["else"]) + (branch | block))
        ).set_parse_action(self._node("BRANCH", lambda t: {
            "cond": t[0],
            "then": t[1],
            "else": t[2] if len(t) > 2 else None
        }))

        # Patterns
        pattern_any = Keyword("_").set_parse_action(self._node("PATTERN_ANY", lambda t: None))
        pattern_range = Regex(r"(-?\d+)\s*\.\.\s*(-?\d+)").set_parse_action(
            self._node("PATTERN_RANGE", lambda t: tuple(int(n) for n in t[0].split(".."))))
        pattern_multi = (pattern_literal + OneOrMore(Suppress("|") + pattern_literal)).set_parse_action(
            self._node("PATTERN_MULTI", lambda t: list(t)))
        pattern_single = pattern_literal.copy().add_parse_action(
            lambda s, loc, t: ("PATTERN_LITERAL", t[0], t[0][2]))
        pattern_type = (
            identifier + COLON + type_expr +
            PyParsingOptional(Suppress(kw["if"]) + expression)
        ).set_parse_action(self._node("PATTERN_TYPE", lambda t: {
            "ident": t[0],
            "type": t[1],
            "predicate": t[2] if len(t) > 2 else None
        }))
        pattern = pattern_any | pattern_range | pattern_multi | pattern_single | pattern_type

        # Match: match v { case p => e, ... }
        match_case = (
            Suppress(kw["case"]) + pattern + FAT_ARROW + statements + PyParsingOptional(COMMA)
        ).set_parse_action(lambda t: (t[0], unwrap_node(t[1])))
        match_expr = (
            Suppress(kw["match"]) + expression + LBRACE + OneOrMore(match_case) + RBRACE
        ).set_parse_action(self._node("MATCH", lambda t: {
            "subject": t[0],
            "cases": list(t[1:])
        }))

        # Iteration: foreach x in xs { ... }
        foreach_expr = (
            Suppress(kw["foreach"]) + identifier + Suppress(kw["in"]) + expression + block
        ).set_parse_action(self._node("FOREACH", lambda t: {
            "ident": t[0],
            "iterable": t[1],
            "body": t[2]
        }))

        # Collections
        column = (identifier + COLON + type_expr).set_parse_action(lambda t: (t[0], t[1]))
        schema_def = (
            Suppress(kw["schema"]) + LBRACE +
            PyParsingOptional(column + ZeroOrMore(COMMA + column)) + PyParsingOptional(COMMA) +
            RBRACE
        ).set_parse_action(self._node("SCHEMA", lambda t: list(t)))

        list_literal = (
            LBRACK + PyParsingOptional(expression + ZeroOrMore(COMMA + expression)) + RBRACK
        ).set_parse_action(self._node("LIST", lambda t: list(t)))

        dict_entry = (literal + COLON + expression).set_parse_action(lambda t: (t[0], unwrap_node(t[1])))
        dict_literal = (
            LBRACE + PyParsingOptional(dict_entry + ZeroOrMore(COMMA + dict_entry)) + RBRACE
        ).set_parse_action(self._node("DICT", lambda t: list(t)))

        unit = (LPAREN + RPAREN).set_parse_action(self._node("EMPTY", lambda t: None))
        tuple_literal = (
            LPAREN + expression + COMMA +
            PyParsingOptional(expression + ZeroOrMore(COMMA + expression)) + RPAREN
        ).set_parse_action(self._node("TUPLE", lambda t: list(t)))
        parenthesized = LPAREN + expression + RPAREN

        reference = identifier.copy().set_parse_action(self._node("REFERENCE", lambda t: t[0]))

        primary = (
            lambda_expr | branch | match_expr | foreach_expr | schema_def |
            list_literal | dict_literal | unit | tuple_literal | parenthesized |
            literal | reference
        )

        # Postfix: calls f(a, b) and tuple access t.0
        call_suffix = (
            LPAREN + PyParsingOptional(expression + ZeroOrMore(COMMA + expression)) + RPAREN
        ).set_parse_action(lambda t: ("CALL", [unwrap_node(a) for a in t]))
        access_suffix = Regex(r"\.\d+").set_parse_action(lambda t: ("ACCESS", int(t[0][1:])))

        def fold_postfix(s, loc, t):
            node = unwrap_node(t[0])
            position = node[2]
            for suffix_kind, suffix in t[1:]:
                if suffix_kind == "CALL":
                    node = ("APPLICATION", {"callee": node, "args": suffix}, position)
                else:
                    node = ("TUPLE_ACCESS", {"target": node, "index": suffix}, position)
            return node

        postfix = (primary + ZeroOrMore(call_suffix | access_suffix)).set_parse_action(fold_postfix)

        # Operators
        def unary_action(s, loc, t):
            op, operand = t[0][0], unwrap_node(t[0][1])
            return ("PRIMITIVE", {"op": op, "left": operand, "right": None}, self._position(s, loc))

        def binary_action(s, loc, t):
            items = t[0]
            node = unwrap_node(items[0])
            position = node[2]
            for i in range(1, len(items), 2):
                node = ("PRIMITIVE", {"op": items[i], "left": node, "right": unwrap_node(items[i + 1])},
                        position)
            return node

        def pipeline_action(s, loc, t):
            # xs |> f(a) is f(a, xs)
            items = t[0]
            node = unwrap_node(items[0])
            for i in range(2, len(items), 2):
                target = unwrap_node(items[i])
                if target[0] == "APPLICATION":
                    payload = target[1]
                    node = ("APPLICATION", {"callee": payload["callee"], "args": payload["args"] + [node]},
                            target[2])
                else:
                    node = ("APPLICATION", {"callee": target, "args": [node]}, target[2])
            return node

        expression <<= infix_notation(postfix, [
            (one_of("! -"), 1, OpAssoc.RIGHT, unary_action),
            (one_of("* / %"), 2, OpAssoc.LEFT, binary_action),
            (one_of("++ + -"), 2, OpAssoc.LEFT, binary_action),
            (one_of("<= >= < >"), 2, OpAssoc.LEFT, binary_action),
            (one_of("=== == !="), 2, OpAssoc.LEFT, binary_action),
            (Literal("&&"), 2, OpAssoc.LEFT, binary_action),
            (Literal("||"), 2, OpAssoc.LEFT, binary_action),
            (Literal("|>"), 2, OpAssoc.LEFT, pipeline_action),
        ])

        # Statements
        let_statement = (
            Suppress(kw["let"]) + identifier + PyParsingOptional(COLON + type_expr) + EQUALS + expression
        ).set_parse_action(self._node("LET", lambda t: {
            "ident": t[0],
            "type": t[1] if len(t) > 2 else None,
            "value": t[-1],
            "next": None
        }))
        alias_statement = (
            Suppress(kw["alias"]) + identifier + EQUALS + type_expr
        ).set_parse_action(self._node("ALIAS", lambda t: {
            "ident": t[0],
            "type": t[1],
            "next": None
        }))
        statement = let_statement | alias_statement | expression

        def fold_statements(s, loc, t):
            # Chain right to left without recursion: each statement scopes over the rest
            chain = None
            for stmt in reversed([unwrap_node(item) for item in t]):
                kind, payload, position = stmt
                if kind in ("LET", "ALIAS"):
                    chain = (kind, {**payload, "next": chain}, position)
                elif chain is None:
                    chain = stmt
                else:
                    chain = ("LET", {
                        "ident": f"dummy${position.line}_{position.column}",
                        "type": None,
                        "value": stmt,
                        "next": chain
                    }, position)
            return chain

        statements <<= (
            statement + ZeroOrMore(SEMI + statement) + PyParsingOptional(SEMI)
        ).set_parse_action(fold_statements)

        program = PyParsingOptional(statements) + StringEnd()
        program.ignore(dbl_slash_comment)

        # Store the main parsers
        self.program = program
        self.statements = statements
        self.expression = expression
        self.type_expr = type_expr
        self.pattern = pattern

    def parse_program(self, text: str, filename: str = "<input>") -> Tuple:
        """Parse a complete RETL program into a single CST node"""
        self._filename = filename
        try:
            result = self.program.parse_string(text, parse_all=True)
        except ParseException as e:
            raise enhance_parse_exception(e, text, filename) from e
        if not len(result):
            return ("EMPTY", None, SourcePosition(filename, 1, 1, ""))
        return unwrap_node(result[0])


class RETLParser:
    """Main RETL parser"""

    def __init__(self, debug: bool = False):
        self.debug = debug
        self.grammar = RETLGrammar(debug)

    def parse_file(self, filepath: str) -> Tuple:
        """Parse a RETL source file"""
        try:
            with open(filepath, 'r', encoding='utf-8') as f:
                content = f.read()
        except FileNotFoundError:
            raise RETLParseError(f"File not found: {filepath}", filename=filepath)
        except UnicodeDecodeError as e:
            raise RETLParseError(f"Cannot decode file {filepath}: {e}", filename=filepath)
        return self.grammar.parse_program(content, filepath)

    def parse_string(self, text: str, filename: str = "<input>") -> Tuple:
        """Parse RETL source code from string"""
        return self.grammar.parse_program(text, filename)


# Factory functions for creating parsers
def create_parser(debug: bool = False) -> RETLParser:
    """Create a RETL parser"""
    return RETLParser(debug=debug)


def parse_program(text: str, filename: str = "<input>") -> Tuple:
    return create_parser().parse_string(text, filename)


# Utility functions for working with CST
def _cst_children(node: Any) -> List[Any]:
    """Nested CST nodes inside a payload, in source order"""
    children = []

    def collect(item):
        if isinstance(item, tuple) and len(item) == 3 and isinstance(item[0], str) \
                and isinstance(item[2], SourcePosition):
            children.append(item)
        elif isinstance(item, (list, tuple)):
            for sub in item:
                collect(sub)
        elif isinstance(item, dict):
            for sub in item.values():
                collect(sub)

    collect(node[1])
    return children


def find_nodes_by_type(cst: Tuple, node_type: str) -> List[Tuple]:
    """Find all nodes of a specific kind in a CST"""
    result = []
    stack = [cst]
    while stack:
        node = stack.pop()
        if node[0] == node_type:
            result.append(node)
        stack.extend(reversed(_cst_children(node)))
    return result


def pretty_print_cst(cst: Tuple, indent: int = 0) -> str:
    """Pretty print a CST node for debugging"""
    kind, payload = cst[0], cst[1]
    result = "  " * indent + kind
    if isinstance(payload, (int, str, bool)) or payload is None:
        if payload is not None:
            result += f"({repr(payload)})"
    elif isinstance(payload, dict) and "ident" in payload:
        result += f"({payload['ident']})"
    elif isinstance(payload, dict) and "op" in payload:
        result += f"({payload['op']})"
    result += "\n"

    for child in _cst_children(cst):
        result += pretty_print_cst(child, indent + 1)

    return result
