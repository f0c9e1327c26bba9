from __future__ import annotations
import re
from dataclasses import dataclass
from typing import List, Optional


# --- Tokens ---

@dataclass
class Token:
    kind: str
    text: str


def tokenize(src: str) -> List[Token]:
    tokens: List[Token] = []
    i = 0
    n = len(src)
    while i < n:
        ch = src[i]
        # Skip whitespace
        if ch.isspace():
            i += 1
            continue
        # Identifiers
        if ch.isalpha() or ch == '_':
            start = i
            i += 1
            while i < n and (src[i].isalnum() or src[i] == '_'):
                i += 1
            tokens.append(Token('ident', src[start:i]))
            continue
        # Numbers (very simple, keep spelling)
        if ch.isdigit():
            start = i
            i += 1
            while i < n and (src[i].isalnum() or src[i] in '.xX'):
                i += 1
                # exponent sign: 1E-10
                if (i < n and src[i] in '+-' and src[i-1] in 'eE'
                        and not src[start:i].lower().startswith('0x')):
                    i += 1
            tokens.append(Token('number', src[start:i]))
            continue
        # Two-char operators
        if i + 1 < n and src[i:i+2] in ("<<", ">>", "<=", ">=", "==", "!=", "&&", "||"):
            tokens.append(Token('op', src[i:i+2]))
            i += 2
            continue
        # Single characters
        if ch in '()':
            tokens.append(Token('paren', ch))
            i += 1
            continue
        # Fallback: treat as op
        tokens.append(Token('op', ch))
        i += 1
    return tokens


# --- AST Nodes ---

class Expr: ...

@dataclass
class Number(Expr):
    text: str

@dataclass
class Identifier(Expr):
    name: str

@dataclass
class Unary(Expr):
    op: str
    expr: Expr

@dataclass
class Binary(Expr):
    left: Expr
    op: str
    right: Expr

@dataclass
class Group(Expr):
    expr: Expr


# --- Parser ---

# C binary operator precedence, loosest first
PREC_MAP = {
    '||': 1,
    '&&': 2,
    '|': 3,
    '^': 4,
    '&': 5,
    '==': 6, '!=': 6,
    '<': 7, '>': 7, '<=': 7, '>=': 7,
    '<<': 8, '>>': 8,
    '+': 9, '-': 9,
    '*': 10, '/': 10, '%': 10,
}

UNARY_OPS = ('-', '+', '~', '!')

_NUMBER_RE = re.compile(r"^(0[xX][0-9a-fA-F]+|\d+(\.\d*)?([eE][+-]?\d+)?)$")


class Parser:
    def __init__(self, tokens: List[Token]):
        self.toks = tokens
        self.i = 0

    def _peek(self, k: int = 0) -> Optional[Token]:
        j = self.i + k
        return self.toks[j] if 0 <= j < len(self.toks) else None

    def _eat(self, kind: Optional[str] = None, text: Optional[str] = None) -> Optional[Token]:
        t = self._peek()
        if not t:
            return None
        if kind is not None and t.kind != kind:
            return None
        if text is not None and t.text != text:
            return None
        self.i += 1
        return t

    def at_end(self) -> bool:
        return self.i >= len(self.toks)

    def parse(self) -> Optional[Expr]:
        return self._parse_expr()

    def _parse_primary(self) -> Optional[Expr]:
        tok = self._peek()
        if tok is None:
            return None
        if tok.kind == 'number':
            if not _NUMBER_RE.match(tok.text):
                return None
            self._eat()
            return Number(tok.text)
        if tok.kind == 'ident':
            self._eat()
            # function-like use is not a plain constant
            nxt = self._peek()
            if nxt is not None and nxt.kind == 'paren' and nxt.text == '(':
                return None
            return Identifier(tok.text)
        if tok.kind == 'paren' and tok.text == '(':
            self._eat('paren', '(')
            inner = self._parse_expr()
            if inner is None or not self._eat('paren', ')'):
                return None
            return Group(inner)
        if tok.kind == 'op' and tok.text in UNARY_OPS:
            self._eat()
            operand = self._parse_primary()
            if operand is None:
                return None
            return Unary(tok.text, operand)
        return None

    # Very small Pratt parser over the operators in PREC_MAP
    def _parse_expr(self, min_prec: int = 0) -> Optional[Expr]:
        left = self._parse_primary()
        if left is None:
            return None

        def get_prec(tok: Optional[Token]) -> int:
            if tok and tok.kind == 'op' and tok.text in PREC_MAP:
                return PREC_MAP[tok.text]
            return -1

        while True:
            op_tok = self._peek()
            prec = get_prec(op_tok)
            if prec < 0 or prec < min_prec:
                break
            self._eat()
            right = self._parse_expr(prec + 1)
            if right is None:
                return None
            left = Binary(left, op_tok.text, right)
        return left


# --- Rendering to Python ---

# Python ranks comparisons below the bitwise and shift operators and chains them
_COMPARISON_OPS = ('==', '!=', '<', '>', '<=', '>=')
_LOGICAL_OPS = ('&&', '||')

def _expr_is_integral(e: Expr) -> bool:
    if isinstance(e, Number):
        text = e.text.lower()
        return text.startswith('0x') or not ('.' in text or 'e' in text)
    if isinstance(e, Identifier):
        return False
    if isinstance(e, Unary):
        return _expr_is_integral(e.expr)
    if isinstance(e, Group):
        return _expr_is_integral(e.expr)
    if isinstance(e, Binary):
        return _expr_is_integral(e.left) and _expr_is_integral(e.right)
    return False

def _expr_is_nonnegative(e: Expr) -> bool:
    if isinstance(e, Number):
        return True
    if isinstance(e, Unary):
        return e.op == '+' and _expr_is_nonnegative(e.expr)
    if isinstance(e, Group):
        return _expr_is_nonnegative(e.expr)
    if isinstance(e, Binary):
        return e.op in ('+', '*', '/', '<<', '>>', '|', '&', '^') and \
            _expr_is_nonnegative(e.left) and _expr_is_nonnegative(e.right)
    return False

def _render_operand(e: Expr, parent_op: str, right: bool) -> str:
    text = render_expr(e)
    if isinstance(e, Binary):
        prec, parent_prec = PREC_MAP[e.op], PREC_MAP[parent_op]
        if prec < parent_prec or (right and prec == parent_prec):
            return f"({text})"
        if e.op in _COMPARISON_OPS and parent_op not in _LOGICAL_OPS:
            return f"({text})"
    if isinstance(e, Unary) and e.op == '!' and parent_op not in _LOGICAL_OPS:
        return f"({text})"
    return text

def render_expr(e: Expr) -> str:
    if isinstance(e, Number):
        return e.text
    if isinstance(e, Identifier):
        return e.name
    if isinstance(e, Unary):
        op = 'not ' if e.op == '!' else e.op
        return f"{op}{render_expr(e.expr)}"
    if isinstance(e, Group):
        return f"({render_expr(e.expr)})"
    if isinstance(e, Binary):
        left = _render_operand(e.left, e.op, False)
        right = _render_operand(e.right, e.op, True)
        op = e.op
        if op == '/' and _expr_is_integral(e.left) and _expr_is_integral(e.right):
            # C integer division truncates toward zero, Python's // floors
            if _expr_is_nonnegative(e.left) and _expr_is_nonnegative(e.right):
                op = '//'
            else:
                return f"int({left} / {right})"
        elif op == '&&':
            op = 'and'
        elif op == '||':
            op = 'or'
        return f"{left} {op} {right}"
    return "<unknown>"


def parse_macro_replacement(text: str) -> Optional[Expr]:
    """Parse a full replacement list; trailing tokens make it unparseable."""
    toks = tokenize(text)
    if not toks:
        return None
    p = Parser(toks)
    expr = p.parse()
    if expr is None or not p.at_end():
        return None
    return expr


# --- Accepted value shapes ---

_SHAPES = [
    # Simple numeric value
    (re.compile(r"^-?[\d.]+$"), False),
    # Negative number in parentheses
    (re.compile(r"^\(-[\d.]+\)$"), False),
    # Simple arithmetic without parens: 2*1024
    (re.compile(r"^\d+\s*[*+\-/]\s*\d+$"), True),
    # Bit shift: 1 << 11
    (re.compile(r"^\d+\s*<<\s*\d+$"), True),
]

_PAREN_NUMERIC = re.compile(r"^\([^)]*\d[^)]*\)$")
_NUMERIC_INNER = re.compile(r"^[\d\s*+\-/<>|&^()]+$")
_MIXED_INNER = re.compile(r"^[A-Z0-9_\s*+\-/<>|&^()]+$")
_REFERENCE = re.compile(r"^[A-Z][A-Z0-9_]*$")
_PAREN_SYMBOLIC = re.compile(r"^\([A-Z0-9_\s|&+\-*]+\)$")
_BARE_SYMBOLIC = re.compile(r"^[A-Z0-9_]+(\s*[|&+\-*]\s*[A-Z0-9_]+)+$")

_DEPENDENCY_RE = re.compile(r"\b([A-Z][A-Z0-9_]+)\b")


def match_value_shape(value: str) -> Optional[str]:
    """
    Checks a cleaned #define value against the accepted shapes.

    Returns the value as it should be emitted (bare compound forms wrapped in
    parentheses), or None when the value is not a plain data constant.
    """
    for pattern, wrap in _SHAPES:
        if pattern.match(value):
            return f"({value})" if wrap else value

    if _PAREN_NUMERIC.match(value):
        inner = value[1:-1]
        if _NUMERIC_INNER.match(inner) or _MIXED_INNER.match(inner):
            return value

    if _REFERENCE.match(value):
        return value
    if _PAREN_SYMBOLIC.match(value):
        return value
    if _BARE_SYMBOLIC.match(value):
        return f"({value})"
    return None


def find_dependencies(value: str, own_name: Optional[str] = None) -> List[str]:
    deps: List[str] = []
    for match in _DEPENDENCY_RE.finditer(value):
        name = match.group(1)
        if name != own_name and name not in deps:
            deps.append(name)
    return deps
