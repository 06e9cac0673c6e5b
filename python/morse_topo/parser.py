"""Recursive-descent parser: token list -> expression AST.

Precedence, lowest first: ``+ -``, ``* /``, unary ``-``, postfix method
chains (``shape:at(1, 0, 0):rotz(pi)``), primaries.
"""

from typing import Optional

from morse_topo.errors import ParseError
from morse_topo.lexer import IDENT, NUMBER, STRING, Token
from morse_topo.syntax import (
    BinaryOp,
    Call,
    Expr,
    MethodCall,
    Negate,
    NumberLiteral,
    StringLiteral,
    Variable,
)


class Parser:
    def __init__(self, tokens: list[Token]):
        self.tokens = tokens
        self.pos = 0

    def peek(self) -> Optional[Token]:
        if self.pos < len(self.tokens):
            return self.tokens[self.pos]
        return None

    def advance(self) -> Token:
        tok = self.peek()
        if tok is None:
            raise ParseError("unexpected end of input")
        self.pos += 1
        return tok

    def accept(self, char: str) -> bool:
        tok = self.peek()
        if tok is not None and tok.is_punct(char):
            self.pos += 1
            return True
        return False

    def expect(self, char: str, context: str) -> Token:
        tok = self.peek()
        if tok is None:
            raise ParseError(f"expected {char!r} {context}, got end of input")
        if not tok.is_punct(char):
            raise ParseError(f"expected {char!r} {context}, got {tok.value!r}")
        self.pos += 1
        return tok

    # ── grammar ────────────────────────────────────────────────

    def parse(self) -> Expr:
        if not self.tokens:
            raise ParseError("unexpected end of input")
        expr = self.additive()
        tok = self.peek()
        if tok is not None:
            raise ParseError(f"unexpected token {tok.value!r} after expression")
        return expr

    def additive(self) -> Expr:
        left = self.multiplicative()
        while True:
            if self.accept("+"):
                left = BinaryOp("+", left, self.multiplicative())
            elif self.accept("-"):
                left = BinaryOp("-", left, self.multiplicative())
            else:
                return left

    def multiplicative(self) -> Expr:
        left = self.unary()
        while True:
            if self.accept("*"):
                left = BinaryOp("*", left, self.unary())
            elif self.accept("/"):
                left = BinaryOp("/", left, self.unary())
            else:
                return left

    def unary(self) -> Expr:
        if self.accept("-"):
            return Negate(self.unary())
        return self.postfix()

    def postfix(self) -> Expr:
        expr = self.primary()
        while self.accept(":"):
            tok = self.peek()
            if tok is None or tok.kind != IDENT:
                raise ParseError("expected method name after ':'")
            self.pos += 1
            self.expect("(", f"after method name {tok.value!r}")
            expr = MethodCall(expr, tok.value, self.arguments())
        return expr

    def arguments(self) -> tuple[Expr, ...]:
        """Parse a comma-separated list; the opening paren is already consumed."""
        args: list[Expr] = []
        if self.accept(")"):
            return ()
        while True:
            args.append(self.additive())
            if self.accept(")"):
                return tuple(args)
            self.expect(",", "between arguments")

    def primary(self) -> Expr:
        tok = self.advance()
        if tok.is_punct("("):
            inner = self.additive()
            self.expect(")", "to close parenthesized expression")
            return inner
        if tok.kind == NUMBER:
            return NumberLiteral(float(tok.value))
        if tok.kind == STRING:
            return StringLiteral(str(tok.value))
        if tok.kind == IDENT:
            if self.accept("("):
                return Call(str(tok.value), self.arguments())
            return Variable(str(tok.value))
        raise ParseError(f"unexpected token {tok.value!r}")


def parse_expression(tokens: list[Token]) -> Expr:
    return Parser(tokens).parse()
