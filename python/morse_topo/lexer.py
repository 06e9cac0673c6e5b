"""Lexer for the scene script language.

Comments (``--`` to end of line) are stripped per physical line before the
line is tokenized. Numbers carry no sign or exponent; unary minus is left to
the parser.
"""

from dataclasses import dataclass
from typing import Union

from morse_topo.errors import LexError

COMMENT_MARKER = "--"
PUNCTUATION = set("()+-*/,:")

NUMBER = "number"
IDENT = "ident"
STRING = "string"
PUNCT = "punct"


@dataclass(frozen=True)
class Token:
    kind: str
    value: Union[float, str]
    pos: int = 0

    def is_punct(self, char: str) -> bool:
        return self.kind == PUNCT and self.value == char


def strip_comment(line: str) -> str:
    """Drop a trailing ``--`` comment from one physical line."""
    idx = line.find(COMMENT_MARKER)
    if idx == -1:
        return line
    # A marker inside a string literal is not a comment.
    if line.count('"', 0, idx) % 2 == 1:
        close = line.find('"', idx)
        if close != -1:
            rest = strip_comment(line[close + 1:])
            return line[: close + 1] + rest
    return line[:idx]


# ASCII only: str.isdigit() and friends also accept characters like "²".
def _is_digit(ch: str) -> bool:
    return "0" <= ch <= "9"


def _is_ident_start(ch: str) -> bool:
    return ch.isascii() and (ch.isalpha() or ch == "_")


def _is_ident_char(ch: str) -> bool:
    return _is_ident_start(ch) or _is_digit(ch)


def tokenize(text: str) -> list[Token]:
    """Turn comment-free statement text into a token list."""
    tokens: list[Token] = []
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch.isspace():
            i += 1
            continue
        if _is_digit(ch) or (ch == "." and i + 1 < n and _is_digit(text[i + 1])):
            start = i
            seen_dot = False
            while i < n and (_is_digit(text[i]) or (text[i] == "." and not seen_dot)):
                if text[i] == ".":
                    seen_dot = True
                i += 1
            tokens.append(Token(NUMBER, float(text[start:i]), start))
            continue
        if _is_ident_start(ch):
            start = i
            while i < n and _is_ident_char(text[i]):
                i += 1
            tokens.append(Token(IDENT, text[start:i], start))
            continue
        if ch == '"':
            close = text.find('"', i + 1)
            if close == -1:
                raise LexError(ch, i, f"unterminated string starting at column {i + 1}")
            tokens.append(Token(STRING, text[i + 1:close], i))
            i = close + 1
            continue
        if ch in PUNCTUATION:
            tokens.append(Token(PUNCT, ch, i))
            i += 1
            continue
        raise LexError(ch, i)
    return tokens
