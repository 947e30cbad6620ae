from __future__ import annotations
from typing import List


class NumStackError(Exception):
    """Base class for interpreter errors."""


# Characters folded into a plain space before scanning (U+3000 is the
# full-width ideographic space).
WHITESPACE_FOLD = ("\n", "\t", "\r", "　")

# Escapes that stay encoded as two characters so nested re-lexing sees them again.
ENCODED_ESCAPES = {"n": "\\n", "t": "\\t", "r": "\\r"}


class Lexer:
    """Split NumStack source into tokens.

    Tokens keep their delimiters: ``(text)``, ``[program]``, ``{matrix}``
    and ``#comment#`` are returned verbatim so the evaluator can decide how
    to interpret them, possibly by lexing their interior again.
    """

    def __init__(self, text: str) -> None:
        for ch in WHITESPACE_FOLD:
            text = text.replace(ch, " ")
        self.text = text

    def tokenize(self) -> List[str]:
        tokens: List[str] = []
        buffer: List[str] = []
        strings = 0  # ( ) depth
        lists = 0  # [ ] depth
        braces = 0  # { } depth, only while strings == 0
        comment = False
        escape = False

        for ch in self.text:
            if ch == "\\" and not escape:
                escape = True
                continue
            if not escape and not comment:
                if ch == "(":
                    strings += 1
                    buffer.append(ch)
                    continue
                if ch == ")":
                    strings -= 1
                    buffer.append(ch)
                    continue
                if strings == 0:
                    if ch == "{":
                        braces += 1
                        buffer.append(ch)
                        continue
                    if ch == "}":
                        braces -= 1
                        buffer.append(ch)
                        continue
            if ch == "#" and not escape:
                comment = not comment
                buffer.append(ch)
                continue
            if not escape and not comment and strings == 0:
                if ch == "[":
                    lists += 1
                    buffer.append(ch)
                    continue
                if ch == "]":
                    lists -= 1
                    buffer.append(ch)
                    continue
            if ch == " " and not escape and not comment and lists == 0 and strings == 0 and braces == 0:
                if buffer:
                    tokens.append("".join(buffer))
                    buffer.clear()
                continue
            _push_char(buffer, ch, escape, nested=(lists != 0 or strings != 0 or comment))
            escape = False

        if buffer:
            tokens.append("".join(buffer))
        return tokens


def scan_string_literal(body: str) -> str:
    """Build the content of a ``(...)`` literal from its interior text.

    Uses the lexer's escape and comment rules but tracks only parenthesis
    and bracket nesting; backslashes at the outer level are consumed.
    """
    buffer: List[str] = []
    strings = 0
    lists = 0
    comment = False
    escape = False

    for ch in body:
        if ch == "\\" and not escape:
            escape = True
            continue
        if not escape and not comment:
            if ch == "(":
                strings += 1
                buffer.append(ch)
                continue
            if ch == ")":
                strings -= 1
                buffer.append(ch)
                continue
        if ch == "#" and not escape:
            comment = not comment
            buffer.append(ch)
            continue
        if not escape and not comment and strings == 0:
            if ch in "[]":
                lists += 1 if ch == "[" else -1
                buffer.append(ch)
                continue
        _push_char(buffer, ch, escape, nested=(lists != 0 or strings != 0 or comment))
        escape = False

    return "".join(buffer)


def _push_char(buffer: List[str], ch: str, escape: bool, *, nested: bool) -> None:
    if nested:
        # Inner text is re-lexed later, so the backslash has to survive.
        if escape:
            buffer.append("\\")
        buffer.append(ch)
        return
    if escape:
        buffer.append(ENCODED_ESCAPES.get(ch, ch))
    else:
        buffer.append(ch)
