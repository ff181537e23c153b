"""Tokenizer for template strings.

Outside ``{{ }}`` the scanner emits raw STRING tokens. Inside it recognises
the expression tokens. After a left arrow (``{{f <-}}:``) the rest of the
input is handed to a :class:`YAMLScanner` which re-scans YAML scalars that
themselves contain templates.
"""

from __future__ import annotations

from collections import deque

import yaml

from .token import Tok, Token

_SINGLE_CHAR_TOKENS = {
    "(": Token.LPAREN,
    ")": Token.RPAREN,
    "[": Token.LBRACK,
    "]": Token.RBRACK,
    ",": Token.COMMA,
    ".": Token.PERIOD,
    "+": Token.ADD,
    "-": Token.SUB,
    "*": Token.MUL,
    "/": Token.QUO,
    "%": Token.REM,
    ":": Token.COLON,
}

# characters that may start a two character operator
_TWO_CHAR_TOKENS = {
    "}": {"}}": Token.RDBRACE},
    "<": {"<-": Token.LARROW, "<=": Token.LEQ},
    ">": {">=": Token.GEQ},
    "=": {"==": Token.EQL},
    "!": {"!=": Token.NEQ},
    "&": {"&&": Token.LAND},
    "|": {"||": Token.LOR},
    "?": {"??": Token.COALESCING},
}

# the token when the second character does not follow
_OPERATOR_PREFIXES = {
    "<": Token.LSS,
    ">": Token.GTR,
    "!": Token.NOT,
    "?": Token.QUESTION,
}

_KEYWORDS = {
    "true": Token.BOOL,
    "false": Token.BOOL,
    "defined": Token.DEFINED,
}

_QUOTE_STYLES = ("'", '"')
_BLOCK_STYLES = ("|", ">")


class ScanError(ValueError):
    """The input can't be split into tokens."""

    def __init__(self, pos: int, message: str) -> None:
        super().__init__(message)
        self.pos = pos


def is_letter(ch: str) -> bool:
    return ch != "" and ch.isalpha()


def is_digit(ch: str) -> bool:
    return ch != "" and ch.isdecimal()


class Scanner:
    """Scans one template string.

    ``pos`` is the 1-based position of the first character of ``text`` in
    the outermost template.
    """

    def __init__(self, text: str, pos: int = 1, *, quoted: bool = False, literal: bool = False) -> None:
        self._src = text
        self._offset = 0
        self._base = pos
        self._quoted = quoted
        self._literal = literal
        self._reading_parameter = False
        self._expect_colon = False
        self._yaml: YAMLScanner | None = None

    @property
    def pos(self) -> int:
        return self._base + self._offset

    def _read(self) -> str:
        if self._offset >= len(self._src):
            return ""
        ch = self._src[self._offset]
        self._offset += 1
        return ch

    def _peek(self) -> str:
        if self._offset >= len(self._src):
            return ""
        return self._src[self._offset]

    def _unread(self, ch: str) -> None:
        if ch:
            self._offset -= 1

    def _skip_spaces(self) -> None:
        while self._offset < len(self._src) and self._src[self._offset] == " ":
            self._offset += 1

    def quoted(self) -> bool:
        """Whether the current parameter came from a quoted YAML scalar."""

        if self._yaml is not None:
            return self._yaml.quoted()
        return self._quoted

    def literal(self) -> bool:
        """Whether the current parameter sits in a YAML block scalar."""

        if self._yaml is not None:
            return self._yaml.literal()
        return self._literal

    def scan(self) -> Tok:
        """Return the next token.

        Raises :class:`ScanError` when a left arrow argument is not valid YAML.
        """

        if self._yaml is not None:
            tok = self._yaml.scan()
            if tok.type is Token.EOF:
                self._yaml = None
                return Tok(tok.pos, Token.LINEBREAK, tok.lit)
            return tok

        if not self._reading_parameter:
            if self._expect_colon:
                self._expect_colon = False
                ch = self._read()
                if ch == "":
                    # '{{f <-}}' used as a mapping key
                    return Tok(self.pos, Token.EOF, "")
                if ch != ":":
                    return Tok(self.pos - 1, Token.ILLEGAL, ch)
                start = self.pos
                rest = self._src[self._offset:]
                self._offset = len(self._src)
                self._yaml = YAMLScanner(rest, start)
                return self.scan()

            tok = self._scan_raw_string()
            if tok.type is Token.LDBRACE:
                self._reading_parameter = True
            return tok

        self._skip_spaces()
        ch = self._read()
        if ch == "":
            return Tok(self.pos, Token.EOF, "")
        start = self.pos - 1
        if ch in _SINGLE_CHAR_TOKENS:
            return Tok(start, _SINGLE_CHAR_TOKENS[ch], ch)
        if ch in _TWO_CHAR_TOKENS:
            following = self._read()
            pair = ch + following
            tok = _TWO_CHAR_TOKENS[ch].get(pair)
            if tok is Token.RDBRACE:
                self._reading_parameter = False
            elif tok is Token.LARROW:
                self._expect_colon = True
            if tok is not None:
                return Tok(start, tok, pair)
            self._unread(following)
            if ch in _OPERATOR_PREFIXES:
                return Tok(start, _OPERATOR_PREFIXES[ch], ch)
        elif ch == '"':
            return self._scan_string()
        elif is_digit(ch):
            return self._scan_number(ch)
        elif is_letter(ch):
            return self._scan_ident()
        return Tok(start, Token.ILLEGAL, ch)

    def _scan_raw_string(self) -> Tok:
        start = self._offset
        if start >= len(self._src):
            return Tok(self.pos, Token.EOF, "")
        end = self._src.find("{{", start)
        if end == start:
            self._offset += 2
            return Tok(self.pos - 2, Token.LDBRACE, "{{")
        if end < 0:
            end = len(self._src)
        self._offset = end
        return Tok(self._base + start, Token.STRING, self._src[start:end])

    def _scan_string(self) -> Tok:
        start = self._offset
        end = self._src.find('"', start)
        if end < 0:
            # not terminated
            self._offset = len(self._src)
            return Tok(self.pos, Token.ILLEGAL, "")
        self._offset = end + 1
        return Tok(self._base + start - 1, Token.STRING, self._src[start:end])

    def _scan_digits(self) -> None:
        while is_digit(self._peek()):
            self._offset += 1

    def _scan_number(self, head: str) -> Tok:
        start = self._offset - 1
        self._scan_digits()
        kind = Token.INT
        if self._peek() == "." and self._offset + 1 < len(self._src) and is_digit(self._src[self._offset + 1]):
            self._offset += 1
            self._scan_digits()
            kind = Token.FLOAT
        lit = self._src[start:self._offset]
        if head == "0" and kind is Token.INT and len(lit) != 1:
            return Tok(self._base + start, Token.ILLEGAL, lit)
        return Tok(self._base + start, kind, lit)

    def _scan_ident(self) -> Tok:
        start = self._offset - 1
        while True:
            ch = self._read()
            if ch in ("-", "_") or is_letter(ch) or is_digit(ch):
                continue
            self._unread(ch)
            break
        lit = self._src[start:self._offset]
        return Tok(self._base + start, _KEYWORDS.get(lit, Token.IDENT), lit)


class YAMLScanner:
    """Splits a left arrow argument into raw YAML text and nested templates.

    Trailing spaces and line breaks are kept aside and returned as the
    literal of the final EOF token so the caller can restore them.
    """

    def __init__(self, text: str, pos: int) -> None:
        body = text.rstrip(" \n")
        self._trail = text[len(body):]
        self._src = body
        self._base = pos
        self._child: Scanner | None = None
        self._segments: deque[Tok | Scanner] = deque(self._split(body))

    def _split(self, src: str) -> list[Tok | Scanner]:
        try:
            tokens = list(yaml.scan(src))
        except yaml.MarkedYAMLError as exc:
            offset = exc.problem_mark.index if exc.problem_mark is not None else 0
            raise ScanError(self._base + offset, f"failed to scan YAML: {exc.problem}") from exc
        except yaml.YAMLError as exc:
            raise ScanError(self._base, f"failed to scan YAML: {exc}") from exc
        segments: list[Tok | Scanner] = []
        cursor = 0
        for token in tokens:
            if not isinstance(token, yaml.ScalarToken):
                continue
            start, end = token.start_mark.index, token.end_mark.index
            prefix_end = start
            if token.style in _QUOTE_STYLES:
                inner_start, inner_end = start + 1, end - 1
            elif token.style in _BLOCK_STYLES:
                header_end = src.find("\n", start, end)
                if header_end < 0:
                    continue
                inner_start, inner_end = header_end + 1, end
                prefix_end = inner_start
            else:
                inner_start, inner_end = start, end
            inner = src[inner_start:inner_end]
            if "{{" not in inner:
                continue
            if prefix_end > cursor:
                segments.append(Tok(self._base + cursor, Token.STRING, src[cursor:prefix_end]))
            segments.append(
                Scanner(
                    inner,
                    self._base + inner_start,
                    quoted=token.style in _QUOTE_STYLES,
                    literal=token.style in _BLOCK_STYLES,
                )
            )
            cursor = end
        if cursor < len(src):
            segments.append(Tok(self._base + cursor, Token.STRING, src[cursor:]))
        return segments

    def scan(self) -> Tok:
        while True:
            if self._child is not None:
                tok = self._child.scan()
                if tok.type is not Token.EOF:
                    return tok
                self._child = None
                continue
            if not self._segments:
                return Tok(self._base + len(self._src), Token.EOF, self._trail)
            segment = self._segments.popleft()
            if isinstance(segment, Scanner):
                self._child = segment
                continue
            return segment

    def quoted(self) -> bool:
        if self._child is not None:
            return self._child.quoted()
        return False

    def literal(self) -> bool:
        if self._child is not None:
            return self._child.literal()
        return False
