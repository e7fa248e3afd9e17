"""Slash-command tokenizer."""

from __future__ import annotations

from enum import Enum
from typing import NamedTuple


class ParsedCommand(NamedTuple):
    command: str
    args: list[str]


class _State(Enum):
    NORMAL = "normal"
    IN_SINGLE_QUOTE = "in_single_quote"
    IN_DOUBLE_QUOTE = "in_double_quote"


_QUOTE_STATES = {"'": _State.IN_SINGLE_QUOTE, '"': _State.IN_DOUBLE_QUOTE}
_CLOSING_QUOTE = {_State.IN_SINGLE_QUOTE: "'", _State.IN_DOUBLE_QUOTE: '"'}


def tokenize(text: str) -> list[str]:
    """Split ``text`` on whitespace, keeping quoted spans together.

    Quote characters are dropped and whitespace inside quotes is preserved.
    ``""`` yields an empty argument; an unterminated quote runs to the end.
    """

    tokens: list[str] = []
    current: list[str] = []
    in_token = False
    state = _State.NORMAL

    for char in text:
        if state is _State.NORMAL:
            if char.isspace():
                if in_token:
                    tokens.append("".join(current))
                    current = []
                    in_token = False
            elif char in _QUOTE_STATES:
                state = _QUOTE_STATES[char]
                in_token = True
            else:
                current.append(char)
                in_token = True
        elif char == _CLOSING_QUOTE[state]:
            state = _State.NORMAL
        else:
            current.append(char)

    if in_token:
        tokens.append("".join(current))
    return tokens


def parse_command(text: str) -> ParsedCommand:
    """Split a ``/command arg ...`` line into its name and arguments."""

    parts = text.strip().split(maxsplit=1)
    if not parts:
        return ParsedCommand(command="", args=[])
    command = parts[0].removeprefix("/")
    args = tokenize(parts[1]) if len(parts) > 1 else []
    return ParsedCommand(command=command, args=args)


__all__ = ["ParsedCommand", "parse_command", "tokenize"]
