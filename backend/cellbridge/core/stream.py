"""
Text clean-up for kernel stream output.

Kernels write progress bars and spinners the way a terminal expects them:
backspaces erase the previous character and a lone carriage return rewinds
to the start of the line. The notebook has no terminal, so the effect is
applied to the text itself before display.
"""
import re
from typing import List, Union

MultilineString = Union[str, List[str]]

BACKSPACE = "\x08"

_BACKSPACE_PATTERN = re.compile(r"[^\n]\x08")
_EDGE_WHITESPACE = re.compile(r"^[\t\f\v\r ]+|[\t\f\v\r ]+\Z")


def concat_multiline_string(value: MultilineString, trim: bool = False) -> str:
    """
    Join a Jupyter multiline string into one string.

    Every fragment but the last gets a newline appended unless it already
    ends with one. With ``trim`` the non-newline whitespace at both ends of
    the result is removed.
    """
    if isinstance(value, list):
        parts = []
        last = len(value) - 1
        for index, fragment in enumerate(value):
            if index < last and not fragment.endswith("\n"):
                parts.append(fragment + "\n")
            else:
                parts.append(fragment)
        result = "".join(parts)
    else:
        result = str(value)

    return _EDGE_WHITESPACE.sub("", result) if trim else result


def split_multiline_string(value: MultilineString) -> List[str]:
    """
    Split text into the line-array form stored in .ipynb files.

    Each entry keeps its trailing newline except the last one; a trailing
    empty entry is dropped.
    """
    if isinstance(value, list):
        return value

    text = str(value)
    if not text:
        return []

    lines = text.split("\n")
    result = [line + "\n" for line in lines[:-1]]
    if lines[-1]:
        result.append(lines[-1])
    return result


def fix_backspace(text: str) -> str:
    """Remove every character (other than a newline) that a backspace erases."""
    while True:
        erased = _BACKSPACE_PATTERN.sub("", text)
        if len(erased) == len(text):
            return text
        text = erased


def fix_carriage_return(text: str) -> str:
    """
    Apply carriage returns the way a terminal would.

    A ``\\r`` not followed by ``\\n`` throws away the current line so far;
    ``\\r\\n`` is a plain line break.
    """
    result = []
    line_start = 0
    index = 0
    length = len(text)

    while index < length:
        char = text[index]
        if char == "\r":
            if index + 1 < length and text[index + 1] == "\n":
                result.append(text[line_start:index])
                result.append("\n")
                line_start = index + 2
                index += 2
                continue
            line_start = index + 1
        elif char == "\n":
            result.append(text[line_start:index + 1])
            line_start = index + 1
        index += 1

    result.append(text[line_start:])
    return "".join(result)


def format_stream_text(text: str) -> str:
    # Backspaces must be applied before carriage returns
    return fix_carriage_return(fix_backspace(text))
