from enum import Enum
import re

COMMENT_MARKERS = ";#%|*"

class LineKind(Enum):
    BLANK = "blank"
    COMMENT = "comment"
    PRICE = "price"
    INCLUDE = "include"
    TRANSACTION = "transaction"
    INDENTED_COMMENT = "indented comment"
    POSTING = "posting"
    INVALID_INDENT = "invalid indent"
    UNKNOWN = "unknown"

def indentation(line: str) -> int:
    """Length of the leading run of spaces and tabs."""
    m = re.match("[ \t]*", line)
    return m.end()

def is_continuation(line: str) -> bool:
    """Does the line belong to the posting list of an open transaction?

    A continuation line starts with one tab or at least two spaces.
    """
    return line.startswith("\t") or line.startswith("  ")

def is_indented_comment(text: str) -> bool:
    # "* " starts a posting with a cleared status.
    if not text or text[0] not in COMMENT_MARKERS:
        return False
    return not re.match(r"\*(?:[ \t]|$)", text)

def classify(line: str) -> LineKind:
    line = line.rstrip()
    if not line:
        return LineKind.BLANK
    if is_continuation(line):
        if is_indented_comment(line[indentation(line):]):
            return LineKind.INDENTED_COMMENT
        return LineKind.POSTING
    if line[0] == " ":
        return LineKind.INVALID_INDENT
    if line[0] in COMMENT_MARKERS:
        return LineKind.COMMENT
    if line[0].isdigit():
        return LineKind.TRANSACTION
    if re.match("P[ \t]", line):
        return LineKind.PRICE
    if re.match("include[ \t]", line):
        return LineKind.INCLUDE
    return LineKind.UNKNOWN
