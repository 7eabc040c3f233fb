from typing import Union
from typing import NamedTuple
from typing import Iterable
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
import re

from plainledger import scanner
from plainledger.scanner import LineKind

class Position(NamedTuple):
    line: int
    column: int

class Span(NamedTuple):
    start: Position
    end: Position

class ParseError(Exception):
    def __init__(self, message: str,
                 position: Union["Position", None] = None,
                 context: str = ""):
        self.expected = message
        self.line = position.line if position else None
        self.column = position.column if position else None
        if not position:
            super().__init__(message)
        elif context:
            super().__init__(
                f"{message}\n"
                f"line: {position.line}, column: {position.column}\n"
                f"{context}\n" + (position.column * " ") + "^"
            )
        else:
            super().__init__(
                f"{message}\n"
                f"line: {position.line}, column: {position.column}\n"
            )

class Status(Enum):
    CLEARED = "*"
    PENDING = "!"

class Reality(Enum):
    REAL = "real"
    # Excluded from every balance computation.
    VIRTUAL = "virtual"
    BALANCED_VIRTUAL = "balanced virtual"

class PriceKind(Enum):
    LOT = "{}"
    LOT_TOTAL = "{{}}"
    UNIT = "@"
    TOTAL = "@@"

class AmountFormat(NamedTuple):
    """How an amount was written, so that it can be written again."""
    position: str | None
    space: str
    comma: bool
    sign_first: bool
    quoted: bool
    # An explicit "+" was written in front of the number.
    plus: bool = False

class Entity():
    """Base of every tree node.

    Equality and hashing look at `_fields` only; the source span is
    informational and never compared.
    """
    _fields: tuple[str, ...] = ()

    def __init__(self, span: Span | None = None):
        self.span: Span | None = span

    def _key(self):
        return tuple(getattr(self, f) for f in self._fields)

    def _replace(self, **changes):
        kwargs = {f: getattr(self, f) for f in self._fields}
        kwargs.update(changes)
        x = type(self)(**kwargs)
        x.span = self.span
        return x

    def __eq__(self, other):
        if not isinstance(other, Entity) or self._fields != other._fields:
            return NotImplemented
        return self._key() == other._key()

    def __hash__(self):
        return hash(self._key())

    def __repr__(self):
        fields = ", ".join(f"{f}={getattr(self, f)!r}" for f in self._fields)
        return f"{type(self).__name__}({fields})"

class Amount(Entity):
    _fields = ("quantity", "commodity")

    def __init__(self, quantity: Decimal, commodity: str | None = None,
                 fmt: AmountFormat | None = None):
        super().__init__()
        self._quantity = quantity
        # None is the "no commodity" group.
        self._commodity = commodity
        # None for amounts that were not read from text.
        self._fmt = fmt
    @property
    def quantity(self):
        return self._quantity
    @property
    def commodity(self):
        return self._commodity
    @property
    def fmt(self):
        return self._fmt
    def __neg__(self):
        return Amount(self._quantity.copy_negate(), self._commodity)
    def __repr__(self):
        return f"Amount({self.quantity}, {self.commodity})"

class PriceAnnotation(NamedTuple):
    kind: PriceKind
    amount: Amount

class Posting(Entity):
    _fields = ("account", "reality", "amount", "prices",
               "balance_assertion", "status", "comment")

    def __init__(self, account: str, amount: Amount | None = None,
                 balance_assertion: Amount | None = None,
                 reality: Reality = Reality.REAL,
                 prices: Iterable[PriceAnnotation] = (),
                 status: Status | None = None,
                 comment: str | None = None):
        super().__init__()
        self.account = account
        self.amount = amount
        self.balance_assertion = balance_assertion
        self.reality = reality
        self.prices = tuple(prices)
        self.status = status
        self.comment = comment

class Transaction(Entity):
    _fields = ("date", "effective_date", "status", "code",
               "description", "comment", "postings")

    def __init__(self, date: date, description: str = "",
                 postings: Iterable[Posting] = (),
                 effective_date: date | None = None,
                 status: Status | None = None,
                 code: str | None = None,
                 comment: str | None = None):
        super().__init__()
        self.date = date
        self.description = description
        self.postings = tuple(postings)
        self.effective_date = effective_date
        self.status = status
        self.code = code
        self.comment = comment

class CommodityPrice(Entity):
    _fields = ("date", "symbol", "price", "comment")

    def __init__(self, symbol: str, date: date | datetime, price: Amount,
                 comment: str | None = None):
        super().__init__()
        self.symbol = symbol
        self.date = date
        self.price = price
        self.comment = comment

class IncludeDirective(Entity):
    """Reference to another journal file. Never opened by the parser."""
    _fields = ("path", "comment")

    def __init__(self, path: str, comment: str | None = None):
        super().__init__()
        self.path = path
        self.comment = comment

class Comment(Entity):
    _fields = ("marker", "text")

    def __init__(self, marker: str, text: str):
        super().__init__()
        self.marker = marker
        self.text = text

class BlankLine(Entity):
    pass

LedgerItem = Union[Transaction, CommodityPrice, IncludeDirective,
                   Comment, BlankLine]

class Ledger(Entity):
    _fields = ("items",)

    def __init__(self, items: Iterable[LedgerItem] = ()):
        super().__init__()
        self.items = tuple(items)
    def transactions(self) -> list[Transaction]:
        return [x for x in self.items if isinstance(x, Transaction)]
    def includes(self) -> list[IncludeDirective]:
        return [x for x in self.items if isinstance(x, IncludeDirective)]

def parse_date(line: str, begin: int = 0) -> tuple[date | None, int]:
    if len(line) <= begin:
        return (None, len(line))
    m = re.match(r"(\d{4})([-/.])(\d{1,2})\2(\d{1,2})", line[begin:])
    if not m:
        return (None, begin)
    try:
        x = date(int(m.group(1)), int(m.group(3)), int(m.group(4)))
    except ValueError:
        return (None, begin)
    return (x, begin + m.end())

def parse_time(line: str, begin: int = 0) -> tuple[time | None, int]:
    if len(line) <= begin:
        return (None, len(line))
    m = re.match(r"(\d{2}):(\d{2})(?::(\d{2}))?(?=[ \t]|$)", line[begin:])
    if not m:
        return (None, begin)
    try:
        x = time(int(m.group(1)), int(m.group(2)), int(m.group(3) or 0))
    except ValueError:
        return (None, begin)
    return (x, begin + m.end())

def parse_quantity(line: str, begin: int = 0) \
    -> tuple[tuple[Decimal, bool] | None, int]:
    if len(line) <= begin:
        return (None, len(line))
    m = re.match(r"[-+]?(\d{1,3}(,\d{3})+|\d+)(\.\d+)?", line[begin:])
    if not m:
        return (None, begin)
    comma = m.group(2) is not None
    return ((Decimal(m.group(0).replace(',', '')), comma),
            begin + m.end())

def parse_commodity(line: str, begin: int = 0, relaxed=False) \
    -> tuple[str | None, int]:
    if len(line) <= begin:
        return (None, len(line))
    line = line[begin:]
    quoted = r'"([^"]+)"'
    unquoted = r'[^\s\d\-+.,;@{}=()\[\]"]+'
    if relaxed:
        unquoted = r'[^\s;"]+'
    m = re.match(quoted, line)
    if m:
        return (m.group(1), begin + m.end())
    m = re.match(unquoted, line)
    if m:
        return (m.group(0), begin + m.end())
    return (None, begin)

def parse_amount(line: str, begin: int = 0) \
    -> tuple[Amount | None, int]:
    if len(line) <= begin:
        return (None, len(line))

    sign, consumed = parse_keyword("[-+]", line, begin)
    quoted = consumed < len(line) and line[consumed] == '"'
    commodity, consumed = parse_commodity(line, consumed)
    if commodity:
        # [-] [commodity] [quantity]
        space, consumed = parse_space(line, consumed)
        if sign and line[consumed:consumed + 1] in ("-", "+"):
            return (None, begin)
        plus = sign == "+" or line[consumed:consumed + 1] == "+"
        quantity, consumed = parse_quantity(line, consumed)
        if not quantity:
            return (None, begin)
        quantity, comma = quantity
        if sign == "-":
            quantity = quantity.copy_negate()
        fmt = AmountFormat("left", space or "", comma, bool(sign), quoted,
                           plus)
        return (Amount(quantity, commodity, fmt), consumed)

    # [quantity] [commodity]
    plus = line[begin] == "+"
    quantity, consumed = parse_quantity(line, begin)
    if not quantity:
        return (None, begin)
    quantity, comma = quantity
    space, consumed_x = parse_space(line, consumed)
    quoted = consumed_x < len(line) and line[consumed_x] == '"'
    commodity, consumed_x = parse_commodity(line, consumed_x)
    if not commodity:
        fmt = AmountFormat(None, "", comma, False, False, plus)
        return (Amount(quantity, None, fmt), consumed)
    fmt = AmountFormat("right", space or "", comma, False, quoted, plus)
    return (Amount(quantity, commodity, fmt), consumed_x)

def parse_hard_space(line: str, begin: int = 0) \
    -> tuple[str | None, int]:
    if len(line) <= begin:
        return (None, len(line))
    m = re.match('[ \t]{2,}|\t', line[begin:])
    if m:
        return (m.group(0), begin + m.end())
    return (None, begin)

def parse_space(line: str, begin: int = 0) \
    -> tuple[str | None, int]:
    if len(line) <= begin:
        return (None, len(line))
    m = re.match('[ \t]+', line[begin:])
    if m:
        return (m.group(0), begin + m.end())
    return (None, begin)

def parse_keyword(keyword: str, line: str, begin: int = 0) \
    -> tuple[str | None, int]:
    if len(line) <= begin:
        return (None, len(line))
    m = re.match(keyword, line[begin:])
    if m:
        return (m.group(0), begin + m.end())
    return (None, begin)

def parse_status(line: str, begin: int = 0) \
    -> tuple[Status | None, int]:
    status, consumed = parse_keyword(r"[*!](?=[ \t]|$)", line, begin)
    if not status:
        return (None, begin)
    return (Status(status), consumed)

def parse_code(line: str, begin: int = 0) -> tuple[str | None, int]:
    if len(line) <= begin:
        return (None, len(line))
    m = re.match(r"\(([^)]*)\)", line[begin:])
    if m:
        return (m.group(1), begin + m.end())
    return (None, begin)

def parse_account_name(line: str, begin: int = 0) \
    -> tuple[str | None, int]:
    # Single spaces are part of the name; two spaces, a tab or ";" end it.
    if len(line) <= begin:
        return (None, len(line))
    m = re.match(r'[^\s;]+(?: [^\s;]+)*', line[begin:])
    if m:
        return (m.group(0), begin + m.end())
    return (None, begin)

def parse_comment(line: str, begin: int = 0) \
    -> tuple[str | None, int]:
    if len(line) <= begin:
        return (None, len(line))
    if line[begin] == ";":
        return (line[begin + 1:].strip(), len(line))
    else:
        return (None, begin)

def parse_indented_comment(line: str) -> str:
    """Text of an indented comment line.

    ";" comments keep their stripped text, other markers stay in front of
    the text so that the line renders back with the same marker.
    """
    begin = scanner.indentation(line)
    comment, _ = parse_comment(line, begin)
    if comment is not None:
        return comment
    return line[begin:].rstrip()

def split_virtual_account(account: str) -> tuple[str, Reality]:
    if len(account) > 2:
        if account[0] == "(" and account[-1] == ")":
            return (account[1:-1], Reality.VIRTUAL)
        if account[0] == "[" and account[-1] == "]":
            return (account[1:-1], Reality.BALANCED_VIRTUAL)
    return (account, Reality.REAL)

def join_virtual_account(account: str, reality: Reality) -> str:
    if reality == Reality.VIRTUAL:
        return f"({account})"
    if reality == Reality.BALANCED_VIRTUAL:
        return f"[{account}]"
    return account

def _join_comment(lines: list[str]) -> str | None:
    if not lines:
        return None
    return "\n".join(lines)

# Longer openers first so that "{{" is not read as "{".
PRICE_SYNTAX = (
    (PriceKind.LOT_TOTAL, "{{", "}}"),
    (PriceKind.LOT, "{", "}"),
    (PriceKind.TOTAL, "@@", ""),
    (PriceKind.UNIT, "@", ""),
)

class Parser():
    """Line driven parser.

    Feed it lines with `parse_line` and collect the ledger with `finish`.
    A transaction is only built once a line outside of it (or the end of
    input) shows that it is complete; until then its header, postings and
    comment lines are buffered.
    """
    def __init__(self):
        self._items: list[LedgerItem] = []
        self._current_line_number = 0
        # Buffered transaction: header, comment lines attached to the
        # header, and (posting, comment lines) pairs.
        self._header: Transaction | None = None
        self._header_comments: list[str] = []
        self._postings: list[tuple[Posting, list[str]]] = []
        self._last_line = 0

    def _position(self, column: int) -> Position:
        return Position(self._current_line_number, column)

    def _create_span(self, begin: int, end: int) -> Span:
        return Span(self._position(begin), self._position(end))

    def _error(self, message: str, column: int, line: str) -> ParseError:
        return ParseError(message, self._position(column), line)

    def _parse_space_or_error(self,
                              message: str,
                              line: str, begin: int) -> tuple[str, int]:
        space, consumed = parse_space(line, begin)
        if not space:
            raise self._error(message, consumed, line)
        return (space, consumed)

    def _parse_amount(self, message: str, line: str, begin: int) \
        -> tuple[Amount, int]:
        amount, consumed = parse_amount(line, begin)
        if not amount:
            raise self._error(message, begin, line)
        amount.span = self._create_span(begin, consumed - 1)
        return (amount, consumed)

    def _parse_prices(self, line: str, begin: int) \
        -> tuple[list[PriceAnnotation], int]:
        prices = []
        consumed = begin
        while True:
            space, x = parse_space(line, consumed)
            for kind, opener, closer in PRICE_SYNTAX:
                if line.startswith(opener, x):
                    break
            else:
                return (prices, consumed)
            space, x = parse_space(line, x + len(opener))
            amount, x = self._parse_amount("expected price amount", line, x)
            if closer:
                space, x = parse_space(line, x)
                if not line.startswith(closer, x):
                    raise self._error(f"expected '{closer}'", x, line)
                x += len(closer)
            prices.append(PriceAnnotation(kind, amount))
            consumed = x

    def _finish_parse_transaction_start(self, line: str) -> Transaction:
        date_, consumed = parse_date(line, 0)
        if not date_:
            raise self._error("expected date", 0, line)
        effective_date = None
        if line[consumed:consumed + 1] == "=":
            effective_date, consumed_x = parse_date(line, consumed + 1)
            if not effective_date:
                raise self._error("expected effective date",
                                  consumed + 1, line)
            consumed = consumed_x
        # `rest` marks where the description may begin, before any
        # whitespace, so that the note separator can be checked.
        rest = consumed
        if consumed < len(line):
            space, consumed = self._parse_space_or_error(
                "expected whitespace after date", line, consumed)
        status, consumed_x = parse_status(line, consumed)
        if status:
            rest = consumed_x
            space, consumed = parse_space(line, consumed_x)
        code, consumed_x = parse_code(line, consumed)
        if code is not None:
            rest = consumed_x
        text = line[rest:]
        note = None
        m = re.search("(?:[ \t]{2,}|\t);", text)
        if m:
            note = text[m.end():].strip()
            text = text[:m.start()]
        t = Transaction(date_, text.strip(),
                        effective_date=effective_date,
                        status=status, code=code)
        if note is not None:
            self._header_comments.append(note)
        return t

    def _finish_parse_posting(self, line: str) -> tuple[Posting, str | None]:
        consumed = scanner.indentation(line)
        status, consumed_x = parse_status(line, consumed)
        if status:
            space, consumed = parse_space(line, consumed_x)
        account_begin = consumed
        account, consumed = parse_account_name(line, consumed)
        if not account:
            raise self._error("expected account", consumed, line)
        name, reality = split_virtual_account(account)
        if reality == Reality.REAL and account[0] in "([":
            raise self._error("expected closing bracket after account",
                              consumed, line)
        amount = None
        assertion = None
        prices = []
        space, consumed_x = parse_space(line, consumed)
        note, consumed_x = parse_comment(line, consumed_x)
        if consumed_x < len(line):
            space, consumed_x = parse_hard_space(line, consumed)
            if not space:
                raise self._error("expected two spaces or a tab after account",
                                  consumed, line)
            space, consumed = parse_space(line, consumed)
            if line[consumed] != "=":
                amount, consumed = self._parse_amount(
                    "expected amount or balance", line, consumed)
                prices, consumed = self._parse_prices(line, consumed)
            space, consumed = parse_space(line, consumed)
            if line[consumed:consumed + 1] == "=":
                space, consumed = parse_space(line, consumed + 1)
                assertion, consumed = self._parse_amount(
                    "expected balance amount", line, consumed)
            space, consumed = parse_space(line, consumed)
            note, consumed = parse_comment(line, consumed)
            if consumed < len(line):
                raise self._error("expected end of posting", consumed, line)
        p = Posting(name, amount, assertion, reality=reality,
                    prices=prices, status=status)
        p.span = self._create_span(account_begin, len(line) - 1)
        return (p, note)

    def _finish_parse_commodity_price(self, line: str) -> CommodityPrice:
        P, consumed = parse_keyword("P", line, 0)
        assert P
        space, consumed = self._parse_space_or_error(
            "expected whitespace after 'P'", line, consumed)
        when, consumed_x = parse_date(line, consumed)
        if not when:
            raise self._error("expected date", consumed, line)
        space, consumed = self._parse_space_or_error(
            "expected whitespace after date", line, consumed_x)
        time_, consumed_x = parse_time(line, consumed)
        if time_:
            when = datetime.combine(when, time_)
            space, consumed = self._parse_space_or_error(
                "expected whitespace after time", line, consumed_x)
        symbol, consumed_x = parse_commodity(line, consumed, relaxed=True)
        if not symbol:
            raise self._error("expected commodity symbol", consumed, line)
        space, consumed = self._parse_space_or_error(
            "expected whitespace after commodity symbol", line, consumed_x)
        price, consumed = self._parse_amount(
            "expected price amount", line, consumed)
        space, consumed = parse_space(line, consumed)
        comment, consumed = parse_comment(line, consumed)
        if consumed < len(line):
            raise self._error("expected end of price directive",
                              consumed, line)
        return CommodityPrice(symbol, when, price, comment)

    def _finish_parse_include(self, line: str) -> IncludeDirective:
        include, consumed = parse_keyword("include", line, 0)
        assert include
        space, consumed = self._parse_space_or_error(
            "expected whitespace after 'include'", line, consumed)
        path, consumed_x = parse_keyword("[^;]*", line, consumed)
        path = (path or "").strip()
        if not path:
            raise self._error("expected path", consumed, line)
        comment, consumed = parse_comment(line, consumed_x)
        return IncludeDirective(path, comment)

    def _close_transaction(self) -> None:
        if self._header is None:
            return None
        header = self._header
        if not self._postings:
            raise ParseError("expected at least one posting",
                             header.span.start)
        postings = []
        for p, comments in self._postings:
            if comments:
                p = p._replace(comment=_join_comment(comments))
            postings.append(p)
        t = header._replace(postings=postings,
                            comment=_join_comment(self._header_comments))
        t.span = Span(header.span.start,
                      Position(self._last_line, 0))
        self._items.append(t)
        self._header = None
        self._header_comments = []
        self._postings = []

    def parse_line(self, line: str) -> None:
        self._current_line_number += 1

        line = line.rstrip()
        kind = scanner.classify(line)

        if kind in (LineKind.POSTING, LineKind.INDENTED_COMMENT):
            if self._header is None:
                raise self._error("unexpected indentation", 0, line)
            self._last_line = self._current_line_number
            if kind == LineKind.INDENTED_COMMENT:
                comment = parse_indented_comment(line)
                if self._postings:
                    self._postings[-1][1].append(comment)
                else:
                    self._header_comments.append(comment)
            else:
                p, note = self._finish_parse_posting(line)
                self._postings.append((p, [] if note is None else [note]))
            return None

        self._close_transaction()
        line_span = self._create_span(0, max(len(line) - 1, 0))

        if kind == LineKind.BLANK:
            item = BlankLine()
        elif kind == LineKind.COMMENT:
            item = Comment(line[0], line[1:])
        elif kind == LineKind.PRICE:
            item = self._finish_parse_commodity_price(line)
        elif kind == LineKind.INCLUDE:
            item = self._finish_parse_include(line)
        elif kind == LineKind.TRANSACTION:
            t = self._finish_parse_transaction_start(line)
            t.span = line_span
            self._header = t
            self._last_line = self._current_line_number
            return None
        elif kind == LineKind.INVALID_INDENT:
            raise self._error(
                "expected indentation of two spaces or a tab", 0, line)
        else:
            raise self._error(
                "expected transaction, directive or comment", 0, line)
        item.span = line_span
        self._items.append(item)

    def parse_lines(self, lines: Iterable[str]) -> None:
        for i in lines:
            self.parse_line(i)

    def finish(self) -> Ledger:
        self._close_transaction()
        ledger = Ledger(self._items)
        if self._items:
            ledger.span = Span(self._items[0].span.start,
                               self._items[-1].span.end)
        return ledger

def split_lines(text: str) -> list[str]:
    lines = [x.rstrip("\r") for x in text.split("\n")]
    if lines[-1] == "":
        lines.pop()
    return lines

def parse_ast(text: str) -> Ledger:
    p = Parser()
    p.parse_lines(split_lines(text))
    return p.finish()
