from decimal import Decimal
import decimal
from datetime import date, datetime
from typing import NamedTuple

import plainledger.parser as parser
import plainledger.scanner as scanner
from plainledger.parser import Amount, Transaction, Posting, \
    CommodityPrice, IncludeDirective, Comment, BlankLine, Ledger, \
    PriceAnnotation, PriceKind

class SerializerSettings(NamedTuple):
    indent: str = "  "
    line_ending: str = "\n"

DEFAULT_SETTINGS = SerializerSettings()

# Separates an account from its amount and a note from what precedes it.
HARD_SPACE = "  "

# https://docs.python.org/3/library/decimal.html#decimal.getcontext
def moneyfmt(value, places=2, curr='', sep=',', dp='.',
             pos='', neg='-', trailneg=''):
    """Convert Decimal to a money formatted string.

    places:  required number of places after the decimal point
    curr:    optional currency symbol before the sign (may be blank)
    sep:     optional grouping separator (comma, period, space, or blank)
    dp:      decimal point indicator (comma or period)
             only specify as blank when places is zero
    pos:     optional sign for positive numbers: '+', space or blank
    neg:     optional sign for negative numbers: '-', '(', space or blank
    trailneg:optional trailing minus indicator:  '-', ')', space or blank

    >>> d = Decimal('-1234567.8901')
    >>> moneyfmt(d, curr='$')
    '-$1,234,567.89'
    >>> moneyfmt(d, places=0, sep='.', dp='', neg='', trailneg='-')
    '1.234.568-'
    >>> moneyfmt(d, curr='$', neg='(', trailneg=')')
    '($1,234,567.89)'
    >>> moneyfmt(Decimal(123456789), sep=' ')
    '123 456 789.00'
    >>> moneyfmt(Decimal('-0.02'), neg='<', trailneg='>')
    '<0.02>'

    """
    q = Decimal(10) ** -places      # 2 places --> '0.01'
    # Enough precision for quantities wider than the default context.
    ctx = decimal.Context(prec=max(decimal.getcontext().prec,
                                   value.adjusted() + places + 2))
    sign, digits, exp = value.quantize(q, context=ctx).as_tuple()
    result = []
    digits = list(map(str, digits))
    build, next = result.append, digits.pop
    if sign:
        build(trailneg)
    for i in range(places):
        build(next() if digits else '0')
    if places:
        build(dp)
    if not digits:
        build('0')
    i = 0
    while digits:
        build(next())
        i += 1
        if i == 3 and digits:
            i = 0
            build(sep)
    build(curr)
    build(neg if sign else pos)
    return ''.join(reversed(result))

def commodity2str(commodity: str, quoted: bool = False) -> str:
    p, consumed = parser.parse_commodity(commodity)
    if not quoted and p == commodity and consumed == len(commodity):
        return commodity
    return f'"{commodity}"'

def date2str(when: date) -> str:
    if isinstance(when, datetime):
        return when.strftime('%Y-%m-%d %H:%M:%S')
    return when.strftime('%Y-%m-%d')

def _places(quantity: Decimal) -> int:
    exponent = quantity.as_tuple().exponent
    return max(0, -exponent)

def _is_symbol(commodity: str) -> bool:
    return not any(c.isalpha() for c in commodity)

def amount2str(amount: Amount) -> str:
    """Render an amount, reusing the way it was written when known.

    Amounts without format hints use the canonical form: symbols such as
    "$" in front of the number ("-$5.00"), names after it ("-5.00 EUR").
    """
    quantity = amount.quantity
    fmt = amount.fmt
    sign = "-" if quantity.is_signed() else ""
    if not sign and fmt and fmt.plus:
        sign = "+"
    comma = bool(fmt and fmt.comma)
    number = moneyfmt(quantity.copy_abs(), places=_places(quantity),
                      sep="," if comma else "", neg="")
    if amount.commodity is None:
        return sign + number
    if fmt is None:
        commodity = commodity2str(amount.commodity)
        if _is_symbol(amount.commodity):
            return sign + commodity + number
        return sign + number + " " + commodity
    commodity = commodity2str(amount.commodity, fmt.quoted)
    if fmt.position == "left":
        if fmt.sign_first:
            return sign + commodity + fmt.space + number
        return commodity + fmt.space + sign + number
    return sign + number + fmt.space + commodity

def price2str(price: PriceAnnotation) -> str:
    amount = amount2str(price.amount)
    if price.kind == PriceKind.LOT:
        return "{" + amount + "}"
    if price.kind == PriceKind.LOT_TOTAL:
        return "{{" + amount + "}}"
    return price.kind.value + " " + amount

def _comment_lines(comment: str | None, settings: SerializerSettings) \
    -> list[str]:
    if comment is None:
        return []
    lines = []
    for line in comment.split("\n"):
        if line[:1] != ";" and scanner.is_indented_comment(line):
            lines.append(settings.indent + line)
        else:
            lines.append(settings.indent + ("; " + line if line else ";"))
    return lines

def _inline_comment(comment: str | None) -> str:
    if comment is None:
        return ""
    return HARD_SPACE + ("; " + comment if comment else ";")

def posting2lines(posting: Posting, settings: SerializerSettings) \
    -> list[str]:
    line = settings.indent
    if posting.status:
        line += posting.status.value + " "
    line += parser.join_virtual_account(posting.account, posting.reality)
    if posting.amount is not None:
        line += HARD_SPACE + amount2str(posting.amount)
        for price in posting.prices:
            line += " " + price2str(price)
        if posting.balance_assertion is not None:
            line += " = " + amount2str(posting.balance_assertion)
    elif posting.balance_assertion is not None:
        line += HARD_SPACE + "= " + amount2str(posting.balance_assertion)
    return [line] + _comment_lines(posting.comment, settings)

def transaction2lines(txn: Transaction, settings: SerializerSettings) \
    -> list[str]:
    line = date2str(txn.date)
    if txn.effective_date:
        line += "=" + date2str(txn.effective_date)
    if txn.status:
        line += " " + txn.status.value
    if txn.code is not None:
        line += f" ({txn.code})"
    if txn.description:
        line += " " + txn.description
    lines = [line] + _comment_lines(txn.comment, settings)
    for p in txn.postings:
        lines += posting2lines(p, settings)
    return lines

def item2lines(item, settings: SerializerSettings) -> list[str]:
    if isinstance(item, Transaction):
        return transaction2lines(item, settings)
    if isinstance(item, CommodityPrice):
        line = "P " + date2str(item.date)
        line += " " + commodity2str(item.symbol)
        line += " " + amount2str(item.price)
        return [line + _inline_comment(item.comment)]
    if isinstance(item, IncludeDirective):
        return ["include " + item.path + _inline_comment(item.comment)]
    if isinstance(item, Comment):
        return [item.marker + item.text]
    if isinstance(item, BlankLine):
        return [""]
    raise TypeError(f"Cannot render {type(item)}.")

def to_string_with(tree, settings: SerializerSettings) -> str:
    """Render a ledger (or a single ledger item) back to journal text."""
    if isinstance(tree, Ledger):
        items = tree.items
    else:
        items = [tree]
    out = []
    for item in items:
        for line in item2lines(item, settings):
            out.append(line + settings.line_ending)
    return "".join(out)

def to_string(tree) -> str:
    return to_string_with(tree, DEFAULT_SETTINGS)
