from typing import Iterable
from decimal import Decimal
import decimal

from plainledger import parser
from plainledger.parser import Amount, Transaction, Posting, \
    Position, Ledger, Entity, PriceKind, Reality, Status, Comment, \
    BlankLine, CommodityPrice

# Residuals up to this magnitude count as zero: one unit in the last
# place of a 28 digit fixed point decimal.
TOLERANCE = Decimal("1E-28")

# Sums are computed exactly for any quantity read from a journal.
_CONTEXT = decimal.Context(prec=100)

class SimplifyError(Exception):
    def __init__(self, message: str,
                 entity: Entity | None = None,
                 lines: list[str] | None = None,
                 index: int | None = None):
        self.index = index
        position = None
        context = None
        if entity and entity.span:
            position = entity.span.start
        self.location: Position | None = position
        if lines and position and position.line <= len(lines):
            context = lines[position.line - 1]
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

class AmbiguousElidedAmountError(SimplifyError):
    pass

class UnbalancedTransactionError(SimplifyError):
    def __init__(self, message: str, commodity: str | None,
                 residual: Decimal, *args, **kwargs):
        self.commodity = commodity
        self.residual = residual
        super().__init__(message, *args, **kwargs)

class BalanceAssertionError(SimplifyError):
    def __init__(self, message: str, expected: Amount, actual: Amount,
                 *args, **kwargs):
        self.expected = expected
        self.actual = actual
        super().__init__(message, *args, **kwargs)

class ResolvedPosting(Posting):
    """A posting whose amount is known. Balance assertions are gone."""
    def __init__(self, account: str, amount: Amount,
                 reality: Reality = Reality.REAL,
                 prices: Iterable[parser.PriceAnnotation] = (),
                 status: Status | None = None,
                 comment: str | None = None,
                 inferred: bool = False,
                 balance_assertion: None = None):
        if amount is None:
            raise TypeError("A resolved posting needs an amount.")
        super().__init__(account, amount, None, reality=reality,
                         prices=prices, status=status, comment=comment)
        # True when the amount was not written in the journal.
        self.inferred = inferred

class ResolvedTransaction(Transaction):
    pass

class ResolvedLedger(Ledger):
    pass

def commodity2name(commodity: str | None) -> str:
    if commodity is None:
        return "no commodity"
    return f"'{commodity}'"

class Balance(dict):
    """Signed quantity per commodity. Zero entries are dropped."""
    def _check_type(self, key, val = None):
        if not (key is None or isinstance(key, str)):
            raise TypeError(f"Incorrect type: {type(key)}.")
        if val is not None and not isinstance(val, Decimal):
            raise TypeError(f"Incorrect type: {type(val)}.")
    def _remove_empty_balance(self, key):
        try:
            if self[key] == Decimal('0'):
                self.pop(key)
        except KeyError:
            pass
    def __missing__(self, key):
        self._check_type(key)
        return Decimal("0")
    def __setitem__(self, key, val):
        self._check_type(key, val)
        super().__setitem__(key, val)
        self._remove_empty_balance(key)
    def __iadd__(self, amount: Amount):
        if not isinstance(amount, Amount):
            raise TypeError(f"Unsupported type {type(amount)} for addition.")
        self._check_type(amount.commodity, amount.quantity)
        self[amount.commodity] = _CONTEXT.add(self[amount.commodity],
                                              amount.quantity)
        return self
    def __eq__(self, other):
        if len(self) == 0 and other == len(self):
            return True
        if not isinstance(other, type(self)):
            return False
        return super().__eq__(other)
    def __ne__(self, other):
        return not (self == other)
    def unbalanced(self) -> list[str | None]:
        """Commodities whose sum is outside of the tolerance."""
        return [c for c in self if self[c].copy_abs() > TOLERANCE]

def posting_weight(posting: Posting) -> Amount:
    """The amount a posting contributes to its transaction's balance.

    A transaction price ("@", "@@") takes precedence over a lot price
    ("{}", "{{}}"); without either the amount itself is used.
    """
    amount = posting.amount
    prices = {p.kind: p.amount for p in posting.prices}
    for unit, total in ((PriceKind.UNIT, PriceKind.TOTAL),
                        (PriceKind.LOT, PriceKind.LOT_TOTAL)):
        if unit in prices:
            price = prices[unit]
            return Amount(_CONTEXT.multiply(amount.quantity, price.quantity),
                          price.commodity)
        if total in prices:
            price = prices[total]
            quantity = price.quantity.copy_abs()
            if amount.quantity < 0:
                quantity = quantity.copy_negate()
            return Amount(quantity, price.commodity)
    return amount

def is_balanced_posting(posting: Posting) -> bool:
    return posting.reality != Reality.VIRTUAL

def assertion_holds(assertion: Amount, amount: Amount) -> bool:
    # A bare "0" asserts zero in whatever commodity the posting uses.
    if assertion.commodity is None and assertion.quantity == 0:
        return amount.quantity == 0
    return (assertion.commodity == amount.commodity and
            assertion.quantity == amount.quantity)

def _find_elided(txn: Transaction, index: int | None = None,
                 lines: list[str] | None = None) -> int | None:
    """Index of the single posting without amount nor assertion."""
    elide_index = None
    for i in range(len(txn.postings)):
        p = txn.postings[i]
        if p.amount is not None or p.balance_assertion is not None:
            continue
        if not is_balanced_posting(p):
            raise AmbiguousElidedAmountError(
                "Virtual posting may not be elided.", p, lines, index)
        if elide_index is not None:
            raise AmbiguousElidedAmountError(
                "More than one posting without amount.", txn, lines, index)
        elide_index = i
    return elide_index

def transaction_balance(postings: Iterable[Posting]) \
    -> tuple[Balance, list[str | None]]:
    """Sum the balanced postings; also return commodities in order seen."""
    balance = Balance()
    seen = []
    for p in postings:
        if p.amount is None or not is_balanced_posting(p):
            continue
        weight = posting_weight(p)
        # A bare zero belongs to no commodity group.
        if weight.commodity is None and weight.quantity == 0:
            continue
        if weight.commodity not in seen:
            seen.append(weight.commodity)
        balance += weight
    return (balance, seen)

def _resolve_posting(p: Posting, amount: Amount | None = None,
                     inferred: bool = False) -> ResolvedPosting:
    if amount is None:
        amount = p.amount
    x = ResolvedPosting(p.account, amount,
                        reality=p.reality, prices=p.prices,
                        status=p.status, comment=p.comment,
                        inferred=inferred)
    x.span = p.span
    return x

def resolve_transaction(txn: Transaction, index: int | None = None,
                        lines: list[str] | None = None) \
    -> ResolvedTransaction:
    """Infer the elided amount of a transaction and check its balance."""
    # A posting with only an assertion takes the asserted amount.
    postings = []
    for p in txn.postings:
        if p.amount is None and p.balance_assertion is not None:
            postings.append(_resolve_posting(p, p.balance_assertion,
                                             inferred=True))
        else:
            postings.append(p)

    elide_index = _find_elided(txn, index, lines)
    balance, seen = transaction_balance(postings)
    unbalanced = [c for c in seen if c in balance.unbalanced()]

    if elide_index is not None:
        if len(unbalanced) > 1:
            names = ", ".join(commodity2name(c) for c in unbalanced)
            raise AmbiguousElidedAmountError(
                f"Cannot infer elided amount, unbalanced commodities: "
                f"{names}.", txn, lines, index)
        if unbalanced:
            commodity = unbalanced[0]
            amount = Amount(balance[commodity].copy_negate(), commodity)
        elif len(seen) == 1:
            amount = Amount(Decimal("0"), seen[0])
        else:
            raise AmbiguousElidedAmountError(
                "Cannot infer elided amount, no commodity to balance.",
                txn, lines, index)
        postings[elide_index] = _resolve_posting(
            txn.postings[elide_index], amount, inferred=True)
    elif unbalanced:
        commodity = unbalanced[0]
        residual = balance[commodity]
        raise UnbalancedTransactionError(
            f"Transaction unbalanced by {residual} in "
            f"{commodity2name(commodity)}.",
            commodity, residual, txn, lines, index)

    resolved = []
    for p in postings:
        if not isinstance(p, ResolvedPosting):
            p = _resolve_posting(p)
        resolved.append(p)

    for original, p in zip(txn.postings, resolved):
        expected = original.balance_assertion
        if expected is None:
            continue
        if not assertion_holds(expected, p.amount):
            raise BalanceAssertionError(
                f"Balance assertion failed: expected {expected.quantity} "
                f"{commodity2name(expected.commodity)}, got "
                f"{p.amount.quantity} {commodity2name(p.amount.commodity)}.",
                expected, p.amount, original, lines, index)

    x = ResolvedTransaction(txn.date, txn.description, resolved,
                            effective_date=txn.effective_date,
                            status=txn.status, code=txn.code,
                            comment=txn.comment)
    x.span = txn.span
    return x

def simplify(ledger: Ledger, lines: list[str] | None = None) \
    -> ResolvedLedger:
    """Resolve every transaction of the ledger.

    The first failing transaction aborts the whole conversion. `lines`,
    when given, are the source lines used to decorate error messages.

    A run of top-level comment lines right above a transaction becomes
    the first lines of that transaction's comment and leaves the item
    list; a blank line or a price directive ends the run.
    """
    items = []
    pending = []
    for i in range(len(ledger.items)):
        item = ledger.items[i]
        if isinstance(item, Comment):
            pending.append(item)
        elif isinstance(item, (BlankLine, CommodityPrice)):
            pending = []
        elif isinstance(item, Transaction):
            item = resolve_transaction(item, i, lines)
            if pending:
                comments = [c.text.strip() for c in pending]
                if item.comment is not None:
                    comments.append(item.comment)
                item = item._replace(comment="\n".join(comments))
                items = [x for x in items
                         if not any(x is c for c in pending)]
                pending = []
        items.append(item)
    x = ResolvedLedger(items)
    x.span = ledger.span
    return x

def parse_resolved(text: str) -> ResolvedLedger:
    return simplify(parser.parse_ast(text), parser.split_lines(text))
