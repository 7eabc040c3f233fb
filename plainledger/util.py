import logging
import os

import plainledger.parser as parser
from plainledger.parser import Ledger

logger = logging.getLogger(__name__)

class IncludeError(Exception):
    def __init__(self, message: str, path: str,
                 chain: list[str] | None = None):
        self.path = path
        self.chain = list(chain or [])
        if self.chain:
            message += "\nincluded from: " + " -> ".join(self.chain)
        super().__init__(message)

def read_journal(database: str) -> tuple[Ledger, list[str]]:
    p = parser.Parser()
    lines = []
    with open(database, "r") as database:
        for line in database:
            line = line.rstrip("\r\n")
            p.parse_line(line)
            lines.append(line)
    journal = p.finish()
    return (journal, lines)

def resolve_include(including: str, path: str) -> str:
    """Path of an included journal, relative to the including journal."""
    path = os.path.expanduser(path)
    if os.path.isabs(path):
        return os.path.normpath(path)
    base = os.path.dirname(os.path.abspath(including))
    return os.path.normpath(os.path.join(base, path))

def read_journals(database: str) \
    -> list[tuple[str, Ledger, list[str]]]:
    """Read a journal and, depth first, every journal it includes.

    The including journal comes before the journals it includes.
    """
    result = []
    _read_journals(os.path.abspath(database), [], result)
    return result

def _read_journals(database: str, chain: list[str],
                   result: list[tuple[str, Ledger, list[str]]]) -> None:
    if database in chain:
        raise IncludeError(f"Include cycle on {database}.", database, chain)
    if not os.path.isfile(database):
        raise IncludeError(f"No such journal: {database}.", database, chain)
    logger.info(f"Reading {database}.")
    journal, lines = read_journal(database)
    result.append((database, journal, lines))
    chain = chain + [database]
    for include in journal.includes():
        path = resolve_include(database, include.path)
        logger.info(f"{database} includes {path}.")
        _read_journals(path, chain, result)

def flatten_journal(database: str) -> tuple[Ledger, list[str]]:
    """Read a journal with every include directive replaced by the items
    of the journal it names.

    Source spans keep referring to the journal each item came from, so the
    returned lines are only those of the top journal.
    """
    database = os.path.abspath(database)
    journal, lines = read_journal(database)
    items = _flatten(database, journal, [database])
    x = Ledger(items)
    x.span = journal.span
    return (x, lines)

def _flatten(database: str, journal: Ledger, chain: list[str]) -> list:
    items = []
    for item in journal.items:
        if not isinstance(item, parser.IncludeDirective):
            items.append(item)
            continue
        path = resolve_include(database, item.path)
        if path in chain:
            raise IncludeError(f"Include cycle on {path}.", path, chain)
        if not os.path.isfile(path):
            raise IncludeError(f"No such journal: {path}.", path, chain)
        logger.info(f"Inlining {path} into {database}.")
        included, _ = read_journal(path)
        items += _flatten(path, included, chain + [path])
    return items
