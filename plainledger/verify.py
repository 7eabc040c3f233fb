#! /usr/bin/env python3

import argparse
import logging
import sys

import plainledger.ledger as ledger
from plainledger.parser import ParseError
from plainledger.ledger import SimplifyError
from plainledger.util import read_journal, read_journals, IncludeError

logger = logging.getLogger(__name__)

def check_journal(journal, lines):
    resolved = ledger.simplify(journal, lines)
    n = len(resolved.transactions())
    inferred = sum(1 for t in resolved.transactions()
                   for p in t.postings if p.inferred)
    logger.info(f"{n} transactions balanced, {inferred} amounts inferred.")
    return resolved

def parse_args(argv=None):
    argparser = argparse.ArgumentParser(
        description="Check that every transaction of a journal balances.")
    argparser.add_argument("database", type=str,
                           default="database.ledger",
                           help="database file")
    argparser.add_argument("--follow-includes", action="store_true",
                           default=False,
                           help="Also check included journals")
    argparser.add_argument("--log-file", type=str,
                           default=None,
                           help="Log file")
    return argparser.parse_args(argv)

def main(argv=None):
    args = parse_args(argv)
    if args.log_file:
        logging.basicConfig(filename=args.log_file,
                            filemode="w",
                            format='[%(name)s:%(levelname)s] %(message)s',
                            datefmt='%m/%d/%Y %I:%M:%S %p',
                            level=logging.INFO)

    database = args.database
    try:
        if args.follow_includes:
            journals = read_journals(database)
        else:
            journal, lines = read_journal(database)
            journals = [(database, journal, lines)]
        for database, journal, lines in journals:
            logger.info(f"Checking {database}.")
            check_journal(journal, lines)
    except SimplifyError as e:
        print(f"{database}: {e}", file=sys.stderr)
        return 1
    except (ParseError, IncludeError, OSError) as e:
        print(f"{e}", file=sys.stderr)
        return 1
    return 0

if __name__ == "__main__":
    sys.exit(main())
