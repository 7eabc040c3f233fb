#! /usr/bin/env python3

import argparse
import logging
import sys

import plainledger.ledger as ledger
from plainledger.parser import ParseError
from plainledger.ledger import SimplifyError
from plainledger.printing import SerializerSettings, to_string_with
from plainledger.util import read_journal, flatten_journal, IncludeError

logger = logging.getLogger(__name__)

def settings_from_args(args) -> SerializerSettings:
    indent = "\t" if args.tabs else " " * args.indent
    line_ending = "\r\n" if args.crlf else "\n"
    return SerializerSettings(indent, line_ending)

def parse_args(argv=None):
    argparser = argparse.ArgumentParser(
        description="Print a journal in canonical form.")
    argparser.add_argument("database", type=str,
                           default="database.ledger",
                           help="database file")
    argparser.add_argument("--indent", type=int,
                           default=2,
                           help="Spaces before postings and their comments")
    argparser.add_argument("--tabs", action="store_true",
                           default=False,
                           help="Indent with a tab")
    argparser.add_argument("--crlf", action="store_true",
                           default=False,
                           help="End lines with CRLF")
    argparser.add_argument("--resolved", action="store_true",
                           default=False,
                           help="Write inferred amounts, drop assertions")
    argparser.add_argument("--follow-includes", action="store_true",
                           default=False,
                           help="Inline included journals")
    argparser.add_argument("--log-file", type=str,
                           default=None,
                           help="Log file")
    args = argparser.parse_args(argv)
    if args.indent < 2 and not args.tabs:
        argparser.error("--indent must be at least 2")
    return args

def main(argv=None):
    args = parse_args(argv)
    if args.log_file:
        logging.basicConfig(filename=args.log_file,
                            filemode="w",
                            format='[%(name)s:%(levelname)s] %(message)s',
                            datefmt='%m/%d/%Y %I:%M:%S %p',
                            level=logging.INFO)

    settings = settings_from_args(args)
    try:
        if args.follow_includes:
            journal, _ = flatten_journal(args.database)
            # Spans of inlined items point into other journals.
            lines = None
        else:
            journal, lines = read_journal(args.database)
        if args.resolved:
            journal = ledger.simplify(journal, lines)
    except SimplifyError as e:
        print(f"{args.database}: {e}", file=sys.stderr)
        return 1
    except (ParseError, IncludeError, OSError) as e:
        print(f"{e}", file=sys.stderr)
        return 1
    logger.info(f"Writing {len(journal.items)} items.")
    sys.stdout.write(to_string_with(journal, settings))
    return 0

if __name__ == "__main__":
    sys.exit(main())
