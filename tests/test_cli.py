import unittest
import contextlib
import io
import os
import tempfile

import plainledger.verify as verify
import plainledger.rewrite as rewrite

JOURNAL = (
    "2020/01/01 * Shop  ; receipt\n"
    "    Expenses:Food    $5.00\n"
    "    Assets:Cash\n"
)

class TestCli(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = self._tmp.name

    def tearDown(self):
        self._tmp.cleanup()

    def write(self, name, text):
        path = os.path.join(self.root, name)
        with open(path, "w") as f:
            f.write(text)
        return path

    def run_main(self, main, argv):
        out = io.StringIO()
        err = io.StringIO()
        with contextlib.redirect_stdout(out), contextlib.redirect_stderr(err):
            status = main(argv)
        return (status, out.getvalue(), err.getvalue())

    def test_verify(self):
        path = self.write("main.ledger", JOURNAL)
        self.assertEqual(self.run_main(verify.main, [path]), (0, "", ""))

    def test_verify_unbalanced(self):
        path = self.write("main.ledger",
                          "2020-01-01 Shop\n"
                          "  Expenses:Food  $5.00\n"
                          "  Assets:Cash  $-4.00\n")
        status, out, err = self.run_main(verify.main, [path])
        self.assertEqual(status, 1)
        self.assertIn("unbalanced", err)
        self.assertIn("line: 1, column: 0", err)

    def test_verify_parse_error(self):
        path = self.write("main.ledger", " 2020-01-01 Shop\n")
        status, out, err = self.run_main(verify.main, [path])
        self.assertEqual(status, 1)
        self.assertIn("expected indentation", err)

    def test_verify_follow_includes(self):
        self.write("bad.ledger",
                   "2020-01-01 Shop\n"
                   "  A\n"
                   "  B\n")
        path = self.write("main.ledger", JOURNAL + "include bad.ledger\n")
        self.assertEqual(self.run_main(verify.main, [path])[0], 0)
        status, out, err = self.run_main(verify.main,
                                         [path, "--follow-includes"])
        self.assertEqual(status, 1)
        self.assertIn("bad.ledger", err)
        path = self.write("main.ledger", "include missing.ledger\n")
        status, out, err = self.run_main(verify.main,
                                         [path, "--follow-includes"])
        self.assertEqual(status, 1)
        self.assertIn("missing.ledger", err)

    def test_verify_missing_file(self):
        path = os.path.join(self.root, "missing.ledger")
        status, out, err = self.run_main(verify.main, [path])
        self.assertEqual(status, 1)

    def test_rewrite(self):
        path = self.write("main.ledger", JOURNAL)
        status, out, err = self.run_main(rewrite.main, [path])
        self.assertEqual(status, 0)
        self.assertEqual(out,
                         "2020-01-01 * Shop\n"
                         "  ; receipt\n"
                         "  Expenses:Food  $5.00\n"
                         "  Assets:Cash\n")

    def test_rewrite_settings(self):
        path = self.write("main.ledger", JOURNAL)
        status, out, err = self.run_main(
            rewrite.main, [path, "--resolved", "--tabs", "--crlf"])
        self.assertEqual(status, 0)
        self.assertEqual(out,
                         "2020-01-01 * Shop\r\n"
                         "\t; receipt\r\n"
                         "\tExpenses:Food  $5.00\r\n"
                         "\tAssets:Cash  -$5.00\r\n")
        status, out, err = self.run_main(rewrite.main,
                                         [path, "--indent", "4"])
        self.assertEqual(out.splitlines()[2], "    Expenses:Food  $5.00")

    def test_rewrite_follow_includes(self):
        self.write("prices.ledger", "P 2020/01/01 EUR $1.10\n")
        path = self.write("main.ledger", "include prices.ledger\n" + JOURNAL)
        status, out, err = self.run_main(rewrite.main,
                                         [path, "--follow-includes"])
        self.assertEqual(status, 0)
        self.assertEqual(out.splitlines()[0], "P 2020-01-01 EUR $1.10")
        self.assertEqual(len(out.splitlines()), 5)

    def test_rewrite_resolved_error(self):
        path = self.write("main.ledger",
                          "2020-01-01 Shop\n"
                          "  A\n"
                          "  B\n")
        status, out, err = self.run_main(rewrite.main, [path, "--resolved"])
        self.assertEqual(status, 1)
        self.assertEqual(out, "")
        self.assertIn("More than one posting without amount", err)
