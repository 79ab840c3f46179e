"""
Command line interface tests.
"""

import io
import json
import os
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout

from echokey.cli import main


def run(*argv):
    out, err = io.StringIO(), io.StringIO()
    with redirect_stdout(out), redirect_stderr(err):
        code = main(list(argv))
    return code, out.getvalue(), err.getvalue()


class TestCLI(unittest.TestCase):

    def test_derive(self):
        code, out, _ = run("derive", "--tx", "TX123", "--timestamp", "2025-01-01T00:00:00.000Z", "--secret", "SECRET")
        self.assertEqual(code, 0)
        self.assertEqual(out.strip(), "BED41B2021A8DA6A")

    def test_window(self):
        code, out, _ = run("window", "--network", "btc")
        self.assertEqual(code, 0)
        self.assertIn("BTC (Bitcoin): 2400s", out)

    def test_validate_approved(self):
        code, out, err = run(
            "validate", "--tx", "TX123", "--code", "bed41b2021a8da6a",
            "--issued-at", "2025-01-01T00:00:00.000Z", "--now", "2025-01-01T00:00:30.000Z",
            "--secret", "SECRET",
        )
        self.assertEqual(code, 0)
        self.assertTrue(json.loads(out)["approved"])
        self.assertIn("APPROVED", err)

    def test_validate_expired(self):
        code, out, err = run(
            "validate", "--tx", "TX123", "--code", "BED41B2021A8DA6A",
            "--issued-at", "2025-01-01T00:00:00.000Z", "--now", "2025-01-01T00:02:00.000Z",
            "--secret", "SECRET",
        )
        self.assertEqual(code, 1)
        self.assertEqual(json.loads(out)["code"], "EXPIRED")

    def test_missing_secret(self):
        env = dict(os.environ)
        os.environ.pop("ECHOKEY_SECRET", None)
        try:
            with self.assertRaises(SystemExit) as ctx:
                run("derive", "--tx", "TX123", "--timestamp", "2025-01-01T00:00:00.000Z")
            self.assertEqual(ctx.exception.code, 2)
        finally:
            os.environ.clear()
            os.environ.update(env)

    def test_keygen(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "audit_key.json")
            code, out, _ = run("keygen", "--output", path, "--key-id", "test-kid")
            self.assertEqual(code, 0)
            self.assertTrue(os.path.exists(path))
            self.assertEqual(json.loads(out)["kid"], "test-kid")

    def test_no_command(self):
        code, _, _ = run()
        self.assertEqual(code, 2)


if __name__ == "__main__":
    unittest.main()
