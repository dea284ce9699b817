from __future__ import annotations

import unittest
from types import ModuleType
from unittest.mock import patch


class TestNodriverLoader(unittest.TestCase):
    def test_returns_imported_module(self) -> None:
        from form_pdf_capture.scrape._nodriver import load_nodriver

        fake = ModuleType("nodriver")
        with patch.dict("sys.modules", {"nodriver": fake}):
            self.assertIs(load_nodriver(), fake)

    def test_missing_dependency_is_actionable(self) -> None:
        from form_pdf_capture.scrape._nodriver import load_nodriver

        with patch.dict("sys.modules", {"nodriver": None}):
            with self.assertRaises(RuntimeError) as ctx:
                load_nodriver()
        self.assertIn("pip install nodriver", str(ctx.exception))

    def test_encoding_cookie_helpers(self) -> None:
        from form_pdf_capture.scrape._nodriver import _has_encoding_cookie, _inject_encoding_cookie

        lines = [b"#!/usr/bin/env python\n", b"import x\n"]
        patched = _inject_encoding_cookie(lines)
        self.assertEqual(patched[0], b"#!/usr/bin/env python\n")
        self.assertEqual(patched[1], b"# coding: latin-1\n")
        self.assertTrue(_has_encoding_cookie(patched))
        self.assertFalse(_has_encoding_cookie(lines))
        self.assertEqual(_inject_encoding_cookie([b"a\r\n"])[0], b"# coding: latin-1\r\n")

    def test_only_non_utf8_syntax_errors_are_patched(self) -> None:
        from form_pdf_capture.scrape._nodriver import _is_non_utf8_syntax_error

        self.assertTrue(_is_non_utf8_syntax_error(SyntaxError("Non-UTF-8 code starting with '\\xe9'")))
        self.assertFalse(_is_non_utf8_syntax_error(SyntaxError("invalid syntax")))


if __name__ == "__main__":
    unittest.main()
