import re
import unittest

import stylescan


class DigitParityPass(stylescan.ScanPass):
    state = stylescan.ScanState.INDENT_PASS
    title = "digit parity"

    DIGIT = re.compile(r"\d")

    def build_rules(self):
        return [
            stylescan.ScanRule("ODD", self.DIGIT, self._report("ODD"), lambda m: int(m.group()) % 2 == 1),
            stylescan.ScanRule("EVEN", self.DIGIT, self._report("EVEN")),
        ]

    def _report(self, rule_id: str):
        def report(match):
            return self.diagnostic(rule_id, rule_id.lower(), self.line_of(match))
        return report


class PassEngineTests(unittest.TestCase):
    def test_empty_input_runs_every_pass(self) -> None:
        messages = []
        engine = stylescan.PassEngine(stylescan.SourceBuffer(""), progress=messages.append)
        self.assertIs(engine.next(), stylescan.END_OF_INPUT)
        self.assertIs(engine.next(), stylescan.END_OF_INPUT)
        self.assertEqual(len(messages), 7)
        self.assertTrue(messages[0].startswith("Starting pass 1 of 6"))
        self.assertEqual(messages[-1], "Analysis passes complete.")
        self.assertEqual(engine.state, stylescan.ScanState.CONTROL_FLOW_PASS)

    def test_first_matching_rule_wins_and_predicates_fall_through(self) -> None:
        found = stylescan.scan_text("12\n3", passes=[DigitParityPass])
        self.assertEqual([(d.rule_id, d.line) for d in found], [("ODD", 1), ("EVEN", 1), ("ODD", 2)])

    def test_closed_buffer_cannot_be_rewound(self) -> None:
        buffer = stylescan.SourceBuffer("x\n")
        buffer.close()
        engine = stylescan.PassEngine(
            buffer,
            progress=lambda message: None,
            passes=[stylescan.LineLengthPass, stylescan.LineLengthPass],
        )
        with self.assertRaises(stylescan.SourceBufferError):
            list(engine)

    def test_disabled_rules_are_filtered(self) -> None:
        config = stylescan.StyleConfig(disabled_rules=["NAMING-LOOP-INDEX"])
        self.assertEqual(stylescan.scan_text("int i = 5;\n", config, passes=[stylescan.NamingPass]), [])

    def test_passes_report_in_pass_order(self) -> None:
        found = stylescan.scan_text("int i = 42;\n")
        self.assertEqual([d.rule_id for d in found], ["MAGIC-NUMBER", "NAMING-LOOP-INDEX"])


class SourceBufferTests(unittest.TestCase):
    def test_line_and_column_lookup(self) -> None:
        buffer = stylescan.SourceBuffer("ab\ncd\n\nef")
        self.assertEqual(buffer.line_count, 4)
        self.assertEqual(buffer.line_of(0), 1)
        self.assertEqual(buffer.line_of(4), 2)
        self.assertEqual(buffer.column_of(4), 1)
        self.assertEqual(buffer.line_text(4), "ef")
        self.assertEqual(buffer.line_text(9), "")
        self.assertEqual(buffer.previous_nonblank_line(4), 2)
        self.assertIsNone(buffer.previous_nonblank_line(1))

    def test_line_endings_are_normalized(self) -> None:
        buffer = stylescan.SourceBuffer("a\r\nb\rc")
        self.assertEqual(buffer.text, "a\nb\nc")
        self.assertEqual(buffer.line_count, 3)

    def test_seek_is_clamped(self) -> None:
        buffer = stylescan.SourceBuffer("abc")
        buffer.seek(10)
        self.assertTrue(buffer.at_end())
        buffer.rewind()
        self.assertEqual(buffer.pos, 0)


class DiagnosticTests(unittest.TestCase):
    def test_str_and_certainty(self) -> None:
        d = stylescan.Diagnostic("Missing final return statement", 7, stylescan.Certainty.SURE)
        self.assertEqual(str(d), "[line 7] Missing final return statement")
        self.assertTrue(d.sure)

    def test_sort_keeps_discovery_order_for_ties(self) -> None:
        first = stylescan.Diagnostic("b", 3, stylescan.Certainty.SURE)
        second = stylescan.Diagnostic("a", 3, stylescan.Certainty.UNSURE)
        early = stylescan.Diagnostic("c", 1, stylescan.Certainty.SURE)
        self.assertEqual(stylescan.sort_diagnostics([first, second, early]), [early, first, second])


if __name__ == "__main__":
    unittest.main()
