import io
import json
import os
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from unittest import mock

import stylescan


def write_temp(directory: str, name: str, text: str) -> str:
    path = os.path.join(directory, name)
    with open(path, "w", encoding="utf-8") as handle:
        handle.write(text)
    return path


def run_main(argv):
    out = io.StringIO()
    err = io.StringIO()
    with redirect_stdout(out), redirect_stderr(err):
        code = stylescan.main(argv)
    return code, out.getvalue(), err.getvalue()


class ConfigLoadingTests(unittest.TestCase):
    def test_yaml_overrides(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = write_temp(
                tmp,
                "style.yaml",
                "indent_width: 4\n"
                "line_limit: 100\n"
                "allowed_literals: [0, 1, 2]\n"
                "disabled_rules: MAGIC-NUMBER\n"
                "color: false\n",
            )
            config = stylescan.load_config_from_yaml(path)
        self.assertEqual(config.indent_width, 4)
        self.assertEqual(config.line_limit, 100)
        self.assertEqual(config.brace_length_limit, 12)
        self.assertEqual(config.allowed_literals, ["0", "1", "2"])
        self.assertEqual(config.disabled_rules, ["MAGIC-NUMBER"])
        self.assertFalse(config.color)

    def test_bad_values_fall_back_with_notice(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = write_temp(tmp, "style.yaml", "line_limit: wide\nindent_width: 0\nmystery: 1\n")
            err = io.StringIO()
            with redirect_stderr(err):
                config = stylescan.load_config_from_yaml(path)
        self.assertEqual(config, stylescan.StyleConfig())
        self.assertIn("'line_limit'", err.getvalue())
        self.assertIn("must be positive", err.getvalue())
        self.assertIn("unknown config key 'mystery'", err.getvalue())

    def test_missing_and_non_mapping_files(self) -> None:
        err = io.StringIO()
        with redirect_stderr(err):
            config = stylescan.load_config_from_yaml("/nonexistent/style.yaml")
        self.assertEqual(config, stylescan.StyleConfig())
        self.assertIn("Config file not found", err.getvalue())

        with tempfile.TemporaryDirectory() as tmp:
            path = write_temp(tmp, "style.yaml", "- 1\n- 2\n")
            err = io.StringIO()
            with redirect_stderr(err):
                config = stylescan.load_config_from_yaml(path)
        self.assertEqual(config, stylescan.StyleConfig())
        self.assertIn("expected a mapping", err.getvalue())

    def test_environment_variable_is_consulted(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = write_temp(tmp, "style.yaml", "line_limit: 80\n")
            with mock.patch.dict(os.environ, {"STYLESCAN_CONFIG": path}):
                self.assertEqual(stylescan.resolve_config().line_limit, 80)
        with mock.patch.dict(os.environ, {}, clear=True):
            self.assertEqual(stylescan.resolve_config(), stylescan.StyleConfig())


class ReportFormattingTests(unittest.TestCase):
    def setUp(self) -> None:
        self.error = stylescan.Diagnostic("Indent contains tab(s).", 4, stylescan.Certainty.SURE, "INDENT-TAB")
        self.warning = stylescan.Diagnostic("Potential magic number 7", 2, stylescan.Certainty.UNSURE, "MAGIC-NUMBER")

    def test_colors(self) -> None:
        self.assertEqual(
            stylescan.render_diagnostic(self.error),
            "\033[31m[line 4] Indent contains tab(s).\033[0m",
        )
        self.assertEqual(
            stylescan.render_diagnostic(self.warning),
            "\033[33m[line 2] Potential magic number 7\033[0m",
        )
        self.assertEqual(stylescan.render_diagnostic(self.warning, color=False), "[line 2] Potential magic number 7")

    def test_summary_counts_and_order(self) -> None:
        report = stylescan.format_report([self.error, self.warning], color=False)
        self.assertEqual(
            report.splitlines(),
            [
                "Analysis Complete:",
                "1 Errors,",
                "1 Warnings",
                "=" * 30,
                "[line 2] Potential magic number 7",
                "[line 4] Indent contains tab(s).",
            ],
        )

    def test_json_object(self) -> None:
        obj = stylescan.diagnostic_to_json_obj(self.warning)
        self.assertEqual(obj["rule_id"], "MAGIC-NUMBER")
        self.assertEqual(obj["certainty"], "unsure")
        self.assertEqual(obj["line"], 2)
        self.assertEqual(obj["tool"], "stylescan")


class MainTests(unittest.TestCase):
    def test_wrong_argument_count_prints_usage(self) -> None:
        for argv in ([], ["a.c", "b.c"]):
            with self.subTest(argv=argv):
                code, out, _ = run_main(argv)
                self.assertEqual(code, 0)
                self.assertIn("usage:", out)

    def test_missing_file(self) -> None:
        code, out, _ = run_main(["/nonexistent/Missing.java"])
        self.assertEqual(code, 1)
        self.assertIn("Could not open /nonexistent/Missing.java.", out)

    def test_rewind_failure_aborts_without_report(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = write_temp(tmp, "sample.c", "int i = 42;\n")
            failure = stylescan.SourceBufferError("buffer closed")
            with mock.patch.object(stylescan.SourceBuffer, "rewind", side_effect=failure):
                code, out, _ = run_main([path, "--no-color", "--quiet"])
        self.assertEqual(code, 1)
        self.assertIn(f"Could not rewind {path}: buffer closed", out)
        self.assertNotIn("Analysis Complete:", out)

    def test_report_for_small_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = write_temp(tmp, "sample.c", "int i = 42;\n")
            with mock.patch.dict(os.environ, {}, clear=True):
                code, out, err = run_main([path, "--no-color", "--quiet"])
        self.assertEqual(code, 0)
        self.assertEqual(err, "")
        self.assertEqual(
            out.splitlines(),
            [
                "Analysis Complete:",
                "0 Errors,",
                "2 Warnings",
                "=" * 30,
                "[line 1] Potential magic number 42",
                "[line 1] Variable name i should only be used as a for loop index",
            ],
        )

    def test_progress_goes_to_stderr(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = write_temp(tmp, "sample.c", "int count = 0;\n")
            with mock.patch.dict(os.environ, {}, clear=True):
                code, out, err = run_main([path, "--no-color"])
        self.assertEqual(code, 0)
        self.assertIn("[stylescan] Starting pass 1 of 6", err)
        self.assertIn("[stylescan] Analysis passes complete.", err)
        self.assertIn("0 Errors,", out)

    def test_json_output_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = write_temp(tmp, "sample.c", "int i = 42;\n")
            out_path = os.path.join(tmp, "report.json")
            with mock.patch.dict(os.environ, {}, clear=True):
                code, _, _ = run_main([path, "--json", out_path, "--quiet"])
            with open(out_path, "r", encoding="utf-8") as handle:
                data = json.load(handle)
        self.assertEqual(code, 0)
        self.assertEqual([d["rule_id"] for d in data], ["MAGIC-NUMBER", "NAMING-LOOP-INDEX"])


if __name__ == "__main__":
    unittest.main()
