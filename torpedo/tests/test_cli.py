"""Tests for CLI module."""

import subprocess
import sys

import pytest

from torpedo.cli import TorpedoREPL, TorpedoCompleter, ScriptRunner, FormBuffer, count_parens


class TestREPLCommands:
    """Tests for REPL command handling."""

    def test_help_command(self):
        """Help command returns help text."""
        repl = TorpedoREPL()
        result = repl.handle_command(":help")
        assert "help" in result.lower()
        assert ">>>" in result

    def test_trace_command(self):
        """Trace command sets tracing."""
        repl = TorpedoREPL()
        assert repl.trace == False

        result = repl.handle_command(":trace on")
        assert repl.trace == True
        assert "enabled" in result.lower()

        result = repl.handle_command(":trace off")
        assert repl.trace == False
        assert "disabled" in result.lower()

    def test_trace_toggle(self):
        """Trace without argument toggles."""
        repl = TorpedoREPL()
        repl.handle_command(":trace")
        assert repl.trace == True
        repl.handle_command(":trace")
        assert repl.trace == False

    def test_reset_command(self):
        """Reset restarts generated names."""
        repl = TorpedoREPL()
        first = repl.process_line("@[first]")
        repl.handle_command(":reset")
        assert repl.process_line("@[first]") == first

    def test_block_command(self):
        """Block rewrites all forms into one do."""
        repl = TorpedoREPL()
        result = repl.handle_command(":block a.b c:d")
        assert result == "(do (comp a b) (partial c d))"

    def test_block_usage(self):
        repl = TorpedoREPL()
        assert "Usage" in repl.handle_command(":block")

    def test_quit_command(self):
        """Quit command stops REPL."""
        repl = TorpedoREPL()
        assert repl.running == True
        repl.handle_command(":quit")
        assert repl.running == False

    def test_unknown_command(self):
        repl = TorpedoREPL()
        assert "Unknown" in repl.handle_command(":frobnicate")


class TestREPLProcessLine:
    """Tests for REPL line processing."""

    def test_empty_line(self):
        """Empty line returns None."""
        repl = TorpedoREPL()
        assert repl.process_line("") is None
        assert repl.process_line("   ") is None

    def test_comment_line(self):
        """Comment line returns None."""
        repl = TorpedoREPL()
        assert repl.process_line("; a comment") is None

    def test_rewrite(self):
        """Forms are rewritten and printed."""
        repl = TorpedoREPL()
        assert repl.process_line("first.rest") == "(comp first rest)"

    def test_several_forms(self):
        """Each form is printed on its own line."""
        repl = TorpedoREPL()
        assert repl.process_line("a.b c:d") == "(comp a b)\n(partial c d)"

    def test_trace_output(self):
        """With tracing the rule chain follows the result."""
        repl = TorpedoREPL()
        repl.trace = True
        assert repl.process_line("(f a.b)") == "(f (comp a b))\nsymbol"

    def test_error(self):
        """Errors are reported, not raised."""
        repl = TorpedoREPL()
        assert repl.process_line("a.").startswith("Error:")
        assert repl.process_line("(f").startswith("Error:")


class TestScriptRunner:
    """Tests for non-interactive modes."""

    def test_run_expression(self, capsys):
        """Expression mode prints the rewritten form."""
        runner = ScriptRunner()
        assert runner.run_expression("reduce:+") == 0
        assert capsys.readouterr().out.strip() == "(partial reduce +)"

    def test_run_expression_error(self, capsys):
        runner = ScriptRunner()
        assert runner.run_expression("(def x)") == 1
        assert "Error" in capsys.readouterr().err

    def test_run_script(self, tmp_path, capsys):
        """A script is rewritten as one block, forms may span lines."""
        script = tmp_path / "program.clj"
        script.write_text(
            "#!/usr/bin/env torpedo\n"
            "; helpers\n"
            "(def (sq x)\n"
            "  (* x x))\n"
            "(map:sq xs)\n"
        )
        runner = ScriptRunner()
        assert runner.run_script(script) == 0
        out = capsys.readouterr().out.splitlines()
        assert out == ["(def sq (fn sq [x] (* x x)))", "((partial map sq) xs)"]

    def test_run_script_quiet(self, tmp_path, capsys):
        script = tmp_path / "program.clj"
        script.write_text("a.b\n")
        assert ScriptRunner().run_script(script, quiet=True) == 0
        assert capsys.readouterr().out == ""

    def test_run_script_missing(self, tmp_path, capsys):
        assert ScriptRunner().run_script(tmp_path / "missing.clj") == 1
        assert "Error reading" in capsys.readouterr().err

    def test_run_script_error(self, tmp_path, capsys):
        script = tmp_path / "bad.clj"
        script.write_text("(f [x)\n")
        assert ScriptRunner().run_script(script) == 1


class TestCLIIntegration:
    """Integration tests using subprocess."""

    def test_help_flag(self):
        """--help flag works."""
        result = subprocess.run(
            [sys.executable, "-m", "torpedo.cli", "--help"],
            capture_output=True, text=True
        )
        assert result.returncode == 0
        assert "TORPEDO" in result.stdout

    def test_version_flag(self):
        """--version flag works."""
        result = subprocess.run(
            [sys.executable, "-m", "torpedo.cli", "--version"],
            capture_output=True, text=True
        )
        assert result.returncode == 0
        assert "0.1.0" in result.stdout

    def test_expression_mode(self):
        """Expression mode rewrites the given forms."""
        result = subprocess.run(
            [sys.executable, "-m", "torpedo.cli", "-e", "(>>> (f 5) (f x) (+ x 1))"],
            capture_output=True, text=True
        )
        assert result.returncode == 0
        assert "(let [f (fn f [x] (+ x 1))] (f 5))" in result.stdout

    def test_expression_with_trace(self):
        result = subprocess.run(
            [sys.executable, "-m", "torpedo.cli", "-t", "-e", "first.rest"],
            capture_output=True, text=True
        )
        assert result.returncode == 0
        assert result.stdout.splitlines() == ["(comp first rest)", "symbol"]

    def test_expression_error_exit_code(self):
        result = subprocess.run(
            [sys.executable, "-m", "torpedo.cli", "-e", "f."],
            capture_output=True, text=True
        )
        assert result.returncode == 1
        assert "Error" in result.stderr

    def test_pipe_mode(self):
        """Pipe mode rewrites forms from stdin, including multi-line ones."""
        result = subprocess.run(
            [sys.executable, "-m", "torpedo.cli"],
            input="first.rest\n(>>> (f 5)\n     (f x) (+ x 1))\n",
            capture_output=True, text=True
        )
        assert result.returncode == 0
        assert result.stdout.splitlines() == [
            "(comp first rest)",
            "(let [f (fn f [x] (+ x 1))] (f 5))",
        ]

    def test_verbose_logging(self):
        result = subprocess.run(
            [sys.executable, "-m", "torpedo.cli", "-v", "-e", "a.b"],
            capture_output=True, text=True
        )
        assert result.returncode == 0
        assert "torpedo" in result.stderr


class TestMultiLineInput:
    """Tests for bracket counting."""

    def test_count_parens_balanced(self):
        assert count_parens("(f [x] {a b} #{c})") == 0

    def test_count_parens_unbalanced_open(self):
        assert count_parens("(>>> (f 5)") == 1
        assert count_parens("[1 {") == 2

    def test_count_parens_unbalanced_close(self):
        assert count_parens("x)]") == -2

    def test_count_parens_ignores_strings(self):
        assert count_parens('(f "(")') == 0
        assert count_parens('(f "\\"(")') == 0

    def test_count_parens_ignores_comments(self):
        assert count_parens("(f x) ; (unclosed") == 0

    def test_form_buffer_waits_for_close(self):
        buffer = FormBuffer()
        assert buffer.feed("(>>> (f 5)") is None
        assert buffer.pending
        assert buffer.feed("  (f x) (+ x 1))") == "(>>> (f 5)\n  (f x) (+ x 1))"
        assert not buffer.pending

    def test_form_buffer_extra_close_completes(self):
        """Too many closing brackets hand the text on for the reader to reject."""
        buffer = FormBuffer()
        assert buffer.feed("x)") == "x)"
        assert TorpedoREPL().process_line("x)").startswith("Error:")


class TestTabCompletion:
    """Tests for tab completion."""

    def test_completer_commands(self):
        completer = TorpedoCompleter(TorpedoREPL())
        matches = completer._get_matches(":", ":")
        assert ":help" in matches
        assert ":block" in matches

    def test_completer_partial_command(self):
        completer = TorpedoCompleter(TorpedoREPL())
        assert completer._get_matches(":tr", ":tr") == [":trace"]

    def test_completer_trace_options(self):
        completer = TorpedoCompleter(TorpedoREPL())
        assert completer._get_matches("o", ":trace o") == ["on", "off"]

    def test_completer_markers(self):
        """Marker names complete after an opening bracket."""
        completer = TorpedoCompleter(TorpedoREPL())
        assert completer._get_matches("(>>", "(>>") == ["(>>>", "(>>>>"]
        assert completer._get_matches("de", "(de") == ["def"]
