#!/usr/bin/env python3
"""
TORPEDO Command-Line Interface

Provides interactive REPL, script execution, and pipe/filter modes.

Usage:
    torpedo                              # Start REPL
    torpedo program.clj                  # Rewrite every form in a file
    torpedo -e "(>>> (f 5) (f x) (+ x 1))"   # Rewrite forms given inline
    echo "@[first last]" | torpedo       # Filter mode

Script files are read whole and rewritten as one block, so forms may span
lines. Each rewritten form is printed on its own line.

REPL Commands:
    :help              Show help
    :trace on|off      Toggle tracing
    :reset             Restart generated name numbering
    :block FORMS...    Rewrite forms as one block, (do ...)
    :quit              Exit
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from . import __version__
from .engine import RewriteEngine, RewriteTrace, format_form, parse_forms
from .forms import ReadError, RewriteError

# Try to import readline for better REPL experience
try:
    import readline
    HAS_READLINE = True
except ImportError:
    HAS_READLINE = False

logger = logging.getLogger(__name__)

OPENERS = "([{"
CLOSERS = ")]}"


class TorpedoCompleter:
    """Tab completer for TORPEDO REPL."""

    # Commands that can be completed
    COMMANDS = [
        ":help", ":quit", ":exit", ":q",
        ":trace", ":reset", ":block",
    ]

    TRACE_OPTIONS = ["on", "off"]

    # Markers and vocabulary worth completing inside forms
    WORDS = [">>>", ">>>>", "def", "torpedo/lift"]

    def __init__(self, repl: 'TorpedoREPL'):
        self.repl = repl
        self.matches: List[str] = []

    def complete(self, text: str, state: int) -> Optional[str]:
        """Return the next possible completion for 'text'."""
        if state == 0:
            # Build completion list on first call
            line = readline.get_line_buffer() if HAS_READLINE else ""
            self.matches = self._get_matches(text, line)

        try:
            return self.matches[state]
        except IndexError:
            return None

    def _get_matches(self, text: str, line: str) -> List[str]:
        """Get list of matches for the current input."""
        line = line.lstrip()

        # After :trace, complete on/off
        if line.startswith(":trace "):
            return [t for t in self.TRACE_OPTIONS if t.startswith(text)]

        # Command completion
        if text.startswith(":") or (line.startswith(":") and " " not in line):
            return [c for c in self.COMMANDS if c.startswith(text)]

        # Inside a form, the opening bracket is part of the word
        stripped = text.lstrip(OPENERS)
        prefix = text[:len(text) - len(stripped)]
        if stripped:
            return [prefix + w for w in self.WORDS if w.startswith(stripped)]

        return []


def count_parens(text: str) -> int:
    """
    Count unbalanced brackets of any kind. Returns >0 if more open than close.

    Strings and ; comments are skipped.
    """
    depth = 0
    in_string = False
    in_comment = False
    escape = False

    for c in text:
        if in_comment:
            if c == '\n':
                in_comment = False
            continue
        if escape:
            escape = False
            continue
        if c == '\\':
            escape = True
            continue
        if c == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if c == ';':
            in_comment = True
        elif c in OPENERS:
            depth += 1
        elif c in CLOSERS:
            depth -= 1

    return depth


class FormBuffer:
    """
    Collects input lines until their brackets balance.

        buffer = FormBuffer()
        buffer.feed("(>>> (f 5)")    # => None, still open
        buffer.feed("  (f x) x)")    # => "(>>> (f 5)\n  (f x) x)"

    Closing brackets past zero also complete the text; the reader reports
    them.
    """

    def __init__(self):
        self.lines: List[str] = []

    @property
    def pending(self) -> bool:
        return bool(self.lines)

    def feed(self, line: str) -> Optional[str]:
        self.lines.append(line.rstrip("\n"))
        text = "\n".join(self.lines)
        if count_parens(text) > 0:
            return None
        self.lines = []
        return text

    def clear(self) -> None:
        self.lines = []


def format_results(forms: List, trace: Optional[RewriteTrace] = None) -> str:
    """Print rewritten forms one per line, followed by the rule chain if traced."""
    output = "\n".join(format_form(f) for f in forms)
    if trace is not None and trace.steps:
        return f"{output}\n{trace.format('rules')}"
    return output


class TorpedoREPL:
    """Interactive REPL for torpedo."""

    def __init__(self):
        self.engine = RewriteEngine()
        self.trace = False
        self.running = True

        # Set up readline history and completion
        if HAS_READLINE:
            self.history_file = Path.home() / ".torpedo_history"
            try:
                readline.read_history_file(self.history_file)
            except OSError:
                pass
            readline.set_history_length(1000)

            # Set up tab completion
            self.completer = TorpedoCompleter(self)
            readline.set_completer(self.completer.complete)
            readline.parse_and_bind("tab: complete")

            # Configure completion delimiters (don't break on colons for commands)
            readline.set_completer_delims(" \t\n")

    def save_history(self):
        """Save readline history."""
        if HAS_READLINE:
            try:
                readline.write_history_file(self.history_file)
            except OSError as e:
                logger.debug("could not save history: %s", e)

    def handle_command(self, line: str) -> Optional[str]:
        """
        Handle a REPL command (starts with :).

        Returns a message to print, or None.
        """
        parts = line[1:].split(None, 1)
        if not parts:
            return "Unknown command. Type :help for help."

        cmd = parts[0].lower()
        arg = parts[1] if len(parts) > 1 else ""

        if cmd == "help":
            return self.help_text()

        elif cmd == "quit" or cmd == "exit" or cmd == "q":
            self.running = False
            return None

        elif cmd == "trace":
            if arg.lower() in ("on", "true", "1"):
                self.trace = True
                return "Tracing enabled"
            elif arg.lower() in ("off", "false", "0"):
                self.trace = False
                return "Tracing disabled"
            else:
                self.trace = not self.trace
                return f"Tracing {'enabled' if self.trace else 'disabled'}"

        elif cmd == "reset":
            self.engine.reset()
            return "Generated names reset"

        elif cmd == "block":
            if not arg:
                return "Usage: :block FORMS..."
            try:
                forms = parse_forms(arg)
                if self.trace:
                    block, trace = self.engine.expand_block(*forms, trace=True)
                    return format_results([block], trace)
                return format_form(self.engine.expand_block(*forms, trace=False))
            except (ReadError, RewriteError) as e:
                return f"Error: {e}"

        else:
            return f"Unknown command: {cmd}. Type :help for help."

    def help_text(self) -> str:
        """Return help text."""
        return """TORPEDO REPL Commands:
  :help              Show this help
  :trace on|off      Toggle tracing
  :reset             Restart generated name numbering
  :block FORMS...    Rewrite forms as one block, (do ...)
  :quit              Exit

Syntax:
  first.rest                        Composition, (comp first rest)
  reduce:+                          Partial application, (partial reduce +)
  inc..reduce:+                     Loose composition
  map:.+:'1                         Loose partial application
  2  -1                             Argument selectors
  @[first last]                     Lifting, (fn [& args] [...])
  (>>> expr lhs rhs ...)            Expression with bindings after it
  (def (f x) body)                  Function definition
"""

    def rewrite_text(self, text: str) -> Optional[str]:
        """
        Rewrite every form in a piece of text.

        Returns the formatted result, or None for blank input.
        Raises ReadError or RewriteError.
        """
        if self.trace:
            forms, trace = self.engine.expand_source(text, trace=True)
        else:
            forms, trace = self.engine.expand_source(text, trace=False), None
        if not forms:
            return None
        return format_results(forms, trace)

    def process_line(self, line: str) -> Optional[str]:
        """
        Process a single line of input.

        Returns the result to print, or None.
        """
        line = line.strip()

        # Empty line or comment
        if not line or line.startswith(";"):
            return None

        # Command
        if line.startswith(":"):
            return self.handle_command(line)

        # Forms to rewrite
        try:
            return self.rewrite_text(line)
        except (ReadError, RewriteError) as e:
            return f"Error: {e}"

    def run(self):
        """Run the REPL loop."""
        print(f"TORPEDO {__version__} - bind names after you use them")
        print("Type :help for help, :quit to exit")
        print("Forms with unclosed brackets continue on the next line")
        print()

        buffer = FormBuffer()
        while self.running:
            try:
                line = input("....... " if buffer.pending else "torpedo> ")
            except EOFError:
                print()
                break
            except KeyboardInterrupt:
                print("\nInput cancelled" if buffer.pending else "")
                buffer.clear()
                continue

            text = buffer.feed(line)
            if text is None:
                continue
            result = self.process_line(text)
            if result:
                print(result)

        self.save_history()


class ScriptRunner:
    """Runs torpedo scripts, inline text and piped input."""

    def __init__(self):
        self.repl = TorpedoREPL()

    def _emit(self, text: str, where: str) -> int:
        try:
            result = self.repl.rewrite_text(text)
        except (ReadError, RewriteError) as e:
            print(f"{where}: Error: {e}", file=sys.stderr)
            return 1
        if result:
            print(result)
        return 0

    def run_script(self, path: Path, quiet: bool = False) -> int:
        """
        Run a script file.

        Every form in the file is rewritten as one block, so generated names
        are numbered across the whole file.

        Args:
            path: Path to the script
            quiet: If True, don't print rewritten forms

        Returns:
            Exit code (0 for success)
        """
        try:
            text = path.read_text()
        except OSError as e:
            print(f"Error reading {path}: {e}", file=sys.stderr)
            return 1

        # Skip shebang
        if text.startswith("#!"):
            text = text.split("\n", 1)[1] if "\n" in text else ""

        try:
            result = self.repl.rewrite_text(text)
        except (ReadError, RewriteError) as e:
            print(f"{path}: Error: {e}", file=sys.stderr)
            return 1

        if result and not quiet:
            print(result)
        return 0

    def run_expression(self, expr_str: str) -> int:
        """
        Rewrite the forms given on the command line.

        Returns:
            Exit code (0 for success)
        """
        return self._emit(expr_str, "<expr>")

    def run_stdin(self) -> int:
        """
        Read forms from stdin and rewrite them as they complete.

        Returns:
            Exit code (0 for success)
        """
        buffer = FormBuffer()
        for lineno, line in enumerate(sys.stdin, 1):
            text = buffer.feed(line)
            if text is None:
                continue
            text = text.strip()
            if text and not text.startswith(";") and self._emit(text, f"<stdin>:{lineno}"):
                return 1

        if buffer.pending:
            return self._emit("\n".join(buffer.lines), "<stdin>")
        return 0


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="torpedo",
        description="TORPEDO - bind names after you use them, write functions as symbols",
        epilog="Examples:\n"
               "  torpedo                             Start REPL\n"
               "  torpedo program.clj                 Rewrite a file\n"
               "  torpedo -e '@[first last]'          Rewrite inline forms\n"
               "  echo 'first.rest' | torpedo         Filter mode\n",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    parser.add_argument(
        "script",
        nargs="?",
        help="Source file to rewrite"
    )

    parser.add_argument(
        "-e", "--expr",
        help="Rewrite the forms in this text"
    )

    parser.add_argument(
        "-t", "--trace",
        action="store_true",
        help="Print the rules applied after each result"
    )

    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Quiet mode (suppress non-essential output)"
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s")

    # Create runner
    runner = ScriptRunner()
    runner.repl.trace = args.trace

    # Determine mode
    if args.script:
        # Script mode
        sys.exit(runner.run_script(Path(args.script), quiet=args.quiet))

    elif args.expr is not None:
        # Expression mode
        sys.exit(runner.run_expression(args.expr))

    elif not sys.stdin.isatty():
        # Pipe/filter mode (stdin is not a terminal)
        sys.exit(runner.run_stdin())

    else:
        # REPL mode
        runner.repl.run()


if __name__ == "__main__":
    main()
