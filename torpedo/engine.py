"""
Rewrite Engine and Reader for TORPEDO

This module provides the s-expression reader and printer, the expression
builder E, and RewriteEngine, which wraps the core rewriter with its own
name generator and optional tracing.

Reader syntax:
    (f x y)      - application
    [a b]        - vector
    {k v}        - mapping
    #{a b}       - set
    'x           - quoted form
    @x           - lifted form, (torpedo/lift x)
    "text"       - string, with backslash escapes
    1 -2 3.5     - numbers
    1/2 1.5M 7N  - ratios, decimals and big integers
    true false nil
    :kw          - keyword
    ns/name      - namespaced name
    ; comment

A quote inside a token is part of the name: +:'1 is one name, and the token
grammar turns it into (partial + 1).

Tracing:
    Use RewriteEngine.expand(expr, trace=True) to see which rules fired.
"""

import json
import logging
import re
from decimal import Decimal
from fractions import Fraction
from typing import Any, Dict, Iterable, Iterator, List, NamedTuple, Optional, Tuple, Union

from .forms import (
    Form, Atom, Name, Application, Vector, SetForm, MapForm, Quoted, Keyword,
    ReadError, UnsupportedFormError, LIFT, EXPAND, EXPAND_BLOCK,
    form, format_form,
)
from .rewriter import (
    Gensym, BindingPairs,
    rewrite as _rewrite,
    rewrite_symbol as _rewrite_symbol,
    rewrite_bindings as _rewrite_bindings,
    expand as _expand,
    expand_block as _expand_block,
)

logger = logging.getLogger(__name__)

SourceType = Union[str, Form]


# ============================================================
# Reader
# ============================================================

TOKEN_PATTERN = re.compile(r'''
      (?P<space>[\s,]+)
    | (?P<comment>;[^\n]*)
    | (?P<string>"(?:[^"\\]|\\.)*")
    | (?P<open>\#\{|[(\[{])
    | (?P<close>[)\]}])
    | (?P<prefix>['@])
    | (?P<token>[^\s,;()\[\]{}"]+)
''', re.VERBOSE)

NUMBER_START = re.compile(r"[+-]?[0-9]")
INTEGER = re.compile(r"[+-]?[0-9]+N?")
RATIO = re.compile(r"([+-]?[0-9]+)/([0-9]+)")
FLOAT = re.compile(r"[+-]?[0-9]+(?:\.[0-9]*)?(?:[eE][+-]?[0-9]+)?M?")

LITERALS = {"true": True, "false": False, "nil": None}

CLOSERS = {"(": ")", "[": "]", "{": "}", "#{": "}"}


def tokenize(text: str) -> List[Tuple[str, str]]:
    """
    Split source text into (kind, text) tokens, dropping whitespace and comments.

    Examples:
        tokenize("(f 'x)") -> [("open", "("), ("token", "f"), ("prefix", "'"),
                               ("token", "x"), ("close", ")")]
    """
    tokens = []
    pos = 0
    while pos < len(text):
        match_obj = TOKEN_PATTERN.match(text, pos)
        if match_obj is None:
            if text[pos] == '"':
                raise ReadError(f"unterminated string at position {pos}")
            raise ReadError(f"unexpected character {text[pos]!r} at position {pos}")
        kind = match_obj.lastgroup
        if kind not in ("space", "comment"):
            tokens.append((kind, match_obj.group()))
        pos = match_obj.end()
    return tokens


def read_number(token: str) -> Atom:
    """
    Read a token that starts with a digit (after an optional sign).

    Examples:
        "42"    -> Atom(42)
        "42N"   -> Atom(42)
        "1/2"   -> Atom(Fraction(1, 2))
        "4/2"   -> Atom(2)
        "3.5"   -> Atom(3.5)
        "1.5M"  -> Atom(Decimal("1.5"))
    """
    if INTEGER.fullmatch(token):
        return Atom(int(token.rstrip("N")))

    ratio = RATIO.fullmatch(token)
    if ratio:
        numerator, denominator = int(ratio.group(1)), int(ratio.group(2))
        if denominator == 0:
            raise ReadError(f"divide by zero in ratio {token}")
        value = Fraction(numerator, denominator)
        return Atom(value.numerator if value.denominator == 1 else value)

    if FLOAT.fullmatch(token):
        if token.endswith("M"):
            return Atom(Decimal(token[:-1]))
        return Atom(float(token))

    raise ReadError(f"invalid number {token}")


def read_token(token: str) -> Form:
    """
    Read a single bare token.

    Examples:
        "42"          -> Atom(42)
        "nil"         -> Atom(None)
        ":foo"        -> Atom(Keyword("foo"))
        "str/join"    -> Name("join", "str")
        "first.rest"  -> Name("first.rest")
    """
    if NUMBER_START.match(token):
        return read_number(token)
    if token in LITERALS:
        return Atom(LITERALS[token])
    if token.startswith(":") and len(token) > 1:
        return Atom(Keyword(token[1:]))
    if "/" in token and token != "/":
        namespace, _, name = token.partition("/")
        if namespace and name:
            return Name(name, namespace)
    return Name(token)


class _Reader:
    """Recursive descent over a token list."""

    def __init__(self, tokens: List[Tuple[str, str]]):
        self.tokens = tokens
        self.pos = 0

    def at_end(self) -> bool:
        return self.pos >= len(self.tokens)

    def read(self) -> Form:
        if self.at_end():
            raise ReadError("unexpected end of input")
        kind, text = self.tokens[self.pos]
        self.pos += 1

        if kind == "open":
            return self.read_collection(text)
        if kind == "close":
            raise ReadError(f"unexpected {text!r}")
        if kind == "prefix":
            if self.at_end() or self.tokens[self.pos][0] == "close":
                raise ReadError(f"nothing follows {text!r}")
            inner = self.read()
            if text == "'":
                return Quoted(inner)
            return Application((LIFT, inner))
        if kind == "string":
            try:
                return Atom(json.loads(text, strict=False))
            except ValueError as e:
                raise ReadError(f"bad string literal {text}: {e}") from e
        return read_token(text)

    def read_collection(self, opener: str) -> Form:
        closer = CLOSERS[opener]
        items = []
        while True:
            if self.at_end():
                raise ReadError(f"missing {closer!r}")
            kind, text = self.tokens[self.pos]
            if kind == "close":
                self.pos += 1
                if text != closer:
                    raise ReadError(f"expected {closer!r} but found {text!r}")
                break
            items.append(self.read())

        if opener == "(":
            return Application(items)
        if opener == "[":
            return Vector(items)
        if opener == "#{":
            return SetForm(items)
        if len(items) % 2:
            raise ReadError("map literal needs an even number of forms")
        return MapForm(zip(items[0::2], items[1::2]))


def parse_forms(text: str) -> List[Form]:
    """
    Read every form in a source text.

    Examples:
        parse_forms("(f x) [1 2]") -> [Application(...), Vector(...)]
        parse_forms("; nothing")   -> []
    """
    reader = _Reader(tokenize(text))
    forms = []
    while not reader.at_end():
        forms.append(reader.read())
    return forms


def parse_form(text: str) -> Optional[Form]:
    """
    Read exactly one form, or None for blank input.

    Examples:
        "(+ x 1)"           -> Application([Name('+'), Name('x'), Atom(1)])
        "@[first last]"     -> Application([LIFT, Vector([...])])
    """
    forms = parse_forms(text)
    if not forms:
        return None
    if len(forms) > 1:
        raise ReadError(f"expected one form, found {len(forms)}")
    return forms[0]


# ============================================================
# Expression Builder
# ============================================================

class _FormBuilder:
    """
    Expression builder for TORPEDO.

    Provides convenient ways to construct forms without writing classes out.

    Examples:
        from torpedo import E

        # Parse source text
        expr = E("(>>> (f 5) (f x) (+ x 1))")

        # Build programmatically; strings become names
        expr = E.app("+", "x", E.app("*", 2, "y"))

        # Containers
        E.vec("first", "last")            # [first last]
        E.set("first", "second")          # #{first second}
        E.map({E.atom("min"): "min"})     # {"min" min}

        # Markers
        E.quote("x")                      # 'x
        E.lift(E.vec("first", "last"))    # @[first last]
    """

    def __call__(self, s: str) -> Optional[Form]:
        """
        Parse one form from source text.

        Examples:
            E("(+ x 1)") -> Application([Name('+'), Name('x'), Atom(1)])
        """
        return parse_form(s)

    def app(self, head: Any, *args: Any) -> Application:
        """Build an application; every part goes through form()."""
        return Application(form(v) for v in (head,) + args)

    def vec(self, *items: Any) -> Vector:
        """Build a vector literal."""
        return Vector(form(v) for v in items)

    def set(self, *items: Any) -> SetForm:
        """Build a set literal."""
        return SetForm(form(v) for v in items)

    def map(self, entries: Union[Dict, Iterable[Tuple[Any, Any]]] = ()) -> MapForm:
        """Build a mapping literal from a dict or from (key, value) pairs."""
        if isinstance(entries, dict):
            entries = entries.items()
        return MapForm((form(k), form(v)) for k, v in entries)

    def name(self, name: str, namespace: Optional[str] = None) -> Name:
        """Create a name."""
        return Name(name, namespace)

    def names(self, *names: str) -> Tuple[Name, ...]:
        """
        Create multiple names for unpacking.

        Example:
            f, x = E.names("f", "x")
        """
        return tuple(Name(n) for n in names)

    def atom(self, value: Any) -> Atom:
        """Create an atom; use this for string literals."""
        return Atom(value)

    def keyword(self, name: str) -> Atom:
        """Create a keyword atom, :name."""
        return Atom(Keyword(name))

    def quote(self, value: Any) -> Quoted:
        """Quote a form: 'x."""
        return Quoted(form(value))

    def lift(self, value: Any) -> Application:
        """Mark a form for lifting: @x."""
        return Application((LIFT, form(value)))

    def __repr__(self) -> str:
        return "E (expression builder)"


# Singleton instance
E = _FormBuilder()


# ============================================================
# Tracing
# ============================================================

class RewriteStep(NamedTuple):
    """One rule firing: the rule name and the subtree it replaced."""

    rule: str
    before: Form
    after: Form

    def __repr__(self) -> str:
        return f"{self.rule}: {format_form(self.before)} -> {format_form(self.after)}"

    def to_dict(self) -> Dict[str, str]:
        return {
            "rule": self.rule,
            "before": format_form(self.before),
            "after": format_form(self.after),
        }


class RewriteTrace:
    """
    The rules that fired during one engine operation, in firing order.

    The engine passes ``record`` to the rewriter as its step listener and
    fills in ``initial`` and ``final`` around the call. Render it with
    ``format``:

        verbose   Initial form, one numbered line per step, final form
        compact   initial --[rule, rule]--> final
        rules     rule -> rule
    """

    STYLES = ("verbose", "compact", "rules")

    def __init__(self, initial: Optional[Form] = None):
        self.initial = initial
        self.final: Optional[Form] = None
        self.steps: List[RewriteStep] = []

    def record(self, rule: str, before: Form, after: Form) -> None:
        self.steps.append(RewriteStep(rule, before, after))

    def rules_applied(self) -> List[str]:
        return [step.rule for step in self.steps]

    def format(self, style: str = "verbose") -> str:
        if style not in self.STYLES:
            raise ValueError(f"unknown trace style {style!r}, expected one of {self.STYLES}")
        if style == "rules":
            return " -> ".join(self.rules_applied()) or "(no rules applied)"
        if style == "compact":
            rules = ", ".join(self.rules_applied())
            return f"{format_form(self.initial)} --[{rules}]--> {format_form(self.final)}"
        lines = [f"Initial: {format_form(self.initial)}"]
        lines.extend(f"  {i}. {step!r}" for i, step in enumerate(self.steps, 1))
        lines.append(f"Final: {format_form(self.final)}")
        return "\n".join(lines)

    def __str__(self) -> str:
        return self.format()

    def __len__(self) -> int:
        return len(self.steps)

    def __iter__(self) -> Iterator[RewriteStep]:
        return iter(self.steps)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready form of the trace."""
        return {
            "initial": format_form(self.initial),
            "final": format_form(self.final),
            "steps": [step.to_dict() for step in self.steps],
        }


# ============================================================
# Engine
# ============================================================

class RewriteEngine:
    """
    Entry point to the rewriter with its own name generator.

    Every operation accepts forms or source text. Generated parameter names
    (args__1, xs__2, ...) are numbered per engine, so output is reproducible.

    Example:
        from torpedo import RewriteEngine

        engine = RewriteEngine()
        engine.expand("(f.g x)", "(f x)", "(+ x 1)", "(g x)", "(* x 2)", "x", "10")
        # => (let [x 10 g (fn g [x] (* x 2)) f (fn f [x] (+ x 1))] ((comp f g) x))

        # See which rules fired
        result, trace = engine.rewrite("@[first last]", trace=True)
        print(trace.format("rules"))
    """

    def __init__(self, gensym: Optional[Gensym] = None, trace: bool = False):
        """
        Initialize a RewriteEngine.

        Args:
            gensym: Generator for fresh parameter names. Default: a new
                Gensym numbered from 1.
            trace: Default for the trace argument of every operation.
        """
        self._gensym = gensym if gensym is not None else Gensym()
        self._trace = trace

    def with_gensym(self, gensym: Gensym) -> 'RewriteEngine':
        """Use the given name generator. Returns self for chaining."""
        self._gensym = gensym
        return self

    def with_trace(self, enabled: bool = True) -> 'RewriteEngine':
        """Set the tracing default. Returns self for chaining."""
        self._trace = enabled
        return self

    def reset(self) -> 'RewriteEngine':
        """Restart generated name numbering."""
        self._gensym.reset()
        return self

    @property
    def gensym(self) -> Gensym:
        return self._gensym

    @property
    def tracing(self) -> bool:
        return self._trace

    def _run(self, initial: Form, operation, trace: Optional[bool]):
        if trace is None:
            trace = self._trace
        if not trace:
            return operation(None)

        trace_obj = RewriteTrace(initial)
        result = operation(trace_obj.record)
        trace_obj.final = result
        return result, trace_obj

    def rewrite(self, exp: SourceType, trace: Optional[bool] = None):
        """
        Rewrite a form in default context.

        Returns:
            The rewritten form, or (form, trace) when tracing
        """
        exp = _coerce(exp)
        return self._run(exp, lambda on_step: _rewrite(exp, self._gensym, on_step), trace)

    def rewrite_symbol(self, sym: Union[str, Name]) -> Form:
        """
        Apply the token grammar to one name.

        A string is taken as the name's text, not parsed as source, so
        rewrite_symbol("2") gives an argument selector.
        """
        if isinstance(sym, str):
            namespace, sep, name = sym.partition("/")
            sym = Name(name, namespace) if sep and namespace and name else Name(sym)
        if not isinstance(sym, Name):
            raise UnsupportedFormError("token grammar applies to names only", sym)
        return _rewrite_symbol(sym, self._gensym)

    def lift(self, exp: SourceType, trace: Optional[bool] = None):
        """Lift a form, the same as rewriting @exp."""
        return self.rewrite(Application((LIFT, _coerce(exp))), trace=trace)

    def rewrite_bindings(self, *forms: SourceType) -> BindingPairs:
        """
        Rewrite a flat binding list into (name, value) pairs, last declared first.

        Example:
            engine.rewrite_bindings("a", "(inc b)", "b", "5")
            # => [(Name('b'), Atom(5)), (Name('a'), ...)]
        """
        return _rewrite_bindings([_coerce(f) for f in forms], self._gensym)

    def expand(self, expression: SourceType, *bindings: SourceType,
               trace: Optional[bool] = None):
        """
        Rewrite an expression with optional bindings afterwards.

        Each binding must precede the things it depends on. Left-hand sides
        that look like invocations define functions.

        Example:
            engine.expand("(f y)", "(f x)", "(+ x 1)", "y", "5")
            # => (let [y 5 f (fn f [x] (+ x 1))] (f y))
        """
        expression = _coerce(expression)
        bindings = tuple(_coerce(b) for b in bindings)
        initial = Application((EXPAND, expression) + bindings) if bindings else expression
        return self._run(
            initial,
            lambda on_step: _expand(expression, bindings, self._gensym, on_step),
            trace,
        )

    def expand_block(self, *forms: SourceType, trace: Optional[bool] = None):
        """Rewrite a block of forms into (do ...)."""
        forms = tuple(_coerce(f) for f in forms)
        return self._run(
            Application((EXPAND_BLOCK,) + forms),
            lambda on_step: _expand_block(forms, self._gensym, on_step),
            trace,
        )

    def expand_source(self, text: str, trace: Optional[bool] = None):
        """
        Read every form in a text and rewrite them as one block.

        Returns:
            List of rewritten forms in source order, or (list, trace) when tracing
        """
        forms = parse_forms(text)
        logger.debug("read %d forms from source", len(forms))
        result = self.expand_block(*forms, trace=trace)
        if isinstance(result, tuple):
            block, trace_obj = result
            return list(block.args), trace_obj
        return list(result.args)

    def __call__(self, expression: SourceType, *bindings: SourceType, **kwargs):
        """Make engine callable: engine(expr, ...) is shorthand for engine.expand(expr, ...)."""
        return self.expand(expression, *bindings, **kwargs)

    def __repr__(self) -> str:
        return f"RewriteEngine({self._gensym!r})"


def _coerce(value: SourceType) -> Form:
    """Source text is parsed, other values go through form()."""
    if isinstance(value, str):
        parsed = parse_form(value)
        if parsed is None:
            raise ReadError("no form to rewrite")
        return parsed
    return form(value)
