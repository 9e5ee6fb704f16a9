"""
TORPEDO - bind names after you use them, write functions as symbols

A source-to-source rewriter for s-expression programs. It understands a small
grammar inside symbol names, lifts literals into functions, and lets bindings
follow the expression that uses them.

Quick Start:
    from torpedo import RewriteEngine

    engine = RewriteEngine()

    engine.rewrite("first.rest")          # => (comp first rest)
    engine.rewrite("reduce:+")            # => (partial reduce +)
    engine.rewrite("@[first last]")       # => (fn [& args__1] [(apply first args__1) ...])

    engine.expand("(f 5)", "(f x)", "(+ x 1)")
    # => (let [f (fn f [x] (+ x 1))] (f 5))

Symbol Grammar (tightest first):
    f.g         - composition, (comp f g)
    f:x         - partial application, (partial f x)
    f..g        - composition, loose
    f:.x        - partial application, loose
    2  -1       - argument selectors, (fn [& xs] (nth xs 2))
    '2          - the number 2
    'x          - the quoted name x

Special Forms:
    @x                  - lift x into a function of its arguments
    'x                  - x, left alone
    (def lhs rhs)       - definition, lhs may be an invocation
    (>>> expr lhs rhs)  - expression with bindings after it
    (>>>> forms...)     - block of forms
"""

__version__ = "0.1.0"

# Expression tree
from .forms import (
    Form,
    Atom,
    Name,
    Sequence,
    Application,
    Vector,
    SetForm,
    MapForm,
    Quoted,
    Keyword,
    form,
    format_form,
    is_atom,
    is_name,
    is_compound,
    is_application_of,
    # Errors
    RewriteError,
    MalformedTokenError,
    MalformedBindingError,
    UnsupportedFormError,
    ReadError,
    # Markers
    LIFT,
    DEFINE,
    EXPAND,
    EXPAND_BLOCK,
)

# Core rewriter components
from .rewriter import (
    Gensym,
    RuleType,
    StepListener,
    BindingPairs,
    rewrite_symbol,
    argument_selector,
    preorder,
    rewrite,
    apply_value,
    rewrite_lift,
    rewrite_bindings,
    function_name,
    expand,
    expand_block,
)

# Engine, reader and tracing
from .engine import (
    RewriteEngine,
    RewriteStep,
    RewriteTrace,
    E,
    parse_form,
    parse_forms,
)

# Public API
__all__ = [
    # Version
    "__version__",
    # Forms
    "Form",
    "Atom",
    "Name",
    "Sequence",
    "Application",
    "Vector",
    "SetForm",
    "MapForm",
    "Quoted",
    "Keyword",
    "form",
    "format_form",
    "is_atom",
    "is_name",
    "is_compound",
    "is_application_of",
    # Errors
    "RewriteError",
    "MalformedTokenError",
    "MalformedBindingError",
    "UnsupportedFormError",
    "ReadError",
    # Markers
    "LIFT",
    "DEFINE",
    "EXPAND",
    "EXPAND_BLOCK",
    # Core
    "Gensym",
    "RuleType",
    "StepListener",
    "BindingPairs",
    "rewrite_symbol",
    "argument_selector",
    "preorder",
    "rewrite",
    "apply_value",
    "rewrite_lift",
    "rewrite_bindings",
    "function_name",
    "expand",
    "expand_block",
    # Engine
    "RewriteEngine",
    "RewriteStep",
    "RewriteTrace",
    # Expression builder and reader
    "E",
    "parse_form",
    "parse_forms",
]
