"""
Core rewriter module for expression tree transformation.

TORPEDO - bind names after you use them, write functions as symbols.

This module provides the token grammar for symbolic names, the preorder
rewriter, the lifting transform and the binding rewriter, together with the
two entry points built on them (expand and expand_block).
"""

import itertools
import logging
import re
from typing import Callable, Iterable, List, Optional, Tuple

from .forms import (
    Form, Atom, Name, Application, Vector, SetForm, MapForm, Quoted,
    MalformedTokenError, MalformedBindingError, UnsupportedFormError,
    COMP, PARTIAL, FN, APPLY, NTH, COUNT, PLUS, LET, DO, AMPERSAND,
    LIFT, DEFINE, EXPAND, EXPAND_BLOCK,
)

logger = logging.getLogger(__name__)

# Type aliases
RuleType = Callable[[Form], Form]
StepListener = Callable[[str, Form, Form], None]  # (rule name, before, after)
BindingPairs = List[Tuple[Name, Form]]


# ============================================================
# Generated names
# ============================================================

class Gensym:
    """
    Generator of fresh parameter names.

    Each call returns a new Name built from the prefix and a counter private
    to this generator, so two engines never share numbering:

        gensym = Gensym()
        gensym("args")  # => Name("args__1")
        gensym("xs")    # => Name("xs__2")
        gensym.reset()
        gensym("args")  # => Name("args__1")
    """

    __slots__ = ('_start', '_counter')

    def __init__(self, start: int = 1):
        self._start = start
        self._counter = itertools.count(start)

    def __call__(self, prefix: str) -> Name:
        return Name(f"{prefix}__{next(self._counter)}")

    def reset(self) -> None:
        """Restart numbering from the initial value."""
        self._counter = itertools.count(self._start)

    def __repr__(self) -> str:
        return f"Gensym(start={self._start})"


# Shared generator for callers that do not bring their own
_default_gensym = Gensym()


# ============================================================
# Token Grammar
# ============================================================

# Separators from loosest to tightest, with the combinator each one builds
GRAMMAR_TIERS: Tuple[Tuple[str, Name], ...] = (
    (":.", PARTIAL),
    ("..", COMP),
    (":", PARTIAL),
    (".", COMP),
)

SELECTOR = re.compile(r"[0-9]+")
SELECTOR_FROM_END = re.compile(r"-[0-9]+")
QUOTED_INTEGER = re.compile(r"'-?[0-9]+")


def rewrite_symbol(sym: Name, gensym: Optional[Gensym] = None) -> Form:
    """
    Rewrite the grammar embedded in a symbolic name.

    Rules, in descending order of precedence:

        f.g.h      -> (comp f g h)
        f:x:y      -> (partial f x y)
        f..g..h    -> (comp f g h), lower precedence
        f:.x:.y    -> (partial f x y), lower precedence

    Indivisible tokens resolve as:

        3          -> (fn [& xs] (nth xs 3))
        -3         -> (fn [& xs] (nth xs (+ (count xs) -3)))
        '3         -> 3
        'x         -> 'x (quoted name)
        x          -> x

    The namespace of a qualified name is opaque and stays attached to the
    leftmost token. Numeric tokens make argument preloading easy:

        map:+:'3   -> (partial map (partial + 3))

    Floating point numbers cannot be written this way; the dot always splits.

    Args:
        sym: The name to rewrite
        gensym: Generator for selector parameter names

    Returns:
        The rewritten form (a plain Name when there is nothing to rewrite)

    Raises:
        MalformedTokenError: On empty tokens, a namespace that contains
            grammar punctuation (a namespace must precede all of it), or a
            namespace on a leading selector or quoted token
    """
    if gensym is None:
        gensym = _default_gensym

    namespace = sym.namespace
    if namespace is not None and (":" in namespace or ".." in namespace):
        raise MalformedTokenError("namespace must precede grammar punctuation", sym)

    def parse(text: str, tier: int, leading: bool) -> Form:
        if tier == len(GRAMMAR_TIERS):
            return promote(text, leading)
        separator, combinator = GRAMMAR_TIERS[tier]
        pieces = text.split(separator)
        if len(pieces) == 1:
            return parse(text, tier + 1, leading)
        return Application(
            (combinator,)
            + tuple(parse(piece, tier + 1, leading and i == 0)
                    for i, piece in enumerate(pieces))
        )

    def promote(token: str, leading: bool) -> Form:
        if not token:
            raise MalformedTokenError("empty token in name", sym)
        if leading and namespace is not None and (
            SELECTOR.fullmatch(token)
            or SELECTOR_FROM_END.fullmatch(token)
            or token.startswith("'")
        ):
            raise MalformedTokenError(
                f"namespace {namespace} cannot qualify {token}", sym
            )
        if SELECTOR.fullmatch(token):
            return argument_selector(int(token), False, gensym)
        if SELECTOR_FROM_END.fullmatch(token):
            return argument_selector(int(token), True, gensym)
        if QUOTED_INTEGER.fullmatch(token):
            return Atom(int(token[1:]))
        if token.startswith("'"):
            if len(token) == 1:
                raise MalformedTokenError("nothing to quote in name", sym)
            return Quoted(Name(token[1:]))
        return Name(token, namespace if leading else None)

    return parse(sym.name, 0, True)


def argument_selector(position: int, from_end: bool, gensym: Gensym) -> Application:
    """
    Build a variadic function returning one of its arguments.

        argument_selector(2, False, gensym)   -> (fn [& xs] (nth xs 2))
        argument_selector(-1, True, gensym)   -> (fn [& xs] (nth xs (+ (count xs) -1)))
    """
    xs = gensym("xs")
    if from_end:
        index = Application((PLUS, Application((COUNT, xs)), Atom(position)))
    else:
        index = Atom(position)
    return Application((FN, Vector((AMPERSAND, xs)), Application((NTH, xs, index))))


# ============================================================
# Preorder Rewriter
# ============================================================

def preorder(rule: RuleType, exp: Form) -> Form:
    """
    Preorder tree transform that never rewrites a rule's own output.

    The rule is applied to the node first. If it returns a different object
    (identity, not equality), that object is the final result for the whole
    subtree. If it returns the node itself, the children are transformed with
    the same rule and a node of the same kind is rebuilt from them.

    Args:
        rule: Function from form to form
        exp: The tree to transform

    Returns:
        The transformed tree

    Raises:
        UnsupportedFormError: If a non-Form value is reached
    """
    result = rule(exp)
    if result is not exp:
        return result

    if isinstance(exp, Application):
        return Application(preorder(rule, e) for e in exp)
    if isinstance(exp, Vector):
        return Vector(preorder(rule, e) for e in exp)
    if isinstance(exp, SetForm):
        return SetForm(preorder(rule, e) for e in exp)
    if isinstance(exp, MapForm):
        return MapForm((preorder(rule, k), preorder(rule, v)) for k, v in exp)
    if isinstance(exp, (Atom, Name, Quoted)):
        return exp
    raise UnsupportedFormError(f"cannot rewrite {type(exp).__name__} value {exp!r}")


def rewrite(
    exp: Form,
    gensym: Optional[Gensym] = None,
    on_step: Optional[StepListener] = None,
) -> Form:
    """
    Rewrite a form in default context.

    No special rewriting happens until a node requires it:

        some.symbol      -> see rewrite_symbol
        'x               -> x
        @x               -> see rewrite_lift
        (def lhs rhs)    -> (def name value), see rewrite_bindings
        (>>> ...)        -> expanded eagerly, see expand
        (>>>> ...)       -> expanded eagerly, see expand_block

    Args:
        exp: The form to rewrite
        gensym: Generator for fresh parameter names
        on_step: Optional callback(rule_name, before, after), called whenever
            a rule changes a node

    Returns:
        The rewritten form
    """
    if gensym is None:
        gensym = _default_gensym

    def rule(node: Form) -> Form:
        rule_name, result = _apply_rule(node, gensym, on_step)
        if on_step is not None and rule_name is not None and result != node:
            on_step(rule_name, node, result)
        return result

    return preorder(rule, exp)


def _apply_rule(
    node: Form, gensym: Gensym, on_step: Optional[StepListener]
) -> Tuple[Optional[str], Form]:
    """Top-level rule table. Returns (rule name, result) or (None, node)."""
    if isinstance(node, Name):
        return "symbol", rewrite_symbol(node, gensym)

    if isinstance(node, Quoted):
        return "quote", node.form

    if isinstance(node, Application) and isinstance(node.head, Name):
        head = node.head
        args = node.args

        if head == LIFT:
            if len(args) != 1:
                raise UnsupportedFormError("lift takes exactly one operand", node)
            return "lift", rewrite_lift(args[0], gensym=gensym, on_step=on_step)

        if head == DEFINE:
            if len(args) != 2:
                raise MalformedBindingError("def takes a left-hand side and a value", node)
            [(name, value)] = rewrite_bindings(args, gensym, on_step)
            return "define", Application((DEFINE, name, value))

        if head == EXPAND:
            if not args:
                raise UnsupportedFormError(">>> needs an expression", node)
            return "expand", expand(args[0], args[1:], gensym, on_step)

        if head == EXPAND_BLOCK:
            return "expand-block", expand_block(args, gensym, on_step)

    return None, node


# ============================================================
# Lifting Transform
# ============================================================

def apply_value(value: Form, args: Name) -> Form:
    """
    Build the form applying a function value to an argument list.

    Generally this is (apply value args), but two shapes allow better code:

        apply_value((partial f x), args)      -> (apply f x args)
        apply_value((fn [& r] body), args)    -> (let [r args] body)

    The second case only covers lambdas whose parameter vector is a single
    rest parameter, which is exactly what this module generates.

    Args:
        value: The function-valued form
        args: Name bound to the argument list

    Returns:
        A form equivalent to applying value to args
    """
    if isinstance(value, Application) and len(value) > 1:
        if value.head == PARTIAL:
            return Application((APPLY,) + value.args + (args,))
        if value.head == FN and _is_variadic_lambda(value):
            rest_param = value.items[1].items[1]
            return Application((LET, Vector((rest_param, args))) + value.items[2:])
    return Application((APPLY, value, args))


def _is_variadic_lambda(value: Application) -> bool:
    params = value.items[1]
    return (
        isinstance(params, Vector)
        and len(params) == 2
        and params.items[0] == AMPERSAND
        and isinstance(params.items[1], Name)
    )


def rewrite_lift(
    exp: Form,
    args_name: Optional[Name] = None,
    gensym: Optional[Gensym] = None,
    on_step: Optional[StepListener] = None,
) -> Form:
    """
    Lift applicativity across the given form.

    With lifting written as @:

        @[a b ...]      = (fn [& args] [(apply @a args) (apply @b args) ...])
        @{k1 v1 ...}    = (fn [& args] {(apply @k1 args) (apply @v1 args) ...})
        @#{x y ...}     = (fn [& args] #{(apply @x args) (apply @y args) ...})
        @(f x y ...)    = (fn [& args] (f (apply @x args) (apply @y args) ...))
        @'x             = x
        @sym            = rewrite_symbol(sym)
        @atom           = atom

    The callee f of an application is rewritten in default context but is not
    applied to the arguments. Applications are simplified as described in
    apply_value.

    Args:
        exp: The form to lift
        args_name: The enclosing argument list; when given, the lifted value
            is applied to it instead of returned as a function
        gensym: Generator for fresh parameter names
        on_step: Passed through to rewrite for application callees

    Returns:
        The lifted form
    """
    if gensym is None:
        gensym = _default_gensym

    def wrap(value: Form) -> Form:
        if args_name is not None:
            return apply_value(value, args_name)
        return value

    if isinstance(exp, Name):
        return wrap(rewrite_symbol(exp, gensym))
    if isinstance(exp, Quoted):
        return exp.form
    if isinstance(exp, Atom):
        return exp
    if isinstance(exp, Application) and not exp.items:
        # () is a literal, not a call
        return exp

    args = gensym("args")

    def lift(child: Form) -> Form:
        return rewrite_lift(child, args, gensym, on_step)

    if isinstance(exp, Vector):
        body = Vector(lift(e) for e in exp)
    elif isinstance(exp, SetForm):
        body = SetForm(lift(e) for e in exp)
    elif isinstance(exp, MapForm):
        body = MapForm((lift(k), lift(v)) for k, v in exp)
    elif isinstance(exp, Application):
        callee = rewrite(exp.head, gensym, on_step)
        body = Application((callee,) + tuple(lift(a) for a in exp.args))
    else:
        raise UnsupportedFormError(f"cannot lift {type(exp).__name__} value {exp!r}")

    return wrap(Application((FN, Vector((AMPERSAND, args)), body)))


# ============================================================
# Binding Rewriter
# ============================================================

def rewrite_bindings(
    forms: Iterable[Form],
    gensym: Optional[Gensym] = None,
    on_step: Optional[StepListener] = None,
) -> BindingPairs:
    """
    Rewrite a flat binding list into (name, value) pairs.

    Left-hand sides that look like invocations become named functions:

        (f x) (+ x 1)    -> f (fn f [x] (+ x 1))

    Each layer of currying appends an apostrophe to the function name, so any
    layer can recurse into itself:

        (((f x) y) z) (+ x y z)  -> f (fn f [x] (fn f' [y] (fn f'' [z] (+ x y z))))

    Pairs come back in reverse declaration order: a binding is declared
    before the bindings it depends on, the opposite of let.

    Args:
        forms: lhs1, rhs1, lhs2, rhs2, ...
        gensym: Generator for fresh parameter names
        on_step: Passed through to rewrite

    Returns:
        List of (name, rewritten value) pairs, last declared first

    Raises:
        MalformedBindingError: On an odd number of forms or a left-hand side
            that is neither a name nor a nested invocation of one
    """
    if gensym is None:
        gensym = _default_gensym

    forms = tuple(forms)
    if len(forms) % 2:
        raise MalformedBindingError(
            f"binding list needs an even number of forms, got {len(forms)}",
            Vector(forms),
        )

    pairs = [(forms[i], forms[i + 1]) for i in range(0, len(forms), 2)]
    return [_expand_binding(lhs, rhs, gensym, on_step) for lhs, rhs in reversed(pairs)]


def _expand_binding(
    lhs: Form, rhs: Form, gensym: Gensym, on_step: Optional[StepListener]
) -> Tuple[Name, Form]:
    """Strip invocation layers off lhs, wrapping rhs in one fn per layer."""
    value = rhs
    while isinstance(lhs, Application):
        if not lhs.items:
            raise MalformedBindingError("empty binding left-hand side", lhs)
        value = Application((FN, function_name(lhs), Vector(lhs.args), value))
        lhs = lhs.head

    if not isinstance(lhs, Name):
        raise MalformedBindingError(
            "binding left-hand side must be a name or an invocation", lhs
        )
    return lhs, rewrite(value, gensym, on_step)


def function_name(lhs: Application) -> Name:
    """
    Name of the fn built for one invocation layer of a left-hand side.

        (f x)        -> f
        ((f x) y)    -> f'
        (((f x) y) z) -> f''
    """
    depth = 0
    head = lhs.head
    while isinstance(head, Application) and head.items:
        head = head.head
        depth += 1
    if not isinstance(head, Name):
        raise MalformedBindingError(
            "binding left-hand side must be a name or an invocation", lhs
        )
    return Name(head.name + "'" * depth)


# ============================================================
# Entry points
# ============================================================

def expand(
    expression: Form,
    bindings: Iterable[Form] = (),
    gensym: Optional[Gensym] = None,
    on_step: Optional[StepListener] = None,
) -> Form:
    """
    Rewrite an expression with optional bindings afterwards.

    Each binding must precede the things it depends on:

        (>>> (f y)
             (f x) (+ x 1)
             y     5)

    expands to

        (let [y 5 f (fn f [x] (+ x 1))] (f y))

    Args:
        expression: The expression to rewrite
        bindings: Flat binding list, see rewrite_bindings
        gensym: Generator for fresh parameter names
        on_step: Optional callback(rule_name, before, after)

    Returns:
        The rewritten expression, wrapped in a let when bindings are given
    """
    if gensym is None:
        gensym = _default_gensym

    bindings = tuple(bindings)
    logger.debug("expand %s with %d binding forms", expression, len(bindings))
    if not bindings:
        return rewrite(expression, gensym, on_step)

    pairs = rewrite_bindings(bindings, gensym, on_step)
    binding_vector = Vector(item for pair in pairs for item in pair)
    return Application((LET, binding_vector, rewrite(expression, gensym, on_step)))


def expand_block(
    forms: Iterable[Form],
    gensym: Optional[Gensym] = None,
    on_step: Optional[StepListener] = None,
) -> Form:
    """
    Rewrite a block of forms: (do form1' form2' ...).

    Every form is rewritten independently and order is preserved. There is
    no way to bind names here; use expand for that.
    """
    if gensym is None:
        gensym = _default_gensym

    forms = tuple(forms)
    logger.debug("expand block of %d forms", len(forms))
    return Application((DO,) + tuple(rewrite(f, gensym, on_step) for f in forms))
