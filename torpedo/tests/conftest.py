"""
Test fixtures for torpedo.

Rewritten forms only mean something once a host runs them, so this module
provides a small evaluator for the target vocabulary (comp, partial, fn, let, if,
apply, nth, count, do, def) plus the handful of list and number helpers the
tests use. It lives here and nowhere else: the package itself never evaluates.

Fixtures:
    engine    - a fresh RewriteEngine, generated names numbered from 1
    evaluate  - evaluate an already rewritten form
    run       - rewrite source text, evaluate it, and call the result with
                any extra arguments
"""

import functools
import operator
from collections import ChainMap

import pytest

from torpedo import (
    Atom, Name, Application, Vector, SetForm, MapForm, Quoted,
    RewriteEngine,
)


# ============================================================
# Builtins
# ============================================================

def _comp(*fns):
    if not fns:
        return lambda x: x

    def composed(*args):
        result = fns[-1](*args)
        for f in reversed(fns[:-1]):
            result = f(result)
        return result
    return composed


def _partial(f, *bound):
    return lambda *args: f(*bound, *args)


def _apply(f, *args):
    return f(*args[:-1], *args[-1])


def _minus(x, *rest):
    if not rest:
        return -x
    return functools.reduce(operator.sub, rest, x)


def _divide(x, *rest):
    return functools.reduce(operator.truediv, rest, x)


def _reduce(f, *args):
    if len(args) == 1:
        return functools.reduce(f, args[0])
    init, coll = args
    return functools.reduce(f, coll, init)


def _map(f, *colls):
    return list(map(f, *colls))


def _equal(x, *rest):
    return all(x == y for y in rest)


BUILTINS = {
    "comp": _comp,
    "partial": _partial,
    "apply": _apply,
    "nth": lambda xs, i: list(xs)[i],
    "count": len,
    "+": lambda *xs: sum(xs),
    "-": _minus,
    "*": lambda *xs: functools.reduce(operator.mul, xs, 1),
    "/": _divide,
    "=": _equal,
    "first": lambda xs: list(xs)[0],
    "second": lambda xs: list(xs)[1],
    "last": lambda xs: list(xs)[-1],
    "rest": lambda xs: list(xs)[1:],
    "inc": lambda x: x + 1,
    "dec": lambda x: x - 1,
    "identity": lambda x: x,
    "reduce": _reduce,
    "map": _map,
    "list": lambda *xs: list(xs),
    "vector": lambda *xs: list(xs),
    "reverse": lambda xs: list(reversed(list(xs))),
    "min": min,
    "max": max,
    "keys": lambda m: list(m.keys()),
    "vals": lambda m: list(m.values()),
    "zipmap": lambda ks, vs: dict(zip(ks, vs)),
}


# ============================================================
# Evaluator
# ============================================================

class HostEvaluator:
    """
    Evaluates rewritten forms.

    Vectors become lists, sets become frozensets and mappings become dicts.
    Functions are plain Python callables, so results can be called directly.
    """

    def __init__(self):
        self.globals = {}
        self.root = ChainMap(self.globals, {Name(k): v for k, v in BUILTINS.items()})

    def __call__(self, exp, env=None):
        if env is None:
            env = self.root

        if isinstance(exp, Atom):
            return exp.value
        if isinstance(exp, Name):
            if exp not in env:
                raise NameError(f"unbound name {exp.qualified}")
            return env[exp]
        if isinstance(exp, Quoted):
            return self.data(exp.form)
        if isinstance(exp, Vector):
            return [self(e, env) for e in exp]
        if isinstance(exp, SetForm):
            return frozenset(self(e, env) for e in exp)
        if isinstance(exp, MapForm):
            return {self(k, env): self(v, env) for k, v in exp}
        if isinstance(exp, Application):
            return self.application(exp, env)
        raise TypeError(f"cannot evaluate {exp!r}")

    def data(self, exp):
        """A quoted form evaluates to itself, converted to plain data."""
        if isinstance(exp, Atom):
            return exp.value
        if isinstance(exp, (Application, Vector)):
            return [self.data(e) for e in exp]
        if isinstance(exp, SetForm):
            return frozenset(self.data(e) for e in exp)
        if isinstance(exp, MapForm):
            return {self.data(k): self.data(v) for k, v in exp}
        if isinstance(exp, Quoted):
            return self.data(exp.form)
        return exp

    def application(self, exp, env):
        if not exp.items:
            return []
        head = exp.head
        args = exp.args

        if head == Name("fn"):
            return self.function(args, env)
        if head == Name("let"):
            bindings, body = args[0], args[1:]
            local = env.new_child()
            for name, value in zip(bindings.items[0::2], bindings.items[1::2]):
                local[name] = self(value, local)
            return self.body(body, local)
        if head == Name("if"):
            test, then, *otherwise = args
            condition = self(test, env)
            if condition is not None and condition is not False:
                return self(then, env)
            return self(otherwise[0], env) if otherwise else None
        if head == Name("do"):
            return self.body(args, env)
        if head == Name("def"):
            name, value = args
            self.globals[name] = self(value, env)
            return self.globals[name]

        f = self(head, env)
        return f(*[self(a, env) for a in args])

    def body(self, forms, env):
        result = None
        for f in forms:
            result = self(f, env)
        return result

    def function(self, args, env):
        name = None
        if isinstance(args[0], Name):
            name, args = args[0], args[1:]
        params, body = args[0].items, args[1:]

        rest = None
        if Name("&") in params:
            split = params.index(Name("&"))
            params, rest = params[:split], params[split + 1]

        def host_fn(*values):
            if len(values) < len(params) or (rest is None and len(values) != len(params)):
                raise TypeError(f"wrong number of arguments ({len(values)}) to fn")
            local = env.new_child()
            if name is not None:
                local[name] = host_fn
            local.update(zip(params, values))
            if rest is not None:
                local[rest] = list(values[len(params):])
            return self.body(body, local)

        return host_fn


# ============================================================
# Fixtures
# ============================================================

@pytest.fixture
def engine():
    """A fresh engine, so generated names are numbered from 1."""
    return RewriteEngine()


@pytest.fixture
def evaluate():
    """Evaluate an already rewritten form."""
    return HostEvaluator()


@pytest.fixture
def run(engine, evaluate):
    """
    Rewrite source text, evaluate it, and call the result with any extra
    Python arguments.

        run("first.rest", [1, 2, 3])  # => 2
        run("(>>> (f 5) (f x) (+ x 1))")  # => 6
    """
    def run_source(text, *args):
        value = evaluate(engine.expand(text))
        if args:
            return value(*args)
        return value
    return run_source
