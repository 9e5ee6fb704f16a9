"""
Expression tree for TORPEDO.

Every node the rewriter sees is exactly one of the Form classes defined here:

    Atom(value)              - opaque literal (number, string, bool, None, Keyword)
    Name(name, namespace)    - symbolic identifier, namespace is opaque
    Application(items)       - (f a b ...), head is the callee
    Vector(items)            - [a b ...], literal sequence
    SetForm(items)           - #{a b ...}, distinct members
    MapForm(entries)         - {k v ...}, ordered (key, value) pairs
    Quoted(form)             - 'x, one layer of rewrite-inertness

Forms are value objects: they compare by structure, hash consistently and are
never modified after construction. Rewriting always builds new nodes.
"""

import json
from decimal import Decimal
from typing import Any, Iterable, Iterator, Optional, Tuple


# ============================================================
# Errors
# ============================================================

class RewriteError(ValueError):
    """
    Base class for errors raised while rewriting.

    The offending sub-form is kept on the exception so callers can report it:

        try:
            rewrite(form)
        except RewriteError as e:
            print(e.form)
    """

    def __init__(self, message: str, form: Optional["Form"] = None):
        if form is not None:
            message = f"{message}: {form}"
        super().__init__(message)
        self.form = form


class MalformedTokenError(RewriteError):
    """A symbolic name cannot be resolved by the token grammar."""


class MalformedBindingError(RewriteError):
    """A binding list or a binding left-hand side has the wrong shape."""


class UnsupportedFormError(RewriteError):
    """A value or marker form the rewriter has no rule for."""


class ReadError(ValueError):
    """Source text could not be read into forms."""


# ============================================================
# Form classes
# ============================================================

class Form:
    """Base class for all expression tree nodes."""

    __slots__ = ()

    def __str__(self) -> str:
        return format_form(self)


class Keyword(str):
    """
    A keyword literal (:name). Carried inside an Atom.

    Keywords are strings that remember they were written with a leading colon,
    so Atom(Keyword("a")) and Atom("a") are different atoms.
    """

    __slots__ = ()

    def __repr__(self) -> str:
        return f"Keyword({str.__repr__(self)})"


class Atom(Form):
    """
    An opaque literal carried through rewriting unchanged.

    Examples:
        Atom(1)
        Atom("text")
        Atom(None)
        Atom(Keyword("foo"))
    """

    __slots__ = ('value',)

    def __init__(self, value: Any):
        self.value = value

    def _key(self):
        return (type(self.value), self.value)

    def __eq__(self, other):
        if isinstance(other, Atom):
            return self._key() == other._key()
        return False

    def __hash__(self) -> int:
        return hash(("atom",) + self._key())

    def __repr__(self) -> str:
        return f"Atom({self.value!r})"


class Name(Form):
    """
    A symbolic identifier, optionally qualified by a namespace.

    The namespace is opaque to the token grammar: in clojure.string/join only
    "join" is parsed for grammar punctuation.
    """

    __slots__ = ('name', 'namespace')

    def __init__(self, name: str, namespace: Optional[str] = None):
        self.name = name
        self.namespace = namespace

    def __eq__(self, other):
        if isinstance(other, Name):
            return self.name == other.name and self.namespace == other.namespace
        return False

    def __hash__(self) -> int:
        return hash(("name", self.name, self.namespace))

    def __repr__(self) -> str:
        if self.namespace is not None:
            return f"Name({self.name!r}, {self.namespace!r})"
        return f"Name({self.name!r})"

    @property
    def qualified(self) -> str:
        """The name as written, with its namespace prefix if any."""
        if self.namespace is not None:
            return f"{self.namespace}/{self.name}"
        return self.name


class Sequence(Form):
    """Common base of the two ordered kinds, Application and Vector."""

    __slots__ = ('items',)

    def __init__(self, items: Iterable[Form] = ()):
        self.items: Tuple[Form, ...] = tuple(items)

    def __eq__(self, other):
        # An application is never equal to a vector with the same items
        if type(self) is type(other):
            return self.items == other.items
        return False

    def __hash__(self) -> int:
        return hash((type(self).__name__, self.items))

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator[Form]:
        return iter(self.items)

    def __getitem__(self, index):
        return self.items[index]

    def __repr__(self) -> str:
        return f"{type(self).__name__}({list(self.items)!r})"


class Application(Sequence):
    """
    An application form: (f a b ...).

    Examples:
        app = Application([Name("+"), Atom(1), Atom(2)])
        app.head   # => Name("+")
        app.args   # => (Atom(1), Atom(2))
    """

    __slots__ = ()

    @property
    def head(self) -> Optional[Form]:
        """The callee, or None for the empty application ()."""
        return self.items[0] if self.items else None

    @property
    def args(self) -> Tuple[Form, ...]:
        """Everything after the callee."""
        return self.items[1:]


class Vector(Sequence):
    """A literal ordered sequence: [a b ...]."""

    __slots__ = ()


class SetForm(Form):
    """
    A set literal: #{a b ...}.

    Duplicate members are dropped on construction (the first occurrence is kept
    so printing stays deterministic). Equality ignores member order.
    """

    __slots__ = ('items',)

    def __init__(self, items: Iterable[Form] = ()):
        seen = set()
        unique = []
        for item in items:
            if item not in seen:
                seen.add(item)
                unique.append(item)
        self.items: Tuple[Form, ...] = tuple(unique)

    def __eq__(self, other):
        if isinstance(other, SetForm):
            return frozenset(self.items) == frozenset(other.items)
        return False

    def __hash__(self) -> int:
        return hash(("set", frozenset(self.items)))

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator[Form]:
        return iter(self.items)

    def __contains__(self, item) -> bool:
        return item in self.items

    def __repr__(self) -> str:
        return f"SetForm({list(self.items)!r})"


class MapForm(Form):
    """
    A mapping literal: {k1 v1 k2 v2 ...}.

    Entries keep their order and keys are not required to be unique; both keys
    and values are arbitrary forms.
    """

    __slots__ = ('entries',)

    def __init__(self, entries: Iterable[Tuple[Form, Form]] = ()):
        self.entries: Tuple[Tuple[Form, Form], ...] = tuple(
            (key, value) for key, value in entries
        )

    def __eq__(self, other):
        if isinstance(other, MapForm):
            return self.entries == other.entries
        return False

    def __hash__(self) -> int:
        return hash(("map", self.entries))

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[Tuple[Form, Form]]:
        return iter(self.entries)

    def keys(self) -> Tuple[Form, ...]:
        return tuple(key for key, _ in self.entries)

    def values(self) -> Tuple[Form, ...]:
        return tuple(value for _, value in self.entries)

    def __repr__(self) -> str:
        return f"MapForm({list(self.entries)!r})"


class Quoted(Form):
    """Marks exactly one nested form as rewrite-inert: 'x."""

    __slots__ = ('form',)

    def __init__(self, form: Form):
        self.form = form

    def __eq__(self, other):
        if isinstance(other, Quoted):
            return self.form == other.form
        return False

    def __hash__(self) -> int:
        return hash(("quote", self.form))

    def __repr__(self) -> str:
        return f"Quoted({self.form!r})"


# ============================================================
# Well-known names
# ============================================================

# Target vocabulary produced by the rewriter
COMP = Name("comp")
PARTIAL = Name("partial")
FN = Name("fn")
APPLY = Name("apply")
NTH = Name("nth")
COUNT = Name("count")
PLUS = Name("+")
LET = Name("let")
DO = Name("do")
AMPERSAND = Name("&")

# Marker callees recognised by the top-level rule table
LIFT = Name("lift", "torpedo")
DEFINE = Name("def")
EXPAND = Name(">>>")
EXPAND_BLOCK = Name(">>>>")


# ============================================================
# Predicates and coercion
# ============================================================

def is_atom(exp: Any) -> bool:
    """Check if a form is an Atom."""
    return isinstance(exp, Atom)


def is_name(exp: Any) -> bool:
    """Check if a form is a Name."""
    return isinstance(exp, Name)


def is_compound(exp: Any) -> bool:
    """
    Check if a form has children (application, vector, set or mapping).

    Quoted forms are not compound: their single child is inert.
    """
    return isinstance(exp, (Sequence, SetForm, MapForm))


def is_application_of(exp: Any, callee: Name) -> bool:
    """Check if a form is an application whose head is the given name."""
    return isinstance(exp, Application) and exp.head == callee


def form(value: Any) -> Form:
    """
    Coerce a Python value into a Form.

    Forms pass through. Strings become names, as in plain expression lists
    where strings are variables; use Atom("...") for string literals.

        str               -> Name
        list              -> Application
        tuple             -> Vector
        set / frozenset   -> SetForm
        dict              -> MapForm
        anything else     -> Atom

    Examples:
        form(["+", "x", 1])      # => Application([Name('+'), Name('x'), Atom(1)])
        form(("first", "last"))  # => Vector([Name('first'), Name('last')])
    """
    if isinstance(value, Form):
        return value
    if isinstance(value, Keyword):
        return Atom(value)
    if isinstance(value, str):
        return Name(value)
    if isinstance(value, list):
        return Application(form(v) for v in value)
    if isinstance(value, tuple):
        return Vector(form(v) for v in value)
    if isinstance(value, (set, frozenset)):
        return SetForm(form(v) for v in value)
    if isinstance(value, dict):
        return MapForm((form(k), form(v)) for k, v in value.items())
    return Atom(value)


# ============================================================
# Printing
# ============================================================

def format_form(exp: Form) -> str:
    """
    Format a form as source text.

    Examples:
        Application([Name("+"), Name("x"), Atom(1)])   -> "(+ x 1)"
        Application([LIFT, Vector([Name("first")])])   -> "@[first]"
        Quoted(Name("x"))                              -> "'x"
        MapForm([(Atom("a"), Atom(1))])                -> '{"a" 1}'
    """
    if isinstance(exp, Atom):
        return _format_atom(exp.value)
    if isinstance(exp, Name):
        return exp.qualified
    if isinstance(exp, Quoted):
        return "'" + format_form(exp.form)
    if isinstance(exp, Application):
        if exp.head == LIFT and len(exp) == 2:
            return "@" + format_form(exp.items[1])
        return "(" + " ".join(format_form(e) for e in exp) + ")"
    if isinstance(exp, Vector):
        return "[" + " ".join(format_form(e) for e in exp) + "]"
    if isinstance(exp, SetForm):
        return "#{" + " ".join(format_form(e) for e in exp) + "}"
    if isinstance(exp, MapForm):
        parts = [f"{format_form(k)} {format_form(v)}" for k, v in exp]
        return "{" + " ".join(parts) + "}"
    return repr(exp)


def _format_atom(value: Any) -> str:
    if value is None:
        return "nil"
    if value is True:
        return "true"
    if value is False:
        return "false"
    if isinstance(value, Keyword):
        return ":" + value
    if isinstance(value, str):
        return json.dumps(value)
    if isinstance(value, Decimal):
        return f"{value}M"
    return str(value)
