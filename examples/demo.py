#!/usr/bin/env python3
"""
TORPEDO Feature Demonstration

This script demonstrates the major features of the TORPEDO library.
"""

from torpedo import RewriteEngine, E, format_form


def section(title: str):
    """Print a section header."""
    print(f"\n{'='*60}")
    print(f" {title}")
    print('='*60)


def show(engine: RewriteEngine, examples):
    for text in examples:
        result = engine.rewrite(text)
        print(f"  {text:24} => {format_form(result)}")


def demo_symbol_grammar():
    """Demonstrate the grammar inside names."""
    section("Symbol Grammar")

    engine = RewriteEngine()
    show(engine, [
        "first.rest",
        "reduce:+",
        "inc..reduce:+",
        "map:inc.inc",
        "map:.+:'1",
        "clojure.string/join.reverse",
    ])


def demo_selectors():
    """Demonstrate argument selectors."""
    section("Argument Selectors")

    engine = RewriteEngine()
    for token in ["2", "-1", "'2"]:
        print(f"  {token:24} => {format_form(engine.rewrite_symbol(token))}")


def demo_lifting():
    """Demonstrate lifting literals into functions."""
    section("Lifting")

    engine = RewriteEngine()
    show(engine, [
        "@[first last]",
        "@#{first second}",
        '@{"min" min "max" max}',
        "@(/ reduce:+ count)",
        "@(+ (first rest) last)",
    ])


def demo_bindings():
    """Demonstrate bindings written after their use."""
    section("Trailing Bindings")

    engine = RewriteEngine()
    examples = [
        ("(f 5)", ["(f x)", "(+ x 1)"]),
        ("(f.g x)", ["(f x)", "(+ x 1)", "(g x)", "(* x 2)", "x", "10"]),
        ("(first.rest xs)", ["xs", "[1 ((add 2) 3)]", "((add x) y)", "(+ x y)"]),
    ]

    for expr, bindings in examples:
        result = engine.expand(expr, *bindings)
        print(f"  {expr} {' '.join(bindings)}")
        print(f"    => {format_form(result)}")


def demo_blocks():
    """Demonstrate rewriting a whole source text."""
    section("Blocks")

    engine = RewriteEngine()
    source = '''
        (def (mean xs) (@(/ reduce:+ count) xs))
        (def spread @[apply:min apply:max])
        (>>> (spread.map:mean data)
             data [[1 2 3] [4 5 6]])
    '''
    for result in engine.expand_source(source):
        print(f"  {format_form(result)}")


def demo_tracing():
    """Demonstrate trace formatting."""
    section("Tracing")

    engine = RewriteEngine()
    expr = E("(>>> (total.map:inc xs) total reduce:+ xs '[1 2 3])")
    result, trace = engine.rewrite(expr, trace=True)

    print("  Verbose format (default):")
    for line in str(trace).split('\n'):
        print(f"    {line}")

    print(f"\n  Compact: {trace.format('compact')}")
    print(f"  Rules: {trace.format('rules')}")


def main():
    """Run all demonstrations."""
    print("TORPEDO - bind names after you use them, write functions as symbols")
    print("Feature Demonstration")

    demo_symbol_grammar()
    demo_selectors()
    demo_lifting()
    demo_bindings()
    demo_blocks()
    demo_tracing()

    print("\n" + "="*60)
    print(" Demo complete!")
    print("="*60)


if __name__ == "__main__":
    main()
