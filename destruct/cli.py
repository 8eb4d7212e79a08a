"""
destruct.cli - destruct Command Line Interface

Developer tool for looking at what the compiler produces:

- destruct show PATTERN          Print the generated matcher source
- destruct match PATTERN VALUE   Match VALUE and print the bindings

PATTERN is a Python expression over the pattern constructors
(Sequence, Var, Splat, ...), VALUE is a Python literal.
"""

import argparse
import ast
import builtins
import logging
import re
import sys
from typing import Any, Optional

import destruct
from destruct.compiler.cache import PatternCache
from destruct.config import CompilerOptions
from destruct.runtime.types import PATTERN_TYPES, InvalidPattern, Pattern


def pattern_namespace() -> dict[str, Any]:
    """Names available inside a PATTERN expression."""
    namespace = {cls.__name__: cls for cls in PATTERN_TYPES}
    namespace.update(ANY=destruct.ANY, Atom=destruct.Atom, re=re)
    return namespace


def parse_pattern(text: str) -> Pattern:
    try:
        pattern = eval(text, {"__builtins__": builtins}, pattern_namespace())
    except InvalidPattern:
        raise
    except Exception as e:
        raise InvalidPattern(f"Cannot evaluate pattern {text!r}: {e}") from e
    if not isinstance(pattern, Pattern):
        raise InvalidPattern(f"Not a pattern: {text!r}")
    return pattern


def parse_value(text: str) -> Any:
    try:
        return ast.literal_eval(text)
    except (ValueError, SyntaxError):
        # Bare words are taken as strings
        return text


def make_cache(args: argparse.Namespace) -> PatternCache:
    options = CompilerOptions.from_env()
    options = CompilerOptions(
        optimize=options.optimize and not args.no_optimize,
        fixpoint=options.fixpoint or args.fixpoint,
        debug=options.debug or args.verbose,
    )
    return PatternCache(options)


def cmd_show(args: argparse.Namespace) -> int:
    """Print the generated source of a pattern's matcher."""
    try:
        compiled = make_cache(args).compile(parse_pattern(args.pattern))
    except InvalidPattern as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    print(compiled.show_code())
    return 0


def cmd_match(args: argparse.Namespace) -> int:
    """Match a value and print the bindings."""
    try:
        compiled = make_cache(args).compile(parse_pattern(args.pattern))
    except InvalidPattern as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    env = compiled.match(parse_value(args.value))
    if env is None:
        print("no match")
        return 1
    if not len(env):
        print("match (no bindings)")
    for name, value in env.items():
        print(f"{name} = {value!r}")
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        prog="destruct",
        description="destruct - structural pattern compiler",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
examples:
  destruct show "Sequence([Var('x'), Splat('rest')])"
  destruct match "Mapping({'a': Var('x')})" "{'a': 1}"
  destruct match "Regex(r'(?P<word>\\w+) is best')" "'ruby is best'"
        """,
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log compilation steps and generated code to stderr",
    )

    parser.add_argument(
        "--no-optimize",
        action="store_true",
        help="Emit the matcher without running the optimizer",
    )

    parser.add_argument(
        "--fixpoint",
        action="store_true",
        help="Repeat the optimizer passes until the IR stops changing",
    )

    subparsers = parser.add_subparsers(dest="subcommand", help="Available commands")

    show_parser = subparsers.add_parser("show", help="Print the generated matcher")
    show_parser.add_argument("pattern", help="Pattern expression")

    match_parser = subparsers.add_parser(
        "match", help="Match a value against a pattern"
    )
    match_parser.add_argument("pattern", help="Pattern expression")
    match_parser.add_argument("value", help="Python literal to match")

    return parser


def main(argv: Optional[list[str]] = None) -> None:
    """Main entry point for the destruct CLI. Calls sys.exit with return code."""
    sys.exit(_main(argv))


def _main(argv: Optional[list[str]] = None) -> int:
    """Internal main that returns exit code."""
    if argv is None:
        argv = sys.argv[1:]

    parser = create_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s")

    if args.subcommand == "show":
        return cmd_show(args)
    elif args.subcommand == "match":
        return cmd_match(args)

    parser.print_help()
    return 2


if __name__ == "__main__":
    main()
