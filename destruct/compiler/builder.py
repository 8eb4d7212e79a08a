"""
destruct.compiler.builder - Lowering patterns into IR

MatcherBuilder turns a pattern tree into one IR expression. Given the
subject identifier and the environment-in-progress, the expression
evaluates to the new environment-in-progress: True (matched, nothing bound
yet), an environment object, or a falsy value on failure.

Sub-patterns of a structure are chained: each step's result is tested and
handed to the next step as its environment, so the first failing step
short-circuits everything after it. Steps are ordered to fail fast
(see pattern_rank) without changing what matches.

Every place that binds a variable applies a binder closure built once per
variable name. optimize.flatten later inlines those applications.
"""

from collections import Counter
from typing import Any, Callable, Optional

from destruct.compiler import ir
from destruct.compiler.ir import (
    Apply,
    Assign,
    Equals,
    Ident,
    Lambda,
    Namer,
    Test,
    prim,
    seq,
)
from destruct.runtime.env import make_env_class
from destruct.runtime.types import (
    NOTHING,
    UNBOUND,
    CompilerBug,
    DynamicRef,
    InvalidPattern,
    Let,
    Literal,
    Mapping,
    Or,
    Pattern,
    Regex,
    Sequence,
    Splat,
    TypedObject,
    Var,
    Wildcard,
    var_names,
)

TRUE = ir.Literal(True)
NOTHING_LIT = ir.Literal(NOTHING)
UNBOUND_LIT = ir.Literal(UNBOUND)

# A chain step: (build(env, env_is_real) -> IR, step_always_binds)
Step = tuple[Callable[[Any, bool], Any], bool]


def pattern_rank(pattern: Pattern) -> int:
    """
    Evaluation rank of a sub-pattern: cheap or likely-to-fail checks first.

    0 literals and wildcards, 1 structures, 2 alternatives and regexes,
    3 binders, 4 dynamic references.
    """
    if isinstance(pattern, (Literal, Wildcard)):
        return 0
    if isinstance(pattern, (Sequence, Mapping, TypedObject)):
        return 1
    if isinstance(pattern, (Or, Regex)):
        return 2
    if isinstance(pattern, (Var, Splat, Let)):
        return 3
    return 4


def always_binds(pattern: Pattern) -> bool:
    """True when a successful match of pattern certainly materializes the env."""
    if isinstance(pattern, (Var, Splat, Let)):
        return True
    if isinstance(pattern, TypedObject):
        return any(always_binds(p) for p in pattern.fields.values())
    if isinstance(pattern, Mapping):
        return any(always_binds(p) for p in pattern.entries.values())
    if isinstance(pattern, Sequence):
        return any(always_binds(p) for p in pattern.items)
    if isinstance(pattern, Or):
        return all(always_binds(p) for p in pattern.alternatives)
    if isinstance(pattern, Regex):
        return bool(pattern.named_captures)
    return False


def consumes_subject(pattern: Pattern) -> bool:
    """True when matching pattern may advance an iterator it is given."""
    if isinstance(pattern, Let):
        return consumes_subject(pattern.pattern)
    return isinstance(pattern, (Sequence, DynamicRef))


def ordered(pairs):
    """Sort (key, pattern) pairs by rank, keeping declaration order for ties."""
    return sorted(pairs, key=lambda kv: pattern_rank(kv[1]))


class MatcherBuilder:
    """
    Lowers one pattern to IR.

    Attributes:
        var_names: The pattern's variables in first-occurrence order
        var_counts: How many binding sites each variable has
        env_class: The environment shape for this pattern
        subject: Identifier of the matched value
        context: Identifier of the external evaluation context
    """

    def __init__(self, pattern: Pattern, resolver: Optional[Callable] = None):
        self.pattern = pattern
        self.resolver = resolver
        occurrences = var_names(pattern)
        self.var_counts = Counter(occurrences)
        self.var_names = tuple(dict.fromkeys(occurrences))
        self.env_class = make_env_class(self.var_names)
        self.namer = Namer()
        self.subject = self.namer.fresh("x")
        self.context = self.namer.fresh("ctx")
        self._binders: dict[tuple[str, bool], Lambda] = {}
        self._lowerers = {
            Literal: self.lower_literal,
            Wildcard: self.lower_wildcard,
            Var: self.lower_var,
            Splat: self.lower_splat,
            Let: self.lower_let,
            TypedObject: self.lower_typed_object,
            Mapping: self.lower_mapping,
            Sequence: self.lower_sequence,
            Or: self.lower_or,
            Regex: self.lower_regex,
            DynamicRef: self.lower_dynamic,
        }

    def build(self):
        """Lower the whole pattern against a not-yet-materialized environment."""
        return self.lower(self.pattern, self.subject, TRUE, False)

    def lower(self, pattern: Pattern, x: Ident, env, real: bool):
        """
        Lower pattern matched against x, threading env.

        Args:
            pattern: The (sub-)pattern
            x: Identifier holding the value to match
            env: IR for the incoming environment-in-progress, known truthy
            real: True when env is known to be a materialized environment
        """
        lowerer = self._lowerers.get(type(pattern))
        if lowerer is None:
            raise InvalidPattern(f"Unsupported pattern type: {type(pattern).__name__}")
        return lowerer(pattern, x, env, real)

    def fresh(self, prefix: str = "t") -> Ident:
        return self.namer.fresh(prefix)

    # === Sequencing ===

    def chain(self, env, real: bool, steps: list[Step]):
        """Run steps one after another, stopping at the first failure."""
        if not steps:
            return env
        (build, binds), rest = steps[0], steps[1:]
        if not rest:
            return build(env, real)
        e = self.fresh("e")
        return seq(
            [
                Assign(e, build(env, real)),
                Test(e, self.chain(e, real or binds, rest), None),
            ]
        )

    def sub_step(self, pattern: Pattern, value) -> Step:
        """Step that stores value in a temporary and matches pattern against it."""

        def build(env, real):
            t = self.fresh()
            return seq([Assign(t, value), self.lower(pattern, t, env, real)])

        return build, always_binds(pattern)

    def present_step(self, pattern: Pattern, value) -> Step:
        """Like sub_step, but fails when value evaluates to NOTHING."""

        def build(env, real):
            t = self.fresh()
            return seq(
                [
                    Assign(t, value),
                    Test(
                        prim("is_not", t, NOTHING_LIT),
                        self.lower(pattern, t, env, real),
                        None,
                    ),
                ]
            )

        return build, always_binds(pattern)

    def bind_step(self, name: str, value) -> Step:
        return (lambda env, real: self.bind(name, value, env, real)), True

    # === Binding ===

    def binder(self, name: str, real: bool) -> Lambda:
        """
        The closure (value, env) -> env that binds name.

        Variables with a single binding site are assigned unconditionally.
        Others are assigned when still UNBOUND and otherwise compared with
        the existing value.
        """
        key = (name, real)
        fn = self._binders.get(key)
        if fn is not None:
            return fn

        v, e = self.fresh("v"), self.fresh("e")
        pre = []
        target = e
        if not real:
            target = self.fresh("env")
            pre.append(
                Assign(
                    target,
                    Test(
                        prim("is", e, TRUE),
                        prim("make_env", ir.Literal(self.env_class)),
                        e,
                    ),
                )
            )
        name_lit = ir.Literal(name)
        store = seq([prim("env_set", target, name_lit, v), target])
        if self.var_counts[name] > 1:
            current = self.fresh("cur")
            body = seq(
                pre
                + [
                    Assign(current, prim("env_get", target, name_lit)),
                    Test(
                        prim("is", current, UNBOUND_LIT),
                        store,
                        Test(Equals(current, v), target, None),
                    ),
                ]
            )
        else:
            body = seq(pre + [store])

        fn = Lambda((v, e), body)
        self._binders[key] = fn
        return fn

    def bind(self, name: str, value, env, real: bool):
        return Apply(self.binder(name, real), (value, env))

    def merge(self, env, real: bool, sub: Ident, names):
        """
        Merge the environment-in-progress held in sub into env.

        A placeholder on either side yields the other side. Otherwise each
        variable bound in sub goes through the regular binder, so repeated
        variables are checked for equality.
        """
        steps = [self.merge_var_step(sub, name) for name in dict.fromkeys(names)]
        copy_all = self.chain(env, True, steps)
        body = Test(prim("is", sub, TRUE), env, copy_all)
        if not real:
            body = Test(prim("is", env, TRUE), sub, body)
        return Test(sub, body, None)

    def merge_var_step(self, sub: Ident, name: str) -> Step:
        def build(env, real):
            p = self.fresh("p")
            return seq(
                [
                    Assign(p, prim("env_get", sub, ir.Literal(name))),
                    Test(
                        prim("is", p, UNBOUND_LIT),
                        env,
                        self.bind(name, p, env, real),
                    ),
                ]
            )

        return build, False

    # === Pattern variants ===

    def lower_literal(self, pattern: Literal, x: Ident, env, real: bool):
        value = pattern.value
        if value is None or isinstance(value, bool) or not ir.is_primitive(value):
            # None, booleans and atoms compare by identity
            return Test(prim("is", x, ir.Literal(value)), env, None)
        matched = Test(Equals(x, ir.Literal(value)), env, None)
        if isinstance(value, (int, float, complex)):
            # 1 == True, but Literal(1) does not match True
            is_bool = prim("isinstance", x, ir.Literal(bool))
            return Test(is_bool, ir.Literal(None), matched)
        return matched

    def lower_wildcard(self, pattern: Wildcard, x: Ident, env, real: bool):
        return env

    def lower_var(self, pattern: Var, x: Ident, env, real: bool):
        return self.bind(pattern.name, x, env, real)

    def lower_splat(self, pattern: Splat, x: Ident, env, real: bool):
        raise CompilerBug(f"Splat lowered outside of a sequence: {pattern!r}")

    def lower_let(self, pattern: Let, x: Ident, env, real: bool):
        return self.chain(
            env,
            real,
            [
                (
                    (lambda e, r: self.lower(pattern.pattern, x, e, r)),
                    always_binds(pattern.pattern),
                ),
                self.bind_step(pattern.name, x),
            ],
        )

    def lower_typed_object(self, pattern: TypedObject, x: Ident, env, real: bool):
        pred = ir.Literal(pattern.type_predicate)
        if isinstance(pattern.type_predicate, (type, tuple)):
            cond = prim("isinstance", x, pred)
        else:
            cond = prim("call", pred, x)
        steps = [
            self.present_step(sub, prim("getattr", x, ir.Literal(name), NOTHING_LIT))
            for name, sub in ordered(pattern.fields.items())
            if not isinstance(sub, Wildcard)
        ]
        return Test(cond, self.chain(env, real, steps), None)

    def lower_mapping(self, pattern: Mapping, x: Ident, env, real: bool):
        # A wildcard entry also matches a missing key
        steps = [
            self.present_step(sub, prim("lookup", x, ir.Literal(key), NOTHING_LIT))
            for key, sub in ordered(pattern.entries.items())
            if not isinstance(sub, Wildcard)
        ]
        return Test(prim("is_mapping", x), self.chain(env, real, steps), None)

    def lower_sequence(self, pattern: Sequence, x: Ident, env, real: bool):
        indexable = self.lower_indexable(pattern, x, env, real)
        enumerable = self.lower_enumerable(pattern, x, env, real)
        return Test(
            prim("is_indexable", x),
            indexable,
            Test(prim("is_iterable", x), enumerable, None),
        )

    def lower_indexable(self, pattern: Sequence, x: Ident, env, real: bool):
        items = pattern.items
        n = len(items)
        si = pattern.splat_index
        length = prim("len", x)
        if si < 0:
            size_ok = Equals(length, ir.Literal(n))
        else:
            size_ok = prim("ge", length, ir.Literal(n - 1))

        steps = []
        for i, item in ordered(enumerate(items)):
            if i == si:
                after = n - si - 1
                stop = ir.Literal(-after if after else None)
                value = prim("slice", x, ir.Literal(si), stop)
                steps.append(self.bind_step(item.name, value))
            else:
                index = i if si < 0 or i < si else i - n
                steps.append(self.sub_step(item, prim("index", x, ir.Literal(index))))
        return Test(size_ok, self.chain(env, real, steps), None)

    def lower_enumerable(self, pattern: Sequence, x: Ident, env, real: bool):
        """
        Match a value that can only be iterated.

        Elements are consumed in declaration order. Without a splat the
        iterator must be exhausted afterwards. A trailing splat binds the
        partially consumed iterator itself. A splat in the middle drains
        the rest of the iterator so the trailing elements can be found.
        """
        items = pattern.items
        si = pattern.splat_index
        it = self.fresh("it")
        prefix = items if si < 0 else items[:si]
        steps = [
            self.present_step(item, prim("next", it, NOTHING_LIT)) for item in prefix
        ]

        if si < 0:
            exhausted = prim("is", prim("next", it, NOTHING_LIT), NOTHING_LIT)
            steps.append(((lambda e, r: Test(exhausted, e, None)), False))
        elif si == len(items) - 1:
            steps.append(self.bind_step(items[si].name, it))
        else:
            steps.append(self.drained_step(items[si].name, items[si + 1 :], it))

        return seq([Assign(it, prim("iter", x)), self.chain(env, real, steps)])

    def drained_step(self, splat_name: str, suffix, it: Ident) -> Step:
        k = len(suffix)

        def build(env, real):
            rest = self.fresh("rest")
            head = prim("slice", rest, ir.Literal(0), ir.Literal(-k))
            steps = [self.bind_step(splat_name, head)]
            steps += [
                self.sub_step(item, prim("index", rest, ir.Literal(j - k)))
                for j, item in enumerate(suffix)
            ]
            return seq(
                [
                    Assign(rest, prim("drain", it)),
                    Test(
                        prim("ge", prim("len", rest), ir.Literal(k)),
                        self.chain(env, real, steps),
                        None,
                    ),
                ]
            )

        return build, True

    def lower_or(self, pattern: Or, x: Ident, env, real: bool):
        alternatives = pattern.alternatives
        if len(alternatives) == 1:
            return self.lower(alternatives[0], x, env, real)

        # An alternative that fails part way through an iterator must not
        # leave the next one with only the rest of it
        pre = []
        subjects = [x] * len(alternatives)
        if any(consumes_subject(alt) for alt in alternatives[:-1]):
            forks = self.fresh("xs")
            pre.append(Assign(forks, prim("fork", x, ir.Literal(len(alternatives)))))
            subjects = [self.fresh("x") for _ in alternatives]

        def alternative(i):
            # Each alternative starts from its own placeholder environment
            matched = self.lower(alternatives[i], subjects[i], TRUE, False)
            if subjects[i] is x:
                return matched
            return seq(
                [Assign(subjects[i], prim("index", forks, ir.Literal(i))), matched]
            )

        value = alternative(len(alternatives) - 1)
        for i in reversed(range(len(alternatives) - 1)):
            o = self.fresh("o")
            value = seq([Assign(o, alternative(i)), Test(o, o, value)])

        sub = self.fresh("alt")
        return seq(
            pre + [Assign(sub, value), self.merge(env, real, sub, var_names(pattern))]
        )

    def lower_regex(self, pattern: Regex, x: Ident, env, real: bool):
        rx = pattern.pattern
        text_type = str if isinstance(rx.pattern, str) else bytes
        m = self.fresh("m")
        steps = [
            self.bind_step(name, prim("group", m, ir.Literal(name)))
            for name in pattern.named_captures
        ]
        return Test(
            prim("isinstance", x, ir.Literal(text_type)),
            seq(
                [
                    Assign(m, prim("search", ir.Literal(rx), x)),
                    Test(m, self.chain(env, real, steps), None),
                ]
            ),
            None,
        )

    def lower_dynamic(self, pattern: DynamicRef, x: Ident, env, real: bool):
        if self.resolver is None:
            raise InvalidPattern(f"No resolver available for {pattern!r}")
        res = self.fresh("res")
        resolved = prim(
            "resolve",
            ir.Literal(self.resolver),
            ir.Literal(pattern.expression),
            self.context,
            x,
        )
        if real:
            outer = env
            pre = []
        else:
            outer = self.fresh("env")
            pre = [
                Assign(
                    outer,
                    Test(
                        prim("is", env, TRUE),
                        prim("make_env", ir.Literal(self.env_class)),
                        env,
                    ),
                )
            ]
        return seq(
            [
                Assign(res, resolved),
                Test(res, seq(pre + [prim("merge", outer, res)]), None),
            ]
        )


def build(pattern: Pattern, resolver: Optional[Callable] = None):
    """Lower pattern to IR. Returns (builder, ir)."""
    builder = MatcherBuilder(pattern, resolver)
    return builder, builder.build()
