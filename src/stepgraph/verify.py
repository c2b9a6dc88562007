# verify.py
# Post-execution invariant checks over store contents.
#
# Invariant text is parsed once into a closed set of predicate variants and
# evaluated with a match. Supported forms:
#
#   len(field)>=N        list length check
#   exists(field)        presence check
#   ...confidence>=N...  numeric threshold on "{step_id}.confidence"
#   eq(field,literal)    strict structural equality (literal is JSON)
#
# Any form may end with "-> intent" to choose the remediation branch.
# Unrecognized text passes but is reported back as a warning.

import json
import re
from functools import lru_cache
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict

from stepgraph.models import StepContract, Verdict
from stepgraph.store import VersionedStore

DEEPEN_SEARCH = "deepen_search"
REVISE_OUTPUT = "revise_output"

_INTENT_SUFFIX_RE = re.compile(r"^(?P<expr>.+?)\s*->\s*(?P<intent>[A-Za-z_]\w*)\s*$", re.DOTALL)
_LEN_RE = re.compile(r"^len\(\s*(?P<field>[\w.\-]+)\s*\)\s*>=\s*(?P<n>\d+)$")
_EXISTS_RE = re.compile(r"^exists\(\s*(?P<field>[\w.\-]+)\s*\)$")
_EQ_RE = re.compile(r"^eq\(\s*(?P<field>[\w.\-]+)\s*,\s*(?P<literal>.+)\)$", re.DOTALL)
_CONFIDENCE_RE = re.compile(r"confidence\s*>=\s*(?P<n>\d+(?:\.\d+)?|\.\d+)")


# ---------------------------------------------------------------------------
# Predicate variants
# ---------------------------------------------------------------------------


class _Predicate(BaseModel):
    model_config = ConfigDict(frozen=True)

    intent: str | None = None


class LenAtLeast(_Predicate):
    kind: Literal["len_at_least"] = "len_at_least"
    field: str
    n: int


class Exists(_Predicate):
    kind: Literal["exists"] = "exists"
    field: str


class ConfidenceAtLeast(_Predicate):
    kind: Literal["confidence_at_least"] = "confidence_at_least"
    n: float


class Eq(_Predicate):
    kind: Literal["eq"] = "eq"
    field: str
    value: Any


class Unrecognized(_Predicate):
    kind: Literal["unrecognized"] = "unrecognized"
    expression: str


Predicate = Union[LenAtLeast, Exists, ConfidenceAtLeast, Eq, Unrecognized]


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _parse_literal(raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw.strip()


@lru_cache(maxsize=1024)
def parse_predicate(expression: str) -> Predicate:
    """Parse one invariant expression. Never raises."""
    text = expression.strip()
    intent = None
    suffix = _INTENT_SUFFIX_RE.match(text)
    if suffix:
        text, intent = suffix.group("expr").strip(), suffix.group("intent")

    if match := _LEN_RE.match(text):
        return LenAtLeast(field=match.group("field"), n=int(match.group("n")), intent=intent or DEEPEN_SEARCH)
    if match := _EXISTS_RE.match(text):
        return Exists(field=match.group("field"), intent=intent or REVISE_OUTPUT)
    if match := _EQ_RE.match(text):
        return Eq(
            field=match.group("field"),
            value=_parse_literal(match.group("literal").strip()),
            intent=intent or REVISE_OUTPUT,
        )
    if match := _CONFIDENCE_RE.search(text):
        return ConfidenceAtLeast(n=float(match.group("n")), intent=intent or DEEPEN_SEARCH)
    return Unrecognized(expression=expression, intent=intent)


def parse_invariants(expressions: list[str]) -> list[Predicate]:
    return [parse_predicate(expression) for expression in expressions]


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


def _resolve(step_id: str, field: str, store: VersionedStore) -> tuple[bool, Any]:
    """Step-scoped key first, then the bare key for cross-step references."""
    scoped = f"{step_id}.{field}"
    if store.exists(scoped):
        return True, store.read(scoped)
    if store.exists(field):
        return True, store.read(field)
    return False, None


def _canonical(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"))


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def evaluate(predicate: Predicate, step_id: str, store: VersionedStore) -> bool:
    match predicate:
        case LenAtLeast(field=field, n=n):
            found, value = _resolve(step_id, field, store)
            return found and isinstance(value, list) and len(value) >= n
        case Exists(field=field):
            found, _ = _resolve(step_id, field, store)
            return found
        case ConfidenceAtLeast(n=n):
            value = store.read(f"{step_id}.confidence")
            return _is_number(value) and value >= n
        case Eq(field=field, value=expected):
            found, value = _resolve(step_id, field, store)
            return found and _canonical(value) == _canonical(expected)
        case Unrecognized():
            return True
    return True


def verify(step: StepContract, store: VersionedStore) -> Verdict:
    """
    Evaluate the step's invariants in order.

    The first failing predicate decides the verdict: its intent picks the
    remediation and its literal text becomes the reason.
    """
    warnings: list[str] = []
    for expression in step.invariants:
        predicate = parse_predicate(expression)
        if isinstance(predicate, Unrecognized):
            warnings.append(f"unrecognized invariant treated as passing: {expression}")
            continue
        if not evaluate(predicate, step.step_id, store):
            return Verdict(passed=False, intent=predicate.intent, reason=expression, warnings=warnings)
    return Verdict(passed=True, warnings=warnings)
