# run.py
# Entry point. Argument parsing, input seeding and wiring. The execution
# semantics live in executor.py.
#
#   stepgraph --graph graphs/research.json --kv topic="solid-state batteries"
#   stepgraph --graph planner.json --filejson brief=brief.json --autorun
#
# Any OpenAI-compatible endpoint works; set OPENAI_BASE_URL, e.g.
# https://openrouter.ai/api/v1

import argparse
import base64
import hashlib
import json
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable
from urllib.parse import unquote, urlparse

from rich.prompt import Prompt

from stepgraph.artifacts import FileArtifactStore
from stepgraph.compiler import compile_graph
from stepgraph.config import RunSettings
from stepgraph.display import Reporter
from stepgraph.errors import GraphUnwrapError, InputFileError, StepGraphError
from stepgraph.executor import Orchestrator, RunReport
from stepgraph.llm import OpenAIChatProvider, OracleProvider
from stepgraph.models import StepContract, StepGraph
from stepgraph.registry import build_tool_registry
from stepgraph.scheduler import topological_order
from stepgraph.store import VersionedStore

PREFERRED_WRAPPERS = ("stepgraph", "graph", "workflow")
FILE_MODES = {"file": "text", "fileb": "base64", "filejson": "json"}


@dataclass(frozen=True)
class FileSpec:
    key: str
    path: Path
    mode: str  # "text" | "base64" | "json"


# ---------------------------------------------------------------------------
# Graph unwrapping
# ---------------------------------------------------------------------------


def _has_steps(value: Any) -> bool:
    return isinstance(value, dict) and isinstance(value.get("steps"), dict)


def unwrap_graph(candidate: Any) -> tuple[dict[str, Any], str | None]:
    """
    Locate a step graph inside `candidate`.

    Accepts a bare graph, a JSON string of one, or a wrapper object holding
    it under `stepgraph`, `graph`, `workflow`, a sole key, or any key.
    Returns the graph and the wrapper key it came from (None if bare).
    """
    if isinstance(candidate, str):
        try:
            candidate = json.loads(candidate)
        except json.JSONDecodeError:
            pass
    if _has_steps(candidate):
        return candidate, None
    if not isinstance(candidate, dict):
        raise GraphUnwrapError("Provided JSON is not an object.")

    for key in PREFERRED_WRAPPERS:
        if _has_steps(candidate.get(key)):
            return candidate[key], key
    if len(candidate) == 1:
        key, inner = next(iter(candidate.items()))
        if _has_steps(inner):
            return inner, key
    for key, inner in candidate.items():
        if _has_steps(inner):
            return inner, str(key)
    raise GraphUnwrapError("No StepGraph found: expected {steps:{...},edges:[...]} or a wrapper that contains it.")


def load_graph_file(path: str | Path) -> tuple[dict[str, Any], str | None]:
    try:
        raw = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise GraphUnwrapError(f"Cannot read graph file {path}: {exc}") from exc
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise GraphUnwrapError(f"Graph file {path} is not valid JSON: {exc}") from exc
    return unwrap_graph(parsed)


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


def read_input_file(spec: FileSpec, limit_mb: float) -> tuple[Any, dict[str, Any]]:
    """Read one seeded file. Returns (value, metadata) for `key` and `key__meta`."""
    try:
        stat = spec.path.stat()
        size_mb = stat.st_size / (1024 * 1024)
        if size_mb > limit_mb:
            raise InputFileError(
                f"Input file too large: {spec.path} ({size_mb:.2f}MB > {limit_mb}MB). "
                "Set MAX_INPUT_FILE_MB to override."
            )
        data = spec.path.read_bytes()
    except OSError as exc:
        raise InputFileError(f"Cannot read input file {spec.path}: {exc}") from exc

    meta = {
        "filename": spec.path.name,
        "abspath": str(spec.path.resolve()),
        "size_bytes": stat.st_size,
        "sha256": hashlib.sha256(data).hexdigest(),
        "mtime_ms": stat.st_mtime * 1000,
        "mode": spec.mode,
    }
    if spec.mode == "base64":
        return base64.b64encode(data).decode("ascii"), meta
    text = data.decode("utf-8", errors="replace")
    if spec.mode == "json":
        try:
            return json.loads(text), meta
        except json.JSONDecodeError as exc:
            raise InputFileError(f"Failed to parse JSON file '{spec.path}': {exc}") from exc
    return text, meta


def load_file_uri(uri: str) -> str:
    """Read the text behind a file:// answer."""
    if uri.startswith("file:///"):
        path = Path(unquote(urlparse(uri).path))
    else:
        path = Path(uri[len("file://"):])
    try:
        return path.read_text(encoding="utf-8", errors="replace")
    except OSError as exc:
        raise InputFileError(f"Failed to read {uri}: {exc}") from exc


def prompt_for_missing_inputs(
    step: StepContract,
    provided: dict[str, Any],
    *,
    interactive: bool = True,
    ask: Callable[[str], str] = Prompt.ask,
) -> dict[str, Any]:
    """Ask for the step's unscoped required inputs that nobody supplied."""
    if not interactive:
        return {}
    answers: dict[str, Any] = {}
    for key in step.inputs.required:
        if not key or "." in key or key in provided:
            continue
        answer = ask(f"Enter value for required input '{key}'")
        if answer.strip().startswith("file://"):
            answers[key] = load_file_uri(answer.strip())
        else:
            answers[key] = answer
    return answers


def extract_autorun_graph(graph: StepGraph, store: VersionedStore) -> tuple[dict[str, Any], str] | None:
    """Find a step graph among the outputs of the graph's last scheduled step."""
    order = topological_order(graph)
    if not order:
        return None
    last = graph.steps[order[-1]]
    for output_field in last.outputs_schema:
        key = f"{last.step_id}.{output_field}"
        if not store.exists(key):
            continue
        try:
            inner, _ = unwrap_graph(store.read(key))
        except GraphUnwrapError:
            continue
        return inner, key
    return None


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------


def run_graph_file(
    graph_path: str | Path,
    kv: dict[str, Any] | None = None,
    files: list[FileSpec] | None = None,
    *,
    autorun: bool = False,
    settings: RunSettings | None = None,
    provider: OracleProvider | None = None,
    reporter: Reporter | None = None,
    ask: Callable[[str], str] = Prompt.ask,
) -> list[RunReport]:
    """
    Load, seed and run a graph file; optionally run the graph it produces.

    Returns one report per executed graph. The store is printed at the end.
    """
    settings = settings or RunSettings.from_env()
    reporter = reporter or Reporter(settings.verbosity)
    kv = dict(kv or {})

    raw_graph, wrapper = load_graph_file(graph_path)
    if wrapper:
        reporter.note(f"Unwrapped StepGraph from field '{wrapper}'.")
    graph = compile_graph(raw_graph)

    # Files count as provided before anybody is prompted.
    file_values: dict[str, Any] = {}
    file_meta: dict[str, Any] = {}
    for spec in files or []:
        value, meta = read_input_file(spec, settings.max_input_file_mb)
        file_values[spec.key] = value
        file_meta[f"{spec.key}__meta"] = meta

    order = topological_order(graph)
    if not order:
        raise GraphUnwrapError("Graph has no steps.")
    prompted = prompt_for_missing_inputs(
        graph.steps[order[0]], {**kv, **file_values}, interactive=settings.interactive, ask=ask
    )

    store = VersionedStore()
    store.seed({**kv, **file_values, **prompted, **file_meta})

    orchestrator = Orchestrator(
        provider or OpenAIChatProvider(api_key=settings.api_key, base_url=settings.base_url),
        build_tool_registry(),
        store,
        settings=settings,
        reporter=reporter,
        artifacts=FileArtifactStore(settings.runs_dir),
    )
    reports = [orchestrator.run_graph(graph)]

    if autorun:
        candidate = extract_autorun_graph(graph, store)
        if candidate is None:
            reporter.note("--autorun: no StepGraph found in last step outputs.")
        else:
            produced, source = candidate
            reporter.note(f"--autorun: executing produced StepGraph from '{source}'.")
            follow_graph = compile_graph(produced)
            follow_order = topological_order(follow_graph)
            if not follow_order:
                raise GraphUnwrapError("Autorun graph has no steps.")
            first = follow_graph.steps[follow_order[0]]
            provided = {key: store.read(key) for key in first.inputs.required if store.exists(key)}
            store.seed(prompt_for_missing_inputs(first, provided, interactive=settings.interactive, ask=ask))
            reports.append(orchestrator.run_graph(follow_graph, run_id=f"{reports[0].run_id}-autorun"))

    reporter.store_dump(store.snapshot())
    return reports


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def _key_value(raw: str) -> tuple[str, str]:
    key, sep, value = raw.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"expected key=value, got: {raw!r}")
    return key, value


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="stepgraph", description="Run a step graph against an LLM oracle")
    parser.add_argument("--graph", required=True, type=Path, help="Path to the step-graph JSON file")
    parser.add_argument("--kv", action="append", type=_key_value, default=[], help="Seed key=value (repeatable)")
    parser.add_argument("--file", action="append", type=_key_value, default=[], help="Seed key=path as UTF-8 text")
    parser.add_argument("--fileb", action="append", type=_key_value, default=[], help="Seed key=path as base64")
    parser.add_argument("--filejson", action="append", type=_key_value, default=[], help="Seed key=path as parsed JSON")
    parser.add_argument("--stdin-to", default=None, metavar="KEY", help="Seed KEY with piped stdin")
    parser.add_argument("--autorun", action="store_true", help="Run a StepGraph produced by the last step")
    parser.add_argument("--run-id", default=None, help="Artifact directory name (default: timestamp)")
    parser.add_argument("--model", default=None, help="Override MODEL")
    parser.add_argument("--quiet", action="store_true", help="Only print halts")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    try:
        settings = RunSettings.from_env()
    except ValueError as exc:
        Reporter().halt(f"Invalid configuration: {exc}")
        return 2
    if args.model:
        settings.model = args.model
    if args.run_id:
        settings.run_id = args.run_id
    if args.quiet:
        settings.verbosity.quiet = True
    reporter = Reporter(settings.verbosity)

    kv: dict[str, Any] = dict(args.kv)
    if args.stdin_to and not sys.stdin.isatty():
        kv[args.stdin_to] = sys.stdin.read()

    files = [
        FileSpec(key=key, path=Path(path), mode=mode)
        for option, mode in FILE_MODES.items()
        for key, path in getattr(args, option)
    ]

    try:
        run_graph_file(args.graph, kv, files, autorun=args.autorun, settings=settings, reporter=reporter)
    except StepGraphError as exc:
        reporter.halt(f"{type(exc).__name__}: {exc}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
