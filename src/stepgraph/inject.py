# inject.py
# The workflow_inject_subgraph tool lets a step propose a subgraph for splicing.
#
# The tool only validates and compiles. It never touches the live graph:
# approval is advisory until the step's final output names the returned
# handle, at which point the execution loop applies the patch.

import random
import re
import string
import time
from typing import Any

from stepgraph.compiler import compile_graph
from stepgraph.errors import CompileError
from stepgraph.models import ProposalMetrics, StepContract, StepGraph, ToolResult
from stepgraph.tools import ToolSpec

TOOL_NAME = "workflow_inject_subgraph"
ATTACH_MODES = ("before", "after", "replace", "fanout")
DEFAULT_MAX_STEPS = 8
DEFAULT_MAX_EDGES = 24

_BASE36 = string.digits + string.ascii_lowercase


def _base36(number: int) -> str:
    digits = ""
    while number:
        number, rem = divmod(number, 36)
        digits = _BASE36[rem] + digits
    return digits or "0"


def make_handle() -> str:
    suffix = "".join(random.choices(_BASE36, k=6))
    return f"subgraph_{_base36(int(time.time() * 1000))}_{suffix}"


def _snake(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", value.strip().lower()).strip("_")


def coerce_to_step_graph(raw: Any) -> dict[str, Any]:
    """
    Accept a proper StepGraph dict or the simplified
    {steps: [{id|step_id, goal, type?}], edges: [{from, to}]} shape.
    """
    if not isinstance(raw, dict):
        return {"steps": {}, "edges": []}

    steps = raw.get("steps")
    if isinstance(steps, dict):
        return {"steps": steps, "edges": list(raw.get("edges") or [])}

    coerced: dict[str, Any] = {"steps": {}, "edges": []}
    if isinstance(steps, list):
        for index, node in enumerate(steps):
            node = node if isinstance(node, dict) else {}
            step_id = _snake(str(node.get("step_id") or node.get("id") or "")) or f"s{index}"
            if node.get("goal"):
                goal = node["goal"]
            elif node.get("type"):
                goal = f"Use {node['type']} with params to satisfy subtask {step_id}."
            else:
                goal = f"Perform subtask {step_id}."
            coerced["steps"][step_id] = StepContract(
                step_id=step_id,
                executor="reactive",
                goal=goal,
                outputs_schema={"result": "string"},
            ).model_dump()

    for edge in raw.get("edges") or []:
        if isinstance(edge, dict) and isinstance(edge.get("from"), str) and isinstance(edge.get("to"), str):
            coerced["edges"].append({"from": _snake(edge["from"]), "to": _snake(edge["to"])})
    return coerced


def _inject_subgraph(args: dict[str, Any]) -> ToolResult:
    issues: list[str] = []

    reason = args.get("reason")
    if not reason or not isinstance(reason, str):
        issues.append("reason missing")

    attach_point = args.get("attach_point") if isinstance(args.get("attach_point"), dict) else {}
    mode = attach_point.get("mode")
    anchor = attach_point.get("anchor_step")
    if not mode or not anchor:
        issues.append("attach_point.mode and attach_point.anchor_step required")
    elif mode not in ATTACH_MODES:
        issues.append(f"attach_point.mode must be one of {', '.join(ATTACH_MODES)}")

    compiled: StepGraph | None = None
    if not issues:
        try:
            compiled = compile_graph(coerce_to_step_graph(args.get("subgraph")))
        except CompileError as exc:
            issues.append(f"compileGraph failed: {exc}")

    metrics = ProposalMetrics(
        step_count=len(compiled.steps) if compiled else 0,
        edge_count=len(compiled.edges) if compiled else 0,
    )
    limits = args.get("limits") if isinstance(args.get("limits"), dict) else {}
    max_steps = DEFAULT_MAX_STEPS if limits.get("max_steps") is None else int(limits["max_steps"])
    max_edges = DEFAULT_MAX_EDGES if limits.get("max_edges") is None else int(limits["max_edges"])
    if metrics.step_count > max_steps:
        issues.append(f"too many steps: {metrics.step_count} > {max_steps}")
    if metrics.edge_count > max_edges:
        issues.append(f"too many edges: {metrics.edge_count} > {max_edges}")

    patch = None
    if compiled is not None:
        graph = compiled.dump()
        patch = {
            "op": "attach",
            "mode": mode,
            "anchor_step": anchor,
            "steps": graph["steps"],
            "edges": graph["edges"],
        }

    return ToolResult(
        name=TOOL_NAME,
        ok=True,
        output={
            "approved": not issues,
            "issues": issues,
            "compiled_subgraph": compiled.dump() if compiled else None,
            "patch": patch,
            "handle": make_handle(),
            "metrics": metrics.model_dump(),
        },
    )


WORKFLOW_INJECT_SUBGRAPH = ToolSpec(
    TOOL_NAME,
    _inject_subgraph,
    description="Propose a subgraph to splice into the running workflow; returns a handle.",
    input_schema={
        "reason": "string — why a subflow is needed",
        "attach_point": "{ mode:'before|after|replace|fanout', anchor_step:string }",
        "subgraph": (
            "StepGraph — {steps, edges}. Also accepts simplified "
            "{steps:[{id|step_id, goal, type?}], edges:[{from,to}]}"
        ),
        "limits": "{ max_steps?: number, max_edges?: number }",
        "metadata": "{ intent?: string, tags?: string[] }",
    },
    output_schema={
        "approved": "boolean",
        "issues": "string[]",
        "compiled_subgraph": "StepGraph|null",
        "patch": "object (attach patch proposal)",
        "handle": "string (proposal id)",
        "metrics": "{ step_count:number, edge_count:number }",
    },
)
