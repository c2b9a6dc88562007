# executor.py
# Step execution loop and graph runner.
#
# The Orchestrator is the kernel. The oracle is a passive responder. This
# class owns all control flow, tool dispatch, store writes and branching.
#
# Control flow per step:
#   render transcript → [repair → oracle → tool round | final JSON]*
#   → write outputs → apply named patch → verify invariants → remediation
#
# Nested work (applied patches, remediation subgraphs) runs from an explicit
# stack of frames, never by recursion. A frame's follow-ups finish before the
# next step of that frame starts.
#
# All terminal output is delegated to display.py. No formatting here.

import json
import re
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from stepgraph.artifacts import ArtifactSink, NullArtifactStore, write_json
from stepgraph.branching import branch
from stepgraph.compiler import compile_graph
from stepgraph.config import RunSettings
from stepgraph.display import Reporter
from stepgraph.errors import (
    IterationBudgetExceeded,
    OracleError,
    PatchError,
    SchedulingError,
    UnsupportedExecutorError,
)
from stepgraph.inject import TOOL_NAME as PATCH_TOOL_NAME
from stepgraph.llm import OracleProvider
from stepgraph.models import (
    Completion,
    PatchProposal,
    StepContract,
    StepGraph,
    ToolCall,
    ToolResult,
    Verdict,
)
from stepgraph.patch import apply_patch
from stepgraph.prompt import PATCH_HANDLE_FIELD, STRICT_JSON_NUDGE, render_metaprompt
from stepgraph.registry import tool_definitions
from stepgraph.scheduler import topological_order
from stepgraph.store import VersionedStore
from stepgraph.tools import ToolRegistry
from stepgraph.transcript import AssistantMessage, Transcript, UserMessage, tool_reply
from stepgraph.verify import verify

REUSED_NOTE = "reused_cached_result"
BUDGET_EXCEEDED = "max_tool_exec_per_step_exceeded"
UNKNOWN_TOOL = "unknown_tool"
INVALID_ARGUMENTS = "invalid_tool_arguments"

_FENCE_RE = re.compile(r"^```(?:json)?\s*(?P<body>.*?)\s*```$", re.DOTALL)


# ---------------------------------------------------------------------------
# Run records
# ---------------------------------------------------------------------------


@dataclass
class FollowUp:
    """A subgraph to run right after the step that produced it."""

    kind: str  # "patch" | "remediation"
    label: str
    graph: StepGraph
    order: list[str]


@dataclass
class StepOutcome:
    step_id: str
    scope: str
    iterations: int
    tool_executions: int
    written: list[str]
    verdict: Verdict
    applied_patch: str | None = None
    follow_ups: list[FollowUp] = field(default_factory=list)


@dataclass
class Frame:
    """One level of the execution worklist: a graph and its pending steps."""

    graph: StepGraph
    queue: deque[str]
    depth: int = 0
    path: tuple[str, ...] = ()
    label: str = "main"
    done: set[str] = field(default_factory=set)
    position: int = 0

    def scope_of(self, step_id: str) -> str:
        return "/".join(self.path + (step_id,))

    def reschedule(self) -> None:
        self.queue = deque(step_id for step_id in topological_order(self.graph) if step_id not in self.done)


@dataclass
class RunReport:
    run_id: str
    order: list[str]
    outcomes: list[StepOutcome]
    graph: StepGraph

    @property
    def executed(self) -> list[str]:
        return [outcome.step_id for outcome in self.outcomes]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def default_run_id() -> str:
    return re.sub(r"[:.+]", "-", datetime.now(timezone.utc).isoformat())


def parse_json_object(content: str) -> dict[str, Any] | None:
    """
    Parse oracle content as a single JSON object.

    A surrounding Markdown code fence is stripped. Returns None for empty
    content, invalid JSON, or JSON that is not an object.
    """
    text = (content or "").strip()
    fenced = _FENCE_RE.match(text)
    if fenced:
        text = fenced.group("body")
    if not text:
        return None
    try:
        value = json.loads(text)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


def _parse_arguments(raw: str) -> dict[str, Any] | None:
    try:
        value = json.loads(raw or "{}")
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


def _synthetic(call: ToolCall, error: str) -> ToolResult:
    return ToolResult(name=call.name, ok=False, output={}, error=error)


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class Orchestrator:
    """
    Runs a compiled step graph against an oracle, a tool registry and a store.

    Example:
        orchestrator = Orchestrator(
            provider=OpenAIChatProvider(api_key=key),
            tools=build_tool_registry(),
            store=VersionedStore(),
        )
        report = orchestrator.run_graph(compile_graph(draft))
    """

    def __init__(
        self,
        provider: OracleProvider,
        tools: ToolRegistry,
        store: VersionedStore,
        *,
        settings: RunSettings | None = None,
        reporter: Reporter | None = None,
        artifacts: ArtifactSink | None = None,
    ) -> None:
        self.provider = provider
        self.tools = tools
        self.store = store
        self.settings = settings or RunSettings()
        self.reporter = reporter or Reporter(self.settings.verbosity)
        self.artifacts = artifacts or NullArtifactStore()
        self.run_id = self.settings.run_id or default_run_id()

    # ------------------------------------------------------------------
    # Artifacts (best-effort)
    # ------------------------------------------------------------------

    def _save(self, scope: str, file_name: str, payload: Any) -> None:
        try:
            write_json(self.artifacts, self.run_id, scope, file_name, payload)
        except OSError as exc:
            self.reporter.warning(f"artifact {scope}/{file_name} not persisted: {exc}")

    # ------------------------------------------------------------------
    # Graph runner
    # ------------------------------------------------------------------

    def run_graph(self, graph: StepGraph, run_id: str | None = None) -> RunReport:
        """
        Execute every step in topological order, plus any follow-ups.

        Raises CompileError, SchedulingError, OracleError,
        IterationBudgetExceeded or UnsupportedExecutorError; nothing else
        escapes. Store writes made before a failure are kept.
        """
        if run_id:
            self.run_id = run_id
        graph = compile_graph(graph)
        order = topological_order(graph)

        self.reporter.run_start(self.run_id, self.settings.model, order)
        self._save("", "graph.json", graph.dump())

        root = Frame(graph=graph, queue=deque(order))
        stack = [root]
        outcomes: list[StepOutcome] = []

        while stack:
            frame = stack[-1]
            if not frame.queue:
                stack.pop()
                continue

            step_id = frame.queue.popleft()
            step = frame.graph.steps[step_id]
            frame.done.add(step_id)
            frame.position += 1
            self.reporter.step_start(
                frame.position,
                frame.position + len(frame.queue),
                step_id,
                step.goal,
                frame.scope_of(step_id),
            )

            outcome = self.run_step(step, frame)
            outcomes.append(outcome)
            self.reporter.step_done(step_id)

            for follow_up in reversed(outcome.follow_ups):
                stack.append(
                    Frame(
                        graph=follow_up.graph,
                        queue=deque(follow_up.order),
                        depth=frame.depth + 1,
                        path=frame.path + (step_id,),
                        label=follow_up.label,
                    )
                )

        self.reporter.run_done(len(outcomes))
        return RunReport(run_id=self.run_id, order=order, outcomes=outcomes, graph=root.graph)

    # ------------------------------------------------------------------
    # Step loop
    # ------------------------------------------------------------------

    def _tool_ceiling(self, step: StepContract) -> int:
        if step.tool_budget is not None and step.tool_budget.calls is not None:
            return step.tool_budget.calls
        return self.settings.max_tool_exec_per_step

    def _complete(self, request: dict[str, Any]) -> Completion:
        try:
            return self.provider.complete(**request)
        except OracleError:
            raise
        except Exception as exc:
            raise OracleError(f"LLM request failed: {exc}") from exc

    def run_step(self, step: StepContract, frame: Frame | None = None) -> StepOutcome:
        """
        Negotiate with the oracle until it emits a JSON result for `step`.

        Follow-up subgraphs are returned on the outcome; run_graph executes
        them. Raises IterationBudgetExceeded when no result arrives within
        the iteration ceiling.
        """
        if step.executor != "reactive":
            raise UnsupportedExecutorError(
                f"Step '{step.step_id}' uses executor '{step.executor}'; only 'reactive' is supported"
            )
        if frame is None:
            frame = Frame(graph=StepGraph(steps={step.step_id: step}), queue=deque(), done={step.step_id})

        scope = frame.scope_of(step.step_id)
        patch_tool = PATCH_TOOL_NAME if PATCH_TOOL_NAME in self.tools else None
        transcript = render_metaprompt(step, self.store, patch_tool=patch_tool)
        definitions = tool_definitions(self.tools)

        seen_calls: dict[str, ToolResult] = {}
        proposals: dict[str, PatchProposal] = {}
        executed = 0
        ceiling = self._tool_ceiling(step)
        max_iterations = self.settings.max_iterations_per_step

        for iteration in range(max_iterations):
            self.reporter.iteration(iteration, "thinking")
            repaired = transcript.repair()
            if repaired:
                self.reporter.repaired(repaired)

            request = {
                "model": self.settings.model,
                "messages": transcript.to_openai(),
                "tools": definitions or None,
                "tool_choice": "auto" if definitions else None,
                "temperature": self.settings.temperature,
                "max_tokens": self.settings.max_tokens,
                "response_format": {"type": "json_object"},
            }
            self._save(scope, f"iter_{iteration}_request.json", request)
            completion = self._complete(request)
            self._save(scope, f"iter_{iteration}_response.json", completion.model_dump())

            # ── Tool round ───────────────────────────────────────────
            if completion.tool_calls:
                self.reporter.tool_calls(iteration, [call.name for call in completion.tool_calls])
                transcript.append(AssistantMessage(content=completion.content, tool_calls=completion.tool_calls))
                for call in completion.tool_calls:
                    executed += self._answer_call(
                        call, transcript, scope, seen_calls, proposals, budget_left=executed < ceiling
                    )
                self.reporter.iteration(iteration, "consuming tool results")
                continue

            # ── Final output ─────────────────────────────────────────
            parsed = parse_json_object(completion.content)
            if parsed is None:
                self.reporter.json_nudge(iteration)
                transcript.append(AssistantMessage(content=completion.content))
                transcript.append(UserMessage(content=STRICT_JSON_NUDGE))
                continue

            written = []
            for output_field in step.outputs_schema:
                if output_field in parsed:
                    self.store.write(f"{step.step_id}.{output_field}", parsed[output_field])
                    written.append(output_field)
            self._save(scope, "outputs.json", parsed)
            self.reporter.outputs_written(iteration, written)

            outcome = StepOutcome(
                step_id=step.step_id,
                scope=scope,
                iterations=iteration + 1,
                tool_executions=executed,
                written=written,
                verdict=Verdict(),
            )

            handle = parsed.get(PATCH_HANDLE_FIELD)
            if handle:
                self._apply_handle(str(handle), proposals, frame, scope, outcome)

            outcome.verdict = verify(step, self.store)
            self._save(scope, "verdict.json", outcome.verdict.model_dump())
            self.reporter.verdict(step.step_id, outcome.verdict)
            if not outcome.verdict.passed:
                self._remediate(step, outcome, frame)
            return outcome

        raise IterationBudgetExceeded(step.step_id, max_iterations)

    # ------------------------------------------------------------------
    # Tool dispatch
    # ------------------------------------------------------------------

    def _answer_call(
        self,
        call: ToolCall,
        transcript: Transcript,
        scope: str,
        seen_calls: dict[str, ToolResult],
        proposals: dict[str, PatchProposal],
        *,
        budget_left: bool,
    ) -> int:
        """Append one tool reply for `call`. Returns 1 if a tool was invoked."""
        signature = f"{call.name}::{call.arguments}"

        if signature in seen_calls:
            self.reporter.tool_call(call.name, call.arguments, "reused")
            transcript.append(tool_reply(call, {**seen_calls[signature].model_dump(), "note": REUSED_NOTE}))
            return 0

        if not budget_left:
            self.reporter.tool_call(call.name, call.arguments, "budget exceeded")
            transcript.append(tool_reply(call, _synthetic(call, BUDGET_EXCEEDED)))
            return 0

        tool = self.tools.get(call.name)
        if tool is None:
            self.reporter.tool_call(call.name, call.arguments, "unknown tool")
            transcript.append(tool_reply(call, _synthetic(call, UNKNOWN_TOOL)))
            return 0

        args = _parse_arguments(call.arguments)
        if args is None:
            self.reporter.tool_call(call.name, call.arguments, "invalid arguments")
            transcript.append(tool_reply(call, _synthetic(call, INVALID_ARGUMENTS)))
            return 0

        self.reporter.tool_call(call.name, call.arguments)
        result = tool.invoke(args)
        seen_calls[signature] = result
        self._save(scope, f"tool_{call.name}_{call.id}.json", {"args": args, "result": result.model_dump()})

        if call.name == PATCH_TOOL_NAME and result.ok:
            self._record_proposal(result, proposals)

        transcript.append(tool_reply(call, result))
        return 1

    def _record_proposal(self, result: ToolResult, proposals: dict[str, PatchProposal]) -> None:
        try:
            proposal = PatchProposal.model_validate(result.output)
        except ValidationError as exc:
            self.reporter.warning(f"ignoring malformed subgraph proposal: {exc.error_count()} error(s)")
            return
        proposals[proposal.handle] = proposal

    # ------------------------------------------------------------------
    # Patches and remediation
    # ------------------------------------------------------------------

    def _reject_patch(self, scope: str, handle: str, reason: str) -> None:
        self._save(scope, "patch_error.json", {"handle": handle, "error": reason})
        self.reporter.patch_rejected(handle, reason)

    def _apply_handle(
        self,
        handle: str,
        proposals: dict[str, PatchProposal],
        frame: Frame,
        scope: str,
        outcome: StepOutcome,
    ) -> None:
        """Consume the proposal named by `handle` and splice it into `frame`."""
        proposal = proposals.pop(handle, None)
        if proposal is None:
            self._reject_patch(scope, handle, "unknown patch handle")
            return
        if not proposal.approved:
            self._reject_patch(scope, handle, "proposal not approved: " + "; ".join(proposal.issues))
            return
        if proposal.attach_patch is None or proposal.compiled_subgraph is None:
            self._reject_patch(scope, handle, "proposal carries no compiled subgraph")
            return
        if frame.depth >= self.settings.max_nesting_depth:
            self._reject_patch(scope, handle, f"nesting depth {frame.depth} reached")
            return

        subgraph = proposal.compiled_subgraph
        try:
            patched = apply_patch(frame.graph, proposal.attach_patch)
            sub_order = topological_order(subgraph)
            topological_order(patched)
        except (PatchError, SchedulingError) as exc:
            self._reject_patch(scope, handle, str(exc))
            return

        frame.graph = patched
        frame.done.update(subgraph.steps)
        frame.reschedule()
        self._save(scope, "patched_graph.json", patched.dump())

        outcome.applied_patch = handle
        outcome.follow_ups.append(FollowUp(kind="patch", label=f"patch:{handle}", graph=subgraph, order=sub_order))
        self.reporter.patch_applied(handle, proposal.attach_patch.mode, proposal.attach_patch.anchor_step, sub_order)

    def _remediate(self, step: StepContract, outcome: StepOutcome, frame: Frame) -> None:
        intent = outcome.verdict.intent
        if step.failure_policy is not None and step.failure_policy.on_fail == "halt":
            return
        if step.allowed_branch_intents is not None and intent not in step.allowed_branch_intents:
            self.reporter.warning(f"intent {intent!r} not allowed for step {step.step_id}; no remediation")
            return

        subgraph = branch(intent, step)
        if not subgraph.steps:
            return
        if frame.depth >= self.settings.max_nesting_depth:
            self.reporter.warning(
                f"remediation {intent!r} for {step.step_id} skipped: nesting depth {frame.depth} reached"
            )
            return

        order = list(subgraph.steps)
        outcome.follow_ups.append(FollowUp(kind="remediation", label=f"branch:{intent}", graph=subgraph, order=order))
        self.reporter.branching(intent or "", order)
