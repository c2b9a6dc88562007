# Test doubles shared across the suite: a scripted oracle plus small
# builders for completions, steps and graphs.

import json
from collections import deque

from stepgraph.models import Completion, StepContract, StepGraph, StepInputs, ToolCall


class ScriptedProvider:
    """Replays queued completions and records every request it receives."""

    def __init__(self, *completions: Completion) -> None:
        self.completions = deque(completions)
        self.requests: list[dict] = []

    def complete(self, **request) -> Completion:
        self.requests.append(request)
        if not self.completions:
            raise AssertionError("oracle called more often than scripted")
        return self.completions.popleft()


def final(**outputs) -> Completion:
    return Completion(content=json.dumps(outputs), finish_reason="stop")


def calls(*requests: tuple[str, dict | str], prefix: str = "call") -> Completion:
    tool_calls = [
        ToolCall(id=f"{prefix}_{i}", name=name, arguments=args if isinstance(args, str) else json.dumps(args))
        for i, (name, args) in enumerate(requests)
    ]
    return Completion(tool_calls=tool_calls, finish_reason="tool_calls")


def make_step(step_id: str, outputs=("result",), **kwargs) -> StepContract:
    inputs = kwargs.pop("inputs", None)
    return StepContract(
        step_id=step_id,
        goal=kwargs.pop("goal", f"Do {step_id}."),
        inputs=StepInputs(**inputs) if isinstance(inputs, dict) else (inputs or StepInputs()),
        outputs_schema={name: "string" for name in outputs},
        **kwargs,
    )


def make_graph(*steps: StepContract, edges=()) -> StepGraph:
    return StepGraph.model_validate(
        {
            "steps": {step.step_id: step.model_dump() for step in steps},
            "edges": [{"from": a, "to": b} for a, b in edges],
        }
    )

