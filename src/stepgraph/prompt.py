# prompt.py
# Renders the opening transcript for a step: one system message stating the
# contract, one user message with the current input values.

import json

from stepgraph.models import StepContract
from stepgraph.store import VersionedStore
from stepgraph.transcript import SystemMessage, Transcript, UserMessage

MISSING = "<MISSING>"
PATCH_HANDLE_FIELD = "apply_patch_handle"

STRICT_JSON_NUDGE = "Return outputs as strict JSON only, no prose."


def render_metaprompt(
    step: StepContract,
    store: VersionedStore,
    *,
    patch_tool: str | None = None,
) -> Transcript:
    system_lines = [
        f"You are a precise agent executing step_id={step.step_id}.",
        f"Goal: {step.goal}",
        f"You MUST satisfy invariants: {'; '.join(step.invariants) or 'none'}",
        "Output strictly as JSON matching outputs_schema keys: " + ", ".join(step.outputs_schema),
    ]
    if patch_tool:
        system_lines.append(
            f"If a {patch_tool} proposal was approved and should run now, add "
            f'"{PATCH_HANDLE_FIELD}": "<handle>" to the final JSON.'
        )

    input_lines = []
    for key in step.inputs.all_keys():
        value = store.read(key)
        rendered = json.dumps(value, default=str) if store.exists(key) else MISSING
        input_lines.append(f"- {key}: {rendered}")

    user_lines = [
        "INPUTS:",
        *input_lines,
        "",
        "INSTRUCTIONS:",
        "- If you need external info, propose tool calls via function-calling.",
        "- Otherwise, return JSON with exactly the required fields.",
        "",
        "SCHEMA HINTS:",
        json.dumps(step.outputs_schema, indent=2),
    ]

    return Transcript(
        [
            SystemMessage(content="\n".join(system_lines)),
            UserMessage(content="\n".join(user_lines)),
        ]
    )
