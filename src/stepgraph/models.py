# models.py
# Data contracts for the step-graph engine.
# No business logic lives here. Pure schema and validation.

from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

ExecutorType = Literal["reactive", "procedural", "subgraph"]
AttachMode = Literal["before", "after", "replace", "fanout"]

_LEGACY_EXECUTORS = {"intelligent": "reactive", "workflow": "subgraph"}


# ---------------------------------------------------------------------------
# Step graph
# ---------------------------------------------------------------------------


class StepInputs(BaseModel):
    """Store keys read before a step runs."""

    required: list[str] = Field(default_factory=list)
    optional: list[str] = Field(default_factory=list)

    def all_keys(self) -> list[str]:
        return self.required + self.optional


class ToolBudget(BaseModel):
    """Optional ceilings. Only `calls` is enforced; the rest are informational."""

    tokens: int | None = None
    calls: int | None = Field(default=None, ge=0)
    wall_time_s: float | None = None


class FailurePolicy(BaseModel):
    retries: int | None = None
    on_fail: Literal["emit_remediation", "halt"] = "emit_remediation"


class StepContract(BaseModel):
    """One schema-bound unit of oracle-driven work."""

    step_id: str = Field(..., description="Unique id; must equal the key the step is stored under.")
    executor: ExecutorType = Field(default="reactive", description="Only 'reactive' is executable today.")
    goal: str = Field(default="", description="Free-text instruction shown to the oracle.")
    inputs: StepInputs = Field(default_factory=StepInputs)
    outputs_schema: dict[str, str] = Field(
        default_factory=dict, description="Output field name → informal type hint."
    )
    determinism: Literal["low", "high"] = "low"
    invariants: list[str] = Field(default_factory=list, description="Predicates checked after output write.")
    tool_budget: ToolBudget | None = None
    failure_policy: FailurePolicy | None = None
    allowed_branch_intents: list[str] | None = None

    @field_validator("executor", mode="before")
    @classmethod
    def _normalize_executor(cls, value: Any) -> Any:
        if isinstance(value, str):
            return _LEGACY_EXECUTORS.get(value, value)
        return value


class Edge(BaseModel):
    """Directed dependency: `from` must run before `to`."""

    model_config = ConfigDict(populate_by_name=True)

    from_: str = Field(..., alias="from")
    to: str


class StepGraph(BaseModel):
    steps: dict[str, StepContract] = Field(default_factory=dict)
    edges: list[Edge] = Field(default_factory=list)

    def dump(self) -> dict[str, Any]:
        """JSON-ready dict using the wire key `from` for edges."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Patches
# ---------------------------------------------------------------------------


class AttachPatch(BaseModel):
    """Graph surgery splicing `steps`/`edges` around `anchor_step`."""

    op: Literal["attach"] = "attach"
    mode: AttachMode
    anchor_step: str
    steps: dict[str, StepContract] = Field(default_factory=dict)
    edges: list[Edge] = Field(default_factory=list)


class ProposalMetrics(BaseModel):
    step_count: int = 0
    edge_count: int = 0


class PatchProposal(BaseModel):
    """A subgraph proposed during a step, applied at most once by handle."""

    handle: str
    approved: bool
    issues: list[str] = Field(default_factory=list)
    compiled_subgraph: StepGraph | None = None
    attach_patch: AttachPatch | None = Field(
        default=None, validation_alias=AliasChoices("attach_patch", "patch")
    )
    metrics: ProposalMetrics = Field(default_factory=ProposalMetrics)


# ---------------------------------------------------------------------------
# Tools and oracle
# ---------------------------------------------------------------------------


class ToolResult(BaseModel):
    """Structured tool answer. Failures are data, never raised."""

    name: str
    ok: bool
    output: Any = Field(default_factory=dict)
    error: str | None = None


class ToolCall(BaseModel):
    """A tool request emitted by the oracle. `arguments` is the raw JSON string."""

    id: str
    name: str
    arguments: str = "{}"


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class Completion(BaseModel):
    content: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)
    finish_reason: str | None = None
    usage: Usage | None = None


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


class Verdict(BaseModel):
    passed: bool = True
    intent: str | None = None
    reason: str | None = Field(default=None, description="Literal text of the failing invariant.")
    warnings: list[str] = Field(default_factory=list)
