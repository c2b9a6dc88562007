# patch.py
# Graph surgery: splice a subgraph into a step graph around an anchor step.
#
# Pure function of (graph, patch). No execution side effects; the caller
# re-schedules afterwards.
#
#   after / fanout : anchor → every entry node
#   before         : every exit node → anchor
#   replace        : old predecessors → entries, exits → old successors,
#                    anchor and all its edges removed

from stepgraph.errors import PatchError
from stepgraph.models import AttachPatch, Edge, StepContract, StepGraph


def entry_nodes(steps: dict[str, StepContract], edges: list[Edge]) -> list[str]:
    """Subgraph nodes with no incoming edge, counting only `edges`."""
    indegree = {step_id: 0 for step_id in steps}
    for edge in edges:
        if edge.to in indegree:
            indegree[edge.to] += 1
    return [step_id for step_id, degree in indegree.items() if degree == 0]


def exit_nodes(steps: dict[str, StepContract], edges: list[Edge]) -> list[str]:
    """Subgraph nodes with no outgoing edge, counting only `edges`."""
    outdegree = {step_id: 0 for step_id in steps}
    for edge in edges:
        if edge.from_ in outdegree:
            outdegree[edge.from_] += 1
    return [step_id for step_id, degree in outdegree.items() if degree == 0]


def apply_patch(graph: StepGraph, patch: AttachPatch) -> StepGraph:
    """
    Return a new graph with `patch` spliced in. `graph` is not modified.

    Raises PatchError on a step id collision or an anchor absent from the
    target graph.
    """
    for step_id in patch.steps:
        if step_id in graph.steps:
            raise PatchError(f"applyPatch: step id collision: {step_id}")
    if patch.anchor_step not in graph.steps:
        raise PatchError(f"applyPatch: anchor step '{patch.anchor_step}' is not in the graph")

    steps = dict(graph.steps)
    steps.update(patch.steps)
    edges = list(graph.edges) + list(patch.edges)

    entries = entry_nodes(patch.steps, patch.edges)
    exits = exit_nodes(patch.steps, patch.edges)
    anchor = patch.anchor_step

    if patch.mode in ("after", "fanout"):
        edges.extend(Edge(from_=anchor, to=entry) for entry in entries)
    elif patch.mode == "before":
        edges.extend(Edge(from_=exit_, to=anchor) for exit_ in exits)
    elif patch.mode == "replace":
        predecessors = [edge.from_ for edge in edges if edge.to == anchor]
        successors = [edge.to for edge in edges if edge.from_ == anchor]
        edges = [edge for edge in edges if anchor not in (edge.from_, edge.to)]
        edges.extend(Edge(from_=pred, to=entry) for pred in predecessors for entry in entries)
        edges.extend(Edge(from_=exit_, to=succ) for exit_ in exits for succ in successors)
        del steps[anchor]

    return StepGraph(steps=steps, edges=edges)
