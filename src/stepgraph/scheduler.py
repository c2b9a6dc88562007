# scheduler.py
# Topological ordering of a step graph (Kahn's algorithm).

from collections import deque

from stepgraph.errors import SchedulingError
from stepgraph.models import StepGraph


def topological_order(graph: StepGraph) -> list[str]:
    """
    Linear execution order for `graph`.

    Nodes that reach zero in-degree together are emitted first-in-first-out,
    seeded in declaration order, so the order is deterministic for a fixed
    edge list. Raises SchedulingError when an edge names an unknown step or
    when a cycle leaves nodes unemitted.
    """
    indegree: dict[str, int] = {step_id: 0 for step_id in graph.steps}
    adjacency: dict[str, list[str]] = {step_id: [] for step_id in graph.steps}

    for edge in graph.edges:
        for endpoint in (edge.from_, edge.to):
            if endpoint not in indegree:
                raise SchedulingError(
                    f"Graph not fully orderable: edge {edge.from_} -> {edge.to} "
                    f"references unknown step '{endpoint}'"
                )
        indegree[edge.to] += 1
        adjacency[edge.from_].append(edge.to)

    queue = deque(step_id for step_id, degree in indegree.items() if degree == 0)
    order: list[str] = []
    while queue:
        current = queue.popleft()
        order.append(current)
        for nxt in adjacency[current]:
            indegree[nxt] -= 1
            if indegree[nxt] == 0:
                queue.append(nxt)

    if len(order) != len(graph.steps):
        stuck = sorted(step_id for step_id, degree in indegree.items() if degree > 0)
        raise SchedulingError(
            f"Graph not fully orderable: {len(order)}/{len(graph.steps)} steps emitted; "
            f"cycle through {', '.join(stuck)}"
        )
    return order
