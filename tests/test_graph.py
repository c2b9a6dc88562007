import pytest

from stepgraph.compiler import compile_graph
from stepgraph.errors import CompileError, PatchError, SchedulingError
from stepgraph.models import AttachPatch, Edge, StepGraph
from stepgraph.patch import apply_patch, entry_nodes, exit_nodes
from stepgraph.scheduler import topological_order
from tests.fakes import make_graph, make_step

# ---------------------------------------------------------------------------
# Compiler
# ---------------------------------------------------------------------------


def test_compile_accepts_wire_shape():
    graph = compile_graph(
        {
            "steps": {
                "plan": {
                    "step_id": "plan",
                    "executor": "intelligent",
                    "goal": "Plan the research.",
                    "inputs": {"required": ["topic"]},
                    "outputs_schema": {"outline": "string"},
                }
            },
            "edges": [],
        }
    )
    assert isinstance(graph, StepGraph)
    assert graph.steps["plan"].executor == "reactive"


def test_compile_rejects_key_mismatch():
    step = make_step("real_id")
    with pytest.raises(CompileError, match="step_id mismatch for alias"):
        compile_graph({"steps": {"alias": step.model_dump()}})


def test_compile_rejects_empty_outputs_schema():
    step = make_step("empty", outputs=())
    with pytest.raises(CompileError, match="outputs_schema missing for empty"):
        compile_graph(StepGraph(steps={"empty": step}))


def test_compile_wraps_validation_errors():
    with pytest.raises(CompileError, match="malformed"):
        compile_graph({"steps": {"x": {"goal": "no id"}}})


def test_compile_does_not_check_edges():
    graph = compile_graph({"steps": {"a": make_step("a").model_dump()}, "edges": [{"from": "a", "to": "ghost"}]})
    assert graph.edges[0].to == "ghost"


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------


def test_topological_order_respects_edges():
    graph = make_graph(make_step("c"), make_step("b"), make_step("a"), edges=[("a", "b"), ("b", "c")])
    assert topological_order(graph) == ["a", "b", "c"]


def test_ties_follow_declaration_order():
    graph = make_graph(make_step("x"), make_step("y"), make_step("z"))
    assert topological_order(graph) == ["x", "y", "z"]


def test_diamond_is_fifo():
    graph = make_graph(
        make_step("root"),
        make_step("left"),
        make_step("right"),
        make_step("join"),
        edges=[("root", "right"), ("root", "left"), ("left", "join"), ("right", "join")],
    )
    assert topological_order(graph) == ["root", "right", "left", "join"]


def test_cycle_raises():
    graph = make_graph(make_step("a"), make_step("b"), edges=[("a", "b"), ("b", "a")])
    with pytest.raises(SchedulingError, match="not fully orderable"):
        topological_order(graph)


def test_dangling_edge_raises():
    graph = StepGraph(steps={"a": make_step("a")}, edges=[Edge(from_="a", to="ghost")])
    with pytest.raises(SchedulingError, match="ghost"):
        topological_order(graph)


def test_empty_graph_orders_to_empty_list():
    assert topological_order(StepGraph()) == []


# ---------------------------------------------------------------------------
# Patch engine
# ---------------------------------------------------------------------------


@pytest.fixture
def chain():
    return make_graph(make_step("a"), make_step("b"), make_step("c"), edges=[("a", "b"), ("b", "c")])


def _patch(mode, anchor="b", steps=("p", "q")):
    sub = [make_step(step_id) for step_id in steps]
    edges = [Edge(from_=steps[i], to=steps[i + 1]) for i in range(len(steps) - 1)]
    return AttachPatch(mode=mode, anchor_step=anchor, steps={s.step_id: s for s in sub}, edges=edges)


def _pairs(graph):
    return {(edge.from_, edge.to) for edge in graph.edges}


def test_entry_and_exit_nodes():
    patch = _patch("after", steps=("p", "q", "r"))
    assert entry_nodes(patch.steps, patch.edges) == ["p"]
    assert exit_nodes(patch.steps, patch.edges) == ["r"]


def test_after_links_anchor_to_entries(chain):
    patched = apply_patch(chain, _patch("after"))
    assert ("b", "p") in _pairs(patched)
    assert ("p", "q") in _pairs(patched)
    assert set(patched.steps) == {"a", "b", "c", "p", "q"}


def test_fanout_links_anchor_to_every_entry(chain):
    patch = AttachPatch(mode="fanout", anchor_step="a", steps={"x": make_step("x"), "y": make_step("y")})
    patched = apply_patch(chain, patch)
    assert {("a", "x"), ("a", "y")} <= _pairs(patched)


def test_before_links_exits_to_anchor(chain):
    patched = apply_patch(chain, _patch("before"))
    assert ("q", "b") in _pairs(patched)
    assert topological_order(patched).index("q") < topological_order(patched).index("b")


def test_replace_rewires_and_removes_anchor(chain):
    patched = apply_patch(chain, _patch("replace"))
    assert "b" not in patched.steps
    assert _pairs(patched) == {("a", "p"), ("p", "q"), ("q", "c")}
    assert topological_order(patched) == ["a", "p", "q", "c"]


def test_patch_does_not_mutate_input(chain):
    apply_patch(chain, _patch("replace"))
    assert set(chain.steps) == {"a", "b", "c"}
    assert len(chain.edges) == 2


def test_collision_raises(chain):
    with pytest.raises(PatchError, match="step id collision: c"):
        apply_patch(chain, _patch("after", steps=("c",)))


def test_missing_anchor_raises(chain):
    with pytest.raises(PatchError, match="anchor step 'ghost'"):
        apply_patch(chain, _patch("after", anchor="ghost"))
