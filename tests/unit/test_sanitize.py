"""Tests for the structural graph sanitizer."""

from __future__ import annotations

from branchwright.graph.sanitize import (
    SanitizeStats,
    break_cycles,
    collapse_duplicates,
    fallback_terminal_key,
    node_signature,
    repair_references,
    sanitize_graph,
)
from branchwright.graph.validation import find_cycle_nodes, run_all_checks
from branchwright.models.story import SENTINEL_TARGET, Choice, Ending, StoryGraph
from tests.fixtures.story_fixtures import make_graph, node


def _targets(graph: StoryGraph, key: str) -> list[str]:
    return [c.target for c in graph.nodes[key].choices]


class TestFallbackTerminalKey:
    def test_prefers_neutral(self) -> None:
        endings = {k: Ending() for k in ("ending_good", "ending_bad", "ending_neutral")}
        assert fallback_terminal_key(endings) == "ending_neutral"

    def test_then_bad_then_good(self) -> None:
        assert fallback_terminal_key({"ending_good": Ending(), "ending_bad": Ending()}) == (
            "ending_bad"
        )
        assert fallback_terminal_key({"ending_good": Ending(), "zeta": Ending()}) == (
            "ending_good"
        )

    def test_any_other_ending(self) -> None:
        assert fallback_terminal_key({"zeta": Ending(), "alpha": Ending()}) == "alpha"

    def test_sentinel_without_endings(self) -> None:
        assert fallback_terminal_key({}) == SENTINEL_TARGET


class TestNodeSignature:
    def test_choice_order_does_not_matter(self) -> None:
        a = node("a", "same", targets=["x", "y"])
        b = node("b", "same", targets=["y", "x"])
        assert node_signature(a) == node_signature(b)

    def test_content_is_trimmed(self) -> None:
        assert node_signature(node("a", " same ")) == node_signature(node("b", "same"))

    def test_choice_text_matters(self) -> None:
        a = node("a", "same", targets=["x"])
        b = node("b", "same")
        b.choices = [Choice(text="other", target="x")]
        assert node_signature(a) != node_signature(b)


class TestCollapseDuplicates:
    def test_later_duplicate_redirects_to_first(self) -> None:
        graph = make_graph(
            node("start", targets=["03"]),
            node("02", "dup", targets=["ending_good"]),
            node("03", "dup", targets=["ending_good"], ending_key="ending_good"),
        )
        redirect = collapse_duplicates(graph)

        assert redirect == {"03": "02"}
        assert "03" not in graph.nodes
        assert _targets(graph, "start") == ["02"]
        assert graph.nodes["02"].ending_key == "ending_good"

    def test_entry_node_is_never_collapsed(self) -> None:
        graph = make_graph(
            node("a", "same", targets=["ending_good"]),
            node("start", "same", targets=["ending_good"]),
        )
        redirect = collapse_duplicates(graph)
        assert redirect == {"a": "start"}
        assert set(graph.nodes) == {"start"}

    def test_owner_marker_is_kept(self) -> None:
        graph = make_graph(
            node("a", "same", ending_key="ending_bad"),
            node("b", "same", ending_key="ending_good"),
        )
        collapse_duplicates(graph)
        assert graph.nodes["a"].ending_key == "ending_bad"


class TestBreakCycles:
    def test_self_loop_and_back_edge(self) -> None:
        graph = make_graph(
            node("start", targets=["02"]),
            node("02", targets=["start", "02"]),
        )
        cut = break_cycles(graph, "ending_neutral")

        assert cut == 2
        assert _targets(graph, "02") == ["ending_neutral", "ending_neutral"]
        assert _targets(graph, "start") == ["02"]

    def test_diamond_is_not_a_cycle(self) -> None:
        graph = make_graph(
            node("start", targets=["a", "b"]),
            node("a", targets=["c"]),
            node("b", targets=["c"]),
            node("c"),
        )
        assert break_cycles(graph, "ending_neutral") == 0

    def test_unknown_targets_skipped(self) -> None:
        graph = make_graph(node("start", targets=["nowhere"]))
        assert break_cycles(graph, "ending_neutral") == 0
        assert _targets(graph, "start") == ["nowhere"]

    def test_cycle_unreachable_from_start(self) -> None:
        graph = make_graph(
            node("start"),
            node("x", targets=["y"]),
            node("y", targets=["x"]),
        )
        break_cycles(graph, "ending_neutral")
        assert _targets(graph, "y") == ["ending_neutral"]
        assert find_cycle_nodes(graph) == []

    def test_deep_chain_does_not_recurse(self) -> None:
        count = 3000
        nodes = [node("start", targets=["k0"])]
        nodes += [node(f"k{i}", targets=[f"k{i + 1}"]) for i in range(count)]
        nodes.append(node(f"k{count}", targets=["start"]))
        graph = make_graph(*nodes)

        assert break_cycles(graph, "ending_neutral") == 1
        assert _targets(graph, f"k{count}") == ["ending_neutral"]


class TestRepairReferences:
    def test_dangling_and_blank_targets(self) -> None:
        graph = make_graph(node("start", targets=["nowhere", "  ", "ending_good"]))
        stats = SanitizeStats()
        repair_references(graph, "ending_neutral", stats)

        assert _targets(graph, "start") == ["ending_neutral", "ending_neutral", "ending_good"]
        assert stats.targets_repaired == 2

    def test_valid_marker_clears_choices(self) -> None:
        graph = make_graph(node("start", targets=["ending_good"], ending_key="ending_bad"))
        repair_references(graph, "ending_neutral", SanitizeStats())
        assert graph.nodes["start"].choices == []

    def test_invalid_marker_keeps_choices(self) -> None:
        graph = make_graph(node("start", targets=["ending_good"], ending_key="missing"))
        repair_references(graph, "ending_neutral", SanitizeStats())
        assert _targets(graph, "start") == ["ending_good"]

    def test_dead_end_gets_neutral_marker(self) -> None:
        graph = make_graph(node("start", ending_key="missing"))
        repair_references(graph, "ending_neutral", SanitizeStats())
        assert graph.nodes["start"].ending_key == "ending_neutral"

    def test_dead_end_unmarked_without_neutral(self) -> None:
        graph = make_graph(node("start"), endings={"ending_bad": Ending(category="bad")})
        repair_references(graph, "ending_bad", SanitizeStats())
        assert graph.nodes["start"].ending_key is None

    def test_sentinel_kept_without_endings(self) -> None:
        graph = make_graph(node("start", targets=["END", "nowhere"]), endings={})
        repair_references(graph, SENTINEL_TARGET, SanitizeStats())
        assert _targets(graph, "start") == ["END", "END"]

    def test_sentinel_replaced_when_endings_exist(self) -> None:
        graph = make_graph(node("start", targets=["END"]))
        repair_references(graph, "ending_neutral", SanitizeStats())
        assert _targets(graph, "start") == ["ending_neutral"]


class TestSanitizeGraph:
    def test_duplicate_collapse_scenario(self) -> None:
        graph = make_graph(
            node("start", targets=["02"]),
            node("02", "dup", targets=["ending_good"]),
            node("03", "dup", targets=["ending_good"], ending_key="ending_good"),
        )
        result = sanitize_graph(graph)

        assert set(result.nodes) == {"start", "02"}
        assert _targets(result, "start") == ["02"]
        assert result.nodes["02"].ending_key == "ending_good"
        assert result.nodes["02"].choices == []

    def test_cycle_scenario(self) -> None:
        graph = make_graph(
            node("start", targets=["02"]),
            node("02", targets=["start", "02"]),
        )
        result = sanitize_graph(graph)
        assert _targets(result, "02") == ["ending_neutral", "ending_neutral"]

    def test_repair_can_create_duplicates(self) -> None:
        # Both dangling targets become the fallback, making a and b identical.
        a = node("a", "same")
        a.choices = [Choice(text="onward", target="lost")]
        b = node("b", "same")
        b.choices = [Choice(text="onward", target="gone")]
        graph = make_graph(node("start", targets=["a", "b"]), a, b)
        result = sanitize_graph(graph)

        assert set(result.nodes) == {"start", "a"}
        assert _targets(result, "start") == ["a", "a"]
        assert not run_all_checks(result).has_failures

    def test_input_is_not_modified(self) -> None:
        graph = make_graph(node("start", targets=["start"]))
        sanitize_graph(graph)
        assert _targets(graph, "start") == ["start"]

    def test_empty_graph(self) -> None:
        graph = make_graph()
        assert sanitize_graph(graph) == graph

    def test_no_endings_uses_sentinel(self) -> None:
        graph = make_graph(
            node("start", targets=["a", "nowhere"]),
            node("a", targets=["start"]),
            endings={},
        )
        result = sanitize_graph(graph)

        assert _targets(result, "start") == ["a", SENTINEL_TARGET]
        assert _targets(result, "a") == [SENTINEL_TARGET]
        report = run_all_checks(result)
        assert not report.has_failures
        assert [c.name for c in report.warnings] == ["sentinel_terminal"]

    def test_adversarial_graph_satisfies_invariants(self) -> None:
        graph = make_graph(
            node("start", targets=["a", "b", "", "start"]),
            node("a", "loop", targets=["b", "ending_good"]),
            node("b", "loop", targets=["a", "ending_good"]),
            node("c", "orphan", targets=["c", "d"], ending_key="ending_bad"),
            node("d", targets=["a", "zzz"]),
            node("e", "dead end"),
        )
        result = sanitize_graph(graph)

        report = run_all_checks(result)
        assert not report.has_failures, report.summary
        assert sanitize_graph(result) == result
