"""Tests for the field graph."""

import pytest

from lessongen.config_store import ConfigOverrideStore
from lessongen.exceptions import CyclicDependency, DanglingDependency, UnknownFieldError
from lessongen.field_graph import FieldGraph
from lessongen.models import GenerationConfig, LessonField, Section


def _field(field_id, section=Section.DESIGNER, order=0, ai=True, deps=None, **kwargs):
    return LessonField(
        id=field_id,
        name=field_id.upper(),
        section=section,
        order=order,
        ai_enabled=ai,
        context_field_ids=deps or [],
        **kwargs,
    )


class TestFieldGraphConstruction:
    """Test graph validation on construction."""

    def test_dangling_declared_dependency(self):
        """Test an unknown declared dependency is rejected."""
        with pytest.raises(DanglingDependency) as exc_info:
            FieldGraph([_field("a", deps=["missing"])])

        assert exc_info.value.field_id == "a"
        assert exc_info.value.missing_id == "missing"

    def test_dangling_configured_dependency(self):
        """Test an unknown id in the template config is rejected."""
        with pytest.raises(DanglingDependency):
            FieldGraph(
                [
                    _field(
                        "a",
                        ai_config=GenerationConfig(context_field_ids=["ghost"]),
                    )
                ]
            )

    def test_get_unknown_field(self):
        """Test looking up an unknown id raises UnknownFieldError."""
        graph = FieldGraph([_field("a")])
        with pytest.raises(UnknownFieldError):
            graph.get("b")

    def test_contains_and_name(self):
        """Test membership and name lookup."""
        graph = FieldGraph([_field("a")])
        assert "a" in graph
        assert "b" not in graph
        assert graph.name_of("a") == "A"


class TestGenerationQueue:
    """Test the fixed generation order."""

    def test_designer_before_builder(self):
        """Test designer fields always precede builder fields."""
        graph = FieldGraph(
            [
                _field("b1", section=Section.BUILDER, order=0),
                _field("d2", section=Section.DESIGNER, order=2),
                _field("d1", section=Section.DESIGNER, order=1),
                _field("b0", section=Section.BUILDER, order=-1),
            ]
        )

        assert [f.id for f in graph.ordered_generation_queue()] == [
            "d1",
            "d2",
            "b0",
            "b1",
        ]

    def test_queue_skips_fields_without_ai(self):
        """Test only AI-enabled fields are queued."""
        graph = FieldGraph([_field("a", ai=False), _field("b", order=1)])
        assert [f.id for f in graph.ordered_generation_queue()] == ["b"]

    def test_order_independent_of_creation_order(self):
        """Test two graphs with shuffled input produce the same queue."""
        fields = [
            _field("x", order=3),
            _field("y", order=1),
            _field("z", section=Section.BUILDER, order=0),
        ]
        forward = FieldGraph(fields).ordered_generation_queue()
        backward = FieldGraph(list(reversed(fields))).ordered_generation_queue()

        assert [f.id for f in forward] == [f.id for f in backward] == ["y", "x", "z"]

    def test_equal_order_is_stable(self):
        """Test equal order values keep insertion order."""
        graph = FieldGraph([_field("first"), _field("second")])
        assert [f.id for f in graph.ordered_generation_queue()] == ["first", "second"]


class TestDependencies:
    """Test effective dependency resolution."""

    def test_declared_dependencies(self):
        """Test the declared list is used without overrides."""
        graph = FieldGraph([_field("a"), _field("b", deps=["a"])])
        assert graph.dependencies_of("b") == ["a"]

    @pytest.mark.asyncio
    async def test_override_dependencies(self):
        """Test a lesson override replaces the declared list."""
        graph = FieldGraph([_field("a"), _field("c"), _field("b", deps=["a"])])
        store = ConfigOverrideStore("lesson-1", graph)
        await store.apply_edit("b", GenerationConfig(context_field_ids=["c"]))

        assert graph.dependencies_of("b", store) == ["c"]
        assert graph.dependencies_of("b") == ["a"]


class TestCycleDetection:
    """Test dependency cycle detection."""

    def test_acyclic_graph(self):
        """Test a chain has no cycle."""
        graph = FieldGraph([_field("a"), _field("b", deps=["a"]), _field("c", deps=["b"])])
        assert graph.find_cycle() is None
        graph.check_acyclic()

    def test_declared_cycle(self):
        """Test a cycle in the declared edges is found."""
        graph = FieldGraph([_field("a", deps=["b"]), _field("b", deps=["a"])])
        cycle = graph.find_cycle()
        assert cycle[0] == cycle[-1]
        assert set(cycle) == {"a", "b"}

    def test_cycle_through_replacement_edges(self):
        """Test replacement edges are checked together with the rest."""
        graph = FieldGraph([_field("a"), _field("b", deps=["a"])])

        with pytest.raises(CyclicDependency) as exc_info:
            graph.check_acyclic({"a": ["b"]})

        assert "a" in exc_info.value.cycle

    def test_self_dependency(self):
        """Test a field depending on itself is a cycle."""
        graph = FieldGraph([_field("a")])
        assert graph.find_cycle({"a": ["a"]}) == ["a", "a"]
