"""
Tests for the tracer module.

These tests verify the debug tracing infrastructure used to capture
pipeline stages and per-link decisions of a routing pass.
"""


from sankeyroute.tracer import LinkDecision, PipelineStage, RoutingTrace


class TestLinkDecision:
    """Tests for LinkDecision dataclass."""

    def test_creation(self):
        """Test basic creation of LinkDecision."""
        decision = LinkDecision(
            link_index=3, route_id="link_3_2_5", algorithm="bezier", fallback=False,
            reason="computed"
        )
        assert decision.link_index == 3
        assert decision.route_id == "link_3_2_5"
        assert decision.collisions == 0
        assert decision.separation_offset is None

    def test_str_computed(self):
        """Test string representation of a computed route."""
        result = str(LinkDecision(0, "link_0_0_2", "bezier", False, "computed"))
        assert "#0 link_0_0_2: bezier (computed)" == result

    def test_str_fallback_with_details(self):
        """Test string representation with fallback, collisions and offsets."""
        decision = LinkDecision(
            1, "link_1_0_2", "arc", True, "time_budget", collisions=4,
            separation_offset=[0.021, -0.021]
        )
        result = str(decision)
        assert "[fallback]" in result
        assert "(time_budget)" in result
        assert "4 collisions" in result
        assert "P1=+0.0210" in result
        assert "P2=-0.0210" in result


class TestPipelineStage:
    """Tests for PipelineStage dataclass."""

    def test_creation(self):
        """Test basic creation of PipelineStage."""
        stage = PipelineStage(name="hierarchy", data={"nodes": 7})
        assert stage.name == "hierarchy"
        assert stage.data == {"nodes": 7}

    def test_str(self):
        """Test string representation lists every key."""
        result = str(PipelineStage(name="config", data={"curvature": 0.3}))
        assert "=== Stage: config ===" in result
        assert "curvature: 0.3" in result

    def test_str_truncates_long_values(self):
        """Test that long values are truncated."""
        stage = PipelineStage(name="base_routes", data={"ids": "x" * 150})
        result = str(stage)
        assert "x" * 100 + "..." in result
        assert "x" * 101 not in result


class TestRoutingTrace:
    """Tests for RoutingTrace class."""

    def _trace(self):
        trace = RoutingTrace(pass_id=2, link_count=3, node_count=4)
        trace.add_decision(0, "link_0_0_1", "bezier", False, "computed")
        trace.add_decision(1, "link_1_0_2", "arc", True, "time_budget")
        trace.add_decision(2, "link_2_1_3", "line", True, "error: boom")
        return trace

    def test_empty_trace(self):
        """Test a fresh trace has no stages or decisions."""
        trace = RoutingTrace()
        assert trace.stages == []
        assert trace.decisions == []
        assert trace.get_stage("config") is None
        assert trace.get_decision(0) is None

    def test_add_stage_copies_data(self):
        """Test that stage data is copied when added."""
        trace = RoutingTrace()
        data = {"routes": 3}
        trace.add_stage("base_routes", data)
        data["routes"] = 99
        assert trace.get_stage("base_routes").data == {"routes": 3}

    def test_get_decision(self):
        """Test decisions are found by link index."""
        trace = self._trace()
        assert trace.get_decision(1).route_id == "link_1_0_2"
        assert trace.get_decision(7) is None

    def test_record_offset(self):
        """Test separation offsets are attached to recorded decisions."""
        trace = self._trace()
        trace.record_offset(0, 0.01, -0.01)
        trace.record_offset(9, 0.5, 0.5)
        assert trace.get_decision(0).separation_offset == [0.01, -0.01]

    def test_decisions_indexed_by_link(self):
        """Lookups use the index kept by add_decision, not a scan."""
        trace = self._trace()
        decision = trace.get_decision(2)
        assert decision is trace.decisions[2]
        trace.decisions.sort(key=lambda d: -d.link_index)
        trace.record_offset(2, 0.02, 0.0)
        assert decision.separation_offset == [0.02, 0.0]
        assert trace.get_decision(2) is decision

    def test_first_decision_wins(self):
        """A repeated link index keeps pointing at its first decision."""
        trace = self._trace()
        trace.add_decision(0, "link_0_0_1", "line", True, "error: again")
        assert trace.get_decision(0).reason == "computed"
        assert len(trace.decisions) == 4

    def test_get_fallbacks(self):
        """Test fallback decisions are collected."""
        trace = self._trace()
        assert [d.link_index for d in trace.get_fallbacks()] == [1, 2]

    def test_get_decisions_by_reason(self):
        """Test partial reason matching."""
        trace = self._trace()
        assert [d.link_index for d in trace.get_decisions_by_reason("error")] == [2]
        assert len(trace.get_decisions_by_reason("time")) == 1

    def test_summary(self):
        """Test summary generation."""
        trace = self._trace()
        trace.add_stage("config", {})
        summary = trace.summary()
        assert "ROUTING TRACE SUMMARY" in summary
        assert "Pass: 2" in summary
        assert "Input: 4 nodes, 3 links" in summary
        assert "Pipeline stages: 1" in summary
        assert "Routed links: 3" in summary
        assert "Fallback routes: 2" in summary
        assert "Routes by algorithm:" in summary
        assert "  bezier: 1" in summary

    def test_dump(self):
        """Test complete dump includes stages and decisions."""
        trace = self._trace()
        trace.add_stage("hierarchy", {"nodes": 4})
        dump = trace.dump()
        assert "DETAILED TRACE" in dump
        assert "=== Stage: hierarchy ===" in dump
        assert "LINK DECISIONS:" in dump
        assert "#2 link_2_1_3: line [fallback] (error: boom)" in dump

    def test_dump_to_file(self, tmp_path):
        """Test dumping the trace to a file."""
        trace = self._trace()
        path = tmp_path / "trace.txt"
        trace.dump_to_file(str(path))
        content = path.read_text(encoding="utf-8")
        assert content == trace.dump()
