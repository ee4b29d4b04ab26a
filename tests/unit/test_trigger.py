"""
Unit tests for trigger matching.
"""
from datetime import datetime, timedelta, timezone

from zapflow.flow.trigger import TriggerMatcher, TriggerSpec, matches_trigger, trigger_spec_for
from zapflow.models.flow import Flow


def flow(flow_id, trigger_type="keyword", config=None, status="active", updated_at=None, nodes=None):
    return Flow.model_validate({
        "id": flow_id,
        "tenant_id": "t1",
        "trigger_type": trigger_type,
        "trigger_config": config if config is not None else {"keywords": ["promo"]},
        "status": status,
        "updated_at": updated_at or datetime(2026, 1, 1),
        "elements": {"nodes": nodes or [{"id": "n", "type": "trigger"}], "edges": []},
    })


class TestMatchesTrigger:
    """Tests for a single trigger rule."""

    def test_keyword_containment_case_insensitive(self):
        spec = TriggerSpec(trigger_type="keyword", keywords=["Promo"])
        assert matches_trigger(spec, "I want the PROMO please")

    def test_exact_match(self):
        spec = TriggerSpec(trigger_type="exact_match", keywords=["menu"])

        assert matches_trigger(spec, "  Menu ")
        assert not matches_trigger(spec, "show menu")

    def test_keyword_with_exact_flag(self):
        spec = TriggerSpec(trigger_type="keyword", keywords=["oi"], exact_match=True)
        assert not matches_trigger(spec, "oi tudo bem")

    def test_pattern(self):
        spec = TriggerSpec(trigger_type="pattern", pattern=r"pedido\s+\d+")
        assert matches_trigger(spec, "Meu PEDIDO 123")

    def test_invalid_pattern_does_not_match(self):
        spec = TriggerSpec(trigger_type="pattern", pattern="(")
        assert not matches_trigger(spec, "(")

    def test_non_text_trigger_never_matches(self):
        spec = TriggerSpec(trigger_type="manual", keywords=["x"])
        assert not matches_trigger(spec, "x")

    def test_empty_text(self):
        spec = TriggerSpec(trigger_type="keyword", keywords=["x"])
        assert not matches_trigger(spec, "")


class TestTriggerSpec:
    """Tests for reading the trigger rule of a flow."""

    def test_comma_separated_keywords(self):
        spec = trigger_spec_for(flow("f", config={"keywords": "oi, olá ,hello"}))
        assert spec.keywords == ["oi", "olá", "hello"]

    def test_falls_back_to_trigger_node(self):
        f = flow("f", trigger_type=None, config={}, nodes=[{
            "id": "n", "type": "trigger",
            "data": {"triggerType": "keyword", "keywords": ["start"]}
        }])

        spec = trigger_spec_for(f)

        assert spec.trigger_type == "keyword"
        assert spec.keywords == ["start"]


class TestTriggerMatcher:
    """Tests for choosing between flows."""

    def test_inactive_flows_skipped(self):
        assert TriggerMatcher.match([flow("f", status="draft")], "promo") is None

    def test_most_recently_updated_wins(self):
        older = flow("a", updated_at=datetime(2026, 1, 1))
        newer = flow("b", updated_at=datetime(2026, 1, 1) + timedelta(days=1))

        assert TriggerMatcher.match([older, newer], "promo").id == "b"

    def test_tie_broken_by_id_descending(self):
        assert TriggerMatcher.match([flow("a"), flow("c"), flow("b")], "promo").id == "c"

    def test_no_match(self):
        assert TriggerMatcher.match([flow("a")], "hello") is None

    def test_order_mixes_naive_and_aware_timestamps(self):
        """Timestamps from different sources sort together, naive ones read as UTC."""
        naive = flow("a", updated_at=datetime(2026, 1, 2))
        aware = flow("b", updated_at=datetime(2026, 1, 1, tzinfo=timezone.utc))

        assert [f.id for f in TriggerMatcher.order([aware, naive])] == ["a", "b"]

    def test_order_flow_without_timestamp_last(self):
        undated = flow("z").model_copy(update={"updated_at": None})
        aware = flow("a", updated_at=datetime(2024, 1, 1, tzinfo=timezone.utc))

        assert [f.id for f in TriggerMatcher.order([undated, aware])] == ["a", "z"]
