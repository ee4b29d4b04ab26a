"""
Unit tests for FlowValidator.
"""
from zapflow.flow.validator import FlowValidator, validate_flow


def codes(problems):
    return {p.code for p in problems}


class TestStructure:
    """Errors that make a flow unusable."""

    def test_valid_flow(self, greeting_flow):
        report = FlowValidator.validate(greeting_flow["elements"], flow_id="flow-1")

        assert report.is_valid
        assert report.start_node_id == "trigger"
        assert report.warnings == []

    def test_unknown_type_is_error(self):
        report = validate_flow({"nodes": [{"id": "1", "type": "nope"}], "edges": []})

        assert not report.is_valid
        assert codes(report.errors) == {"INVALID_GRAPH"}

    def test_two_start_nodes_is_error(self):
        report = validate_flow({
            "nodes": [{"id": "a", "type": "trigger"}, {"id": "b", "type": "end"}],
            "edges": [],
        })

        assert not report.is_valid
        assert report.start_node_id is None

    def test_to_dict(self):
        report = validate_flow({"nodes": [{"id": "a", "type": "trigger"}], "edges": []})
        data = report.to_dict()

        assert data["valid"] is True
        assert data["start_node_id"] == "a"
        assert data["errors"] == []


class TestLint:
    """Warnings for flows that load but will probably misbehave."""

    def test_unreachable_cycle(self):
        report = validate_flow({
            "nodes": [
                {"id": "t", "type": "trigger"},
                {"id": "x", "type": "textMessage", "data": {"message": "x"}},
                {"id": "y", "type": "textMessage", "data": {"message": "y"}},
            ],
            "edges": [
                {"id": "e1", "source": "x", "target": "y"},
                {"id": "e2", "source": "y", "target": "x"},
            ],
        })

        assert report.is_valid
        unreachable = [w.node_id for w in report.warnings if w.code == "UNREACHABLE_NODE"]
        assert sorted(unreachable) == ["x", "y"]

    def test_node_problems(self):
        report = validate_flow({
            "nodes": [
                {"id": "t", "type": "trigger"},
                {"id": "msg", "type": "textMessage", "data": {"message": "  "}},
                {"id": "api", "type": "apiCall", "data": {}},
                {"id": "cond", "type": "condition", "data": {"branchConfigs": [
                    {"id": "b1", "rules": []},
                    {"id": "b2", "rules": [{"variableName": "x", "operator": "between"}]},
                ]}},
                {"id": "ask", "type": "question", "data": {"questionText": "?", "validationRegex": "("}},
            ],
            "edges": [
                {"id": "e1", "source": "t", "target": "msg"},
                {"id": "e2", "source": "msg", "target": "api"},
                {"id": "e3", "source": "api", "target": "cond"},
                {"id": "e4", "source": "cond", "target": "ask", "sourceHandle": "b2"},
            ],
        })

        assert report.is_valid
        found = {(w.node_id, w.code) for w in report.warnings}
        assert ("msg", "EMPTY_MESSAGE") in found
        assert ("api", "MISSING_URL") in found
        assert ("cond", "EMPTY_BRANCH") in found
        assert ("cond", "UNKNOWN_OPERATOR") in found
        assert ("ask", "INVALID_REGEX") in found
        assert ("ask", "WAITING_DEAD_END") in found

    def test_warning_str(self):
        report = validate_flow({
            "nodes": [{"id": "t", "type": "trigger"}, {"id": "m", "type": "textMessage"}],
            "edges": [{"id": "e", "source": "t", "target": "m"}],
        })

        assert str(report.warnings[0]) == "[WARNING] EMPTY_MESSAGE: Text message is empty [Node: m]"
