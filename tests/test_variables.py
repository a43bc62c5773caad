"""Tests for workflow_engine/core/workflows/variables.py."""

from workflow_engine.core.workflows.variables import VariableStore


class TestVariableStore:

    def test_values_are_stringified(self):
        store = VariableStore({"count": 3, "missing": None})
        assert store.get("count") == "3"
        assert store.get("missing") == ""

    def test_seed_overrides_defaults(self):
        store = VariableStore.seed({"a": "1", "b": "2"}, {"b": "20", "c": "30"})
        assert store.as_dict() == {"a": "1", "b": "20", "c": "30"}

    def test_seed_without_overrides(self):
        assert VariableStore.seed({"a": "1"}).as_dict() == {"a": "1"}

    def test_setdefault_keeps_existing(self):
        store = VariableStore({"a": "1"})
        store.setdefault("a", "9")
        store.setdefault("b", "2")
        assert store.as_dict() == {"a": "1", "b": "2"}

    def test_substitute_replaces_all_occurrences(self):
        store = VariableStore({"name": "Bob"})
        assert store.substitute("{{name}} and {{name}}") == "Bob and Bob"

    def test_unknown_placeholder_is_left_as_is(self):
        store = VariableStore({"name": "Bob"})
        assert store.substitute("hi {{other}}") == "hi {{other}}"

    def test_substitute_empty(self):
        assert VariableStore().substitute(None) == ""
        assert VariableStore().substitute("") == ""

    def test_substitute_does_not_evaluate(self):
        store = VariableStore({"a": "2", "b": "3"})
        assert store.substitute("{{a}} + {{b}}") == "2 + 3"

    def test_substitute_and_evaluate(self):
        store = VariableStore({"a": "2", "b": "3"})
        assert store.substitute_and_evaluate("{{a}} + {{b}}") == "5"

    def test_substitute_and_evaluate_float_operands(self):
        store = VariableStore({"a": "2.5", "b": "0.5"})
        assert store.substitute_and_evaluate("{{a}} + {{b}}") == "3"

    def test_substitute_and_evaluate_division_by_zero(self):
        store = VariableStore({"a": "2"})
        assert store.substitute_and_evaluate("{{a}} / 0") == "2 / 0"

    def test_container_protocol(self):
        store = VariableStore({"a": "1", "b": "2"})
        assert "a" in store
        assert "z" not in store
        assert len(store) == 2
        assert sorted(store) == ["a", "b"]
