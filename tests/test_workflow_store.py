"""Tests for workflow_engine/core/workflows/workflow_store.py."""

import json

import pytest

from workflow_engine.core.workflows.workflow_store import WorkflowStore
from workflow_engine.utils.error_handler import WorkflowNotFoundError
from tests.conftest import make_workflow


@pytest.fixture
def workflow_store(tmp_path):
    return WorkflowStore(storage_dir=str(tmp_path / "workflows"))


class TestWorkflowStore:

    def test_create_persists_camel_case_json(self, workflow_store, tmp_path):
        created = workflow_store.create_workflow(
            make_workflow([{"id": "a", "type": "key_home"}], workflow_id="login")
        )
        assert created.created_at and created.updated_at

        data = json.loads((tmp_path / "workflows" / "login.json").read_text())
        assert data["id"] == "login"
        assert data["steps"][0]["connections"]["successStepId"] == "a"
        assert "createdAt" in data

    def test_create_generates_id(self, workflow_store):
        created = workflow_store.create_workflow(make_workflow([], workflow_id=""))
        assert created.id.startswith("wf_")
        assert workflow_store.load(created.id) == created

    def test_create_duplicate(self, workflow_store):
        workflow_store.create_workflow(make_workflow([], workflow_id="dup"))
        with pytest.raises(ValueError):
            workflow_store.create_workflow(make_workflow([], workflow_id="dup"))

    def test_load_missing(self, workflow_store):
        with pytest.raises(WorkflowNotFoundError):
            workflow_store.load("ghost")
        assert workflow_store.get_workflow("ghost") is None

    def test_list_sorted_by_name(self, workflow_store):
        workflow_store.create_workflow(make_workflow([], workflow_id="b", name="beta"))
        workflow_store.create_workflow(make_workflow([], workflow_id="a", name="Alpha"))
        assert [w.id for w in workflow_store.list_workflows()] == ["a", "b"]

    def test_update_keeps_created_at(self, workflow_store):
        created = workflow_store.create_workflow(make_workflow([], workflow_id="wf", name="old"))
        updated = workflow_store.update_workflow(make_workflow([], workflow_id="wf", name="new"))
        assert updated.name == "new"
        assert updated.created_at == created.created_at

    def test_update_missing(self, workflow_store):
        with pytest.raises(WorkflowNotFoundError):
            workflow_store.update_workflow(make_workflow([], workflow_id="ghost"))

    def test_delete(self, workflow_store, tmp_path):
        workflow_store.create_workflow(make_workflow([], workflow_id="gone"))
        assert workflow_store.delete_workflow("gone") is True
        assert not (tmp_path / "workflows" / "gone.json").exists()
        with pytest.raises(WorkflowNotFoundError):
            workflow_store.delete_workflow("gone")

    def test_reload_from_disk(self, workflow_store, tmp_path):
        workflow_store.create_workflow(
            make_workflow([{"id": "a", "type": "tap", "tap": {"x": 1, "y": 2}}], workflow_id="persisted")
        )
        fresh = WorkflowStore(storage_dir=str(tmp_path / "workflows"))
        loaded = fresh.load("persisted")
        assert loaded.steps[1].tap.x == 1

    def test_corrupt_file_is_skipped(self, workflow_store, tmp_path):
        (tmp_path / "workflows" / "broken.json").write_text("{oops")
        workflow_store.create_workflow(make_workflow([], workflow_id="fine"))
        workflow_store.reload()
        assert [w.id for w in workflow_store.list_workflows()] == ["fine"]

    def test_unsafe_id_is_sanitized_on_disk(self, workflow_store, tmp_path):
        workflow_store.create_workflow(make_workflow([], workflow_id="../escape"))
        assert (tmp_path / "workflows" / ".._escape.json").exists()
        assert workflow_store.load("../escape").id == "../escape"
