"""
Workflow Engine - Workflow Store
Persists workflow definitions as one JSON file per workflow
"""

import json
import logging
import re
import uuid
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import ValidationError

from workflow_engine.config import defaults
from workflow_engine.utils.error_handler import (
    ErrorContext,
    WorkflowError,
    WorkflowNotFoundError,
)
from .workflow_models import WorkflowDefinition

logger = logging.getLogger(__name__)

_UNSAFE_ID_CHARS = re.compile(r"[^a-zA-Z0-9_.-]")


class WorkflowStore:
    """
    Manages workflow definitions
    In-memory cache in front of <storage_dir>/<workflow_id>.json files
    """

    def __init__(self, storage_dir: Optional[str] = None):
        self.storage_dir = Path(storage_dir or defaults.Defaults.WORKFLOWS_DIR)
        self.storage_dir.mkdir(parents=True, exist_ok=True)

        # In-memory cache: workflow_id -> WorkflowDefinition
        self._workflows: Dict[str, WorkflowDefinition] = {}
        self._loaded = False

        logger.info(f"[WorkflowStore] Initialized with storage: {self.storage_dir.absolute()}")

    def _get_workflow_file(self, workflow_id: str) -> Path:
        safe_id = _UNSAFE_ID_CHARS.sub("_", workflow_id)
        return self.storage_dir / f"{safe_id}.json"

    def _load_all(self):
        """Load every workflow file into the cache (once)"""
        if self._loaded:
            return
        for workflow_file in sorted(self.storage_dir.glob("*.json")):
            try:
                with open(workflow_file, "r", encoding="utf-8") as f:
                    workflow = WorkflowDefinition.model_validate(json.load(f))
                self._workflows[workflow.id] = workflow
            except (OSError, json.JSONDecodeError, ValidationError) as e:
                logger.error(f"[WorkflowStore] Failed to load {workflow_file}: {e}")
        self._loaded = True
        logger.info(f"[WorkflowStore] Loaded {len(self._workflows)} workflows")

    def reload(self):
        """Clear cached workflows and reload from disk"""
        self._workflows.clear()
        self._loaded = False
        self._load_all()

    def _save(self, workflow: WorkflowDefinition):
        workflow_file = self._get_workflow_file(workflow.id)
        with ErrorContext(f"saving workflow {workflow.id}", raise_as=WorkflowError):
            with open(workflow_file, "w", encoding="utf-8") as f:
                json.dump(workflow.model_dump(by_alias=True), f, indent=2, default=str)
        logger.info(f"[WorkflowStore] Saved workflow {workflow.id} to {workflow_file}")

    def list_workflows(self) -> List[WorkflowDefinition]:
        self._load_all()
        return sorted(self._workflows.values(), key=lambda w: w.name.lower())

    def get_workflow(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        self._load_all()
        return self._workflows.get(workflow_id)

    def load(self, workflow_id: str) -> WorkflowDefinition:
        """
        Load a workflow by id for execution.

        Raises:
            WorkflowNotFoundError: If no such workflow exists
        """
        workflow = self.get_workflow(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        return workflow

    def create_workflow(self, workflow: WorkflowDefinition) -> WorkflowDefinition:
        self._load_all()
        now = datetime.now().isoformat()
        workflow = workflow.model_copy(
            update={
                "id": workflow.id or f"wf_{uuid.uuid4().hex[:12]}",
                "created_at": workflow.created_at or now,
                "updated_at": now,
            }
        )
        if workflow.id in self._workflows:
            raise ValueError(f"Workflow {workflow.id} already exists")

        self._save(workflow)
        self._workflows[workflow.id] = workflow
        logger.info(f"[WorkflowStore] Created workflow {workflow.id} ({workflow.name})")
        return workflow

    def update_workflow(self, workflow: WorkflowDefinition) -> WorkflowDefinition:
        existing = self.load(workflow.id)
        workflow = workflow.model_copy(
            update={
                "created_at": existing.created_at,
                "updated_at": datetime.now().isoformat(),
            }
        )
        self._save(workflow)
        self._workflows[workflow.id] = workflow
        logger.info(f"[WorkflowStore] Updated workflow {workflow.id}")
        return workflow

    def delete_workflow(self, workflow_id: str) -> bool:
        self.load(workflow_id)
        workflow_file = self._get_workflow_file(workflow_id)
        with ErrorContext(f"deleting workflow {workflow_id}", raise_as=WorkflowError):
            if workflow_file.exists():
                workflow_file.unlink()
        del self._workflows[workflow_id]
        logger.info(f"[WorkflowStore] Deleted workflow {workflow_id}")
        return True
