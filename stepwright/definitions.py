"""Sources of stored workflow definitions."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol

import yaml
from pydantic import BaseModel, ConfigDict, Field

from .contracts import WorkflowDefinition

logger = logging.getLogger(__name__)

DEFINITION_SUFFIXES = (".yaml", ".yml", ".json")


class StoredWorkflow(BaseModel):
    """A definition as stored for a company, with its activation status."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    company_id: Optional[str] = Field(default=None, alias="companyId")
    name: Optional[str] = None
    status: str = "active"
    definition: WorkflowDefinition


class DefinitionSource(Protocol):
    """Read access to stored workflow definitions."""

    async def get_workflow(self, workflow_id: str) -> Optional[StoredWorkflow]:
        """Return the workflow with ``workflow_id`` if it exists."""

    async def list_workflows(
        self, company_id: Optional[str] = None, status: Optional[str] = "active"
    ) -> List[StoredWorkflow]:
        """Return workflows, optionally filtered by company and status."""


def _matches(workflow: StoredWorkflow, company_id: Optional[str], status: Optional[str]) -> bool:
    if company_id is not None and workflow.company_id != company_id:
        return False
    if status is not None and workflow.status != status:
        return False
    return True


class InMemoryDefinitionSource:
    """Definitions held in a dictionary; handy for tests and embedding."""

    def __init__(self, workflows: Iterable[StoredWorkflow] = ()) -> None:
        self._workflows: Dict[str, StoredWorkflow] = {w.id: w for w in workflows}

    def add(self, workflow: StoredWorkflow) -> StoredWorkflow:
        self._workflows[workflow.id] = workflow
        return workflow

    async def get_workflow(self, workflow_id: str) -> Optional[StoredWorkflow]:
        return self._workflows.get(workflow_id)

    async def list_workflows(
        self, company_id: Optional[str] = None, status: Optional[str] = "active"
    ) -> List[StoredWorkflow]:
        return [w for w in self._workflows.values() if _matches(w, company_id, status)]


def _read_document(path: Path) -> Any:
    text = path.read_text()
    if path.suffix == ".json":
        return json.loads(text)
    return yaml.safe_load(text)


def load_definition(path: str | Path) -> WorkflowDefinition:
    """Parse a single YAML or JSON workflow definition file.

    A file holding a stored workflow (with a ``definition`` key) yields the
    nested definition.
    """
    data = _read_document(Path(path)) or {}
    if isinstance(data, dict) and "definition" in data:
        data = data["definition"]
    return WorkflowDefinition.model_validate(data)


def load_stored_workflow(path: str | Path) -> StoredWorkflow:
    """Parse a file into a ``StoredWorkflow``; bare definitions get their id from the file name."""
    path = Path(path)
    data = _read_document(path) or {}
    if isinstance(data, dict) and "definition" in data:
        data = {**data, "id": data.get("id") or path.stem}
        return StoredWorkflow.model_validate(data)
    definition = WorkflowDefinition.model_validate(data)
    return StoredWorkflow(
        id=definition.id or path.stem, name=definition.name, definition=definition
    )


class FileDefinitionSource:
    """Definitions read from a directory of YAML/JSON files."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def _load_all(self) -> List[StoredWorkflow]:
        workflows = []
        for path in sorted(self.directory.iterdir()):
            if path.suffix not in DEFINITION_SUFFIXES or not path.is_file():
                continue
            workflows.append(load_stored_workflow(path))
        logger.debug(f"Loaded {len(workflows)} workflows from {self.directory}")
        return workflows

    async def get_workflow(self, workflow_id: str) -> Optional[StoredWorkflow]:
        return next((w for w in self._load_all() if w.id == workflow_id), None)

    async def list_workflows(
        self, company_id: Optional[str] = None, status: Optional[str] = "active"
    ) -> List[StoredWorkflow]:
        return [w for w in self._load_all() if _matches(w, company_id, status)]
