"""Workspace Manager to handle workspace persistence, AI settings and context switching."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from specmap import config
from specmap.models import AiConfig, Workspace

logger = logging.getLogger("specmap")


class WorkspaceManager:
    """Manages workspace configurations, the active context and AI settings."""

    def __init__(self, storage_path: Path):
        self.storage_path = storage_path
        self._workspaces: dict[str, Workspace] = {}
        self._active_workspace_id: Optional[str] = None
        self._ai_config = AiConfig()
        self._load()

        if self._active_workspace_id not in self._workspaces:
            self._active_workspace_id = next(iter(self._workspaces), None)

    def _load(self):
        """Load workspaces from JSON storage."""
        if not self.storage_path.exists():
            return

        try:
            content = self.storage_path.read_text(encoding="utf-8")
            if not content.strip():
                return
            data = json.loads(content)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load workspaces file: {e}")
            return

        self._active_workspace_id = data.get("activeWorkspaceId")
        for w_data in data.get("workspaces", []):
            try:
                w = Workspace(**w_data)
                self._workspaces[w.id] = w
            except (TypeError, ValidationError) as e:
                logger.error(f"Failed to load workspace: {e}")
        try:
            self._ai_config = AiConfig(**(data.get("aiConfig") or {}))
        except (TypeError, ValidationError) as e:
            logger.error(f"Failed to load AI config: {e}")

    def _save(self):
        """Save workspaces to JSON storage."""
        data = {
            "activeWorkspaceId": self._active_workspace_id,
            "workspaces": [w.model_dump() for w in self._workspaces.values()],
            "aiConfig": self._ai_config.model_dump(exclude_none=True),
        }
        self.storage_path.parent.mkdir(parents=True, exist_ok=True)
        self.storage_path.write_text(json.dumps(data, indent=2), encoding="utf-8")

    def list_workspaces(self) -> list[Workspace]:
        return list(self._workspaces.values())

    def get_workspace(self, workspace_id: str) -> Optional[Workspace]:
        return self._workspaces.get(workspace_id)

    def add_workspace(self, workspace: Workspace):
        self._workspaces[workspace.id] = workspace
        if self._active_workspace_id is None:
            self._active_workspace_id = workspace.id
        self._save()

    def update_workspace(self, workspace_id: str, workspace: Workspace):
        if workspace_id not in self._workspaces:
            raise ValueError(f"Workspace {workspace_id} not found")
        self._workspaces[workspace_id] = workspace.model_copy(update={"id": workspace_id})
        self._save()

    def set_active_workspace(self, workspace_id: str):
        if workspace_id in self._workspaces:
            self._active_workspace_id = workspace_id
            self._save()
            logger.info(f"Switched active workspace to: {self._workspaces[workspace_id].name}")
        else:
            raise ValueError(f"Workspace {workspace_id} not found")

    def get_active_workspace(self) -> Optional[Workspace]:
        if self._active_workspace_id:
            return self._workspaces.get(self._active_workspace_id)
        return None

    def get_ai_config(self) -> AiConfig:
        return self._ai_config.model_copy()

    def save_ai_config(self, ai_config: AiConfig):
        self._ai_config = ai_config.model_copy()
        self._save()
        logger.info(f"AI config updated (model={ai_config.model or config.AI_DEFAULT_MODEL})")


# Global instance initialized with workspaces.json in the service root
workspace_manager = WorkspaceManager(config.WORKSPACES_FILE)
