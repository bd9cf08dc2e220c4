"""API router for workspace management."""
from __future__ import annotations

from fastapi import APIRouter, HTTPException

from specmap.models import Workspace
from specmap.workspace_manager import workspace_manager

workspaces_router = APIRouter(prefix="/api/workspaces", tags=["workspaces"])


@workspaces_router.get("", response_model=list[Workspace])
def list_workspaces():
    """List all registered workspaces."""
    return workspace_manager.list_workspaces()


@workspaces_router.post("", response_model=Workspace)
def add_workspace(workspace: Workspace):
    """Register a new workspace."""
    try:
        workspace_manager.add_workspace(workspace)
        return workspace
    except OSError as e:
        raise HTTPException(status_code=500, detail=str(e))


@workspaces_router.put("/{workspace_id}", response_model=Workspace)
def update_workspace(workspace_id: str, workspace: Workspace):
    try:
        workspace_manager.update_workspace(workspace_id, workspace)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except OSError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return workspace_manager.get_workspace(workspace_id)


@workspaces_router.get("/active", response_model=Workspace)
def get_active_workspace():
    """Get the currently active workspace."""
    workspace = workspace_manager.get_active_workspace()
    if not workspace:
        raise HTTPException(status_code=404, detail="No active workspace found")
    return workspace


@workspaces_router.post("/active/{workspace_id}", response_model=Workspace)
def set_active_workspace(workspace_id: str):
    """Switch the active workspace."""
    try:
        workspace_manager.set_active_workspace(workspace_id)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except OSError as e:
        raise HTTPException(status_code=500, detail=str(e))
    workspace = workspace_manager.get_active_workspace()
    if not workspace:
        raise HTTPException(status_code=404, detail="Workspace not found after switch")
    return workspace
