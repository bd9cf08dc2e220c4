"""Pydantic models matching the frontend TypeScript types."""
from __future__ import annotations
from pydantic import BaseModel, Field
from typing import Literal, Optional

MappingStatus = Literal["implemented", "partial", "not_found", "unknown"]
FileType = Literal["impl", "test"]
ChangeType = Literal["added", "changed", "removed", "unchanged"]
ProgressStatus = Literal["scanning", "done", "error"]
ScanKind = Literal["full", "single"]

MAPPING_STATUSES: tuple[str, ...] = ("implemented", "partial", "not_found", "unknown")

# ── Feature tree models ────────────────────────────────────────────

class FeatureNode(BaseModel):
    id: str
    title: str
    parentId: Optional[str] = None
    children: list[FeatureNode] = Field(default_factory=list)


class ObjectIndexEntry(BaseModel):
    """Flat row of the workspace object index (.spec/specs.json)."""
    id: str
    title: str
    parentId: Optional[str] = None
    completed: bool = False
    isState: bool = False
    createdAt: str = ""


# ── Mapping models ─────────────────────────────────────────────────

class LineRange(BaseModel):
    start: int
    end: int


class RelatedFile(BaseModel):
    filePath: str
    lineRange: Optional[LineRange] = None
    description: Optional[str] = None
    type: Optional[FileType] = None


class MappingEntry(BaseModel):
    objectId: str
    objectTitle: str
    status: MappingStatus = "unknown"
    summary: str = ""
    implFiles: list[RelatedFile] = Field(default_factory=list)
    testFiles: list[RelatedFile] = Field(default_factory=list)


# Name used by the UI layer.
FeatureMappingEntry = MappingEntry


class MappingChangeEntry(BaseModel):
    objectId: str
    objectTitle: str
    changeType: ChangeType
    changeSummary: Optional[str] = None
    addedFiles: list[RelatedFile] = Field(default_factory=list)
    removedFiles: list[RelatedFile] = Field(default_factory=list)
    currentStatus: Optional[MappingStatus] = None
    previousStatus: Optional[MappingStatus] = None


class TokenUsage(BaseModel):
    inputTokens: int = 0
    outputTokens: int = 0
    model: str = ""
    timestamp: str = ""


class FeatureMappingIndex(BaseModel):
    version: str = "1.0"
    scannedAt: str
    entries: list[MappingEntry] = Field(default_factory=list)
    changelog: list[MappingChangeEntry] = Field(default_factory=list)
    tokenUsage: Optional[TokenUsage] = None
    directoryTree: Optional[str] = None


# ── Scan models ────────────────────────────────────────────────────

class ScanProgressEvent(BaseModel):
    objectId: str
    objectTitle: str
    status: ProgressStatus
    current: int
    total: int


class ScanDiagnostics(BaseModel):
    """Prompt/response text kept for support; never persisted in the index."""
    systemPrompt: str = ""
    userPrompt: str = ""
    rawResponse: str = ""


class ScanStatus(BaseModel):
    workspaceId: str
    state: str = "idle"  # idle | running | completed | error
    kind: Optional[ScanKind] = None
    objectId: Optional[str] = None
    error: Optional[str] = None
    startedAt: str = ""
    finishedAt: str = ""


class ScanRun(BaseModel):
    id: int
    workspaceId: str
    kind: ScanKind
    objectId: Optional[str] = None
    status: str = "running"  # running | completed | error | cancelled
    startedAt: str = ""
    finishedAt: str = ""
    durationMs: int = 0
    entryCount: int = 0
    changeCount: int = 0
    inputTokens: int = 0
    outputTokens: int = 0
    model: str = ""
    error: str = ""
    diagnostics: Optional[ScanDiagnostics] = None


# ── Workspace + AI settings models ─────────────────────────────────

class Workspace(BaseModel):
    id: str
    name: str
    path: str
    description: str = ""
    repoUrl: str = ""


class AiConfig(BaseModel):
    apiKey: str = ""
    baseUrl: str = ""
    model: str = ""
    maxTokens: Optional[int] = None


class TokenUsageSummary(BaseModel):
    runs: int = 0
    inputTokens: int = 0
    outputTokens: int = 0
    byModel: dict[str, TokenUsage] = Field(default_factory=dict)
