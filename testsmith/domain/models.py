"""
Domain models for the testsmith system.

This module contains the core domain models using Pydantic for validation
and serialization. They describe the scanned project, the chunked work plan,
the persisted run state and the progress events emitted while generating.
"""

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

TestFramework = Literal["jest", "vitest"]
UIRenderer = Literal["rtl-web", "rtl-native", "none"]
RunMode = Literal["agent", "basic"]


class TestSmithError(Exception):
    """Base exception for testsmith domain errors."""

    pass


class ChunkKind(str, Enum):
    """Enumeration of chunk kinds."""

    MODULE = "module"
    FUNCTION = "function"
    HOOK = "hook"
    COMPONENT = "component"


class SourceFile(BaseModel):
    """A single source unit produced by the project scan."""

    path: str = Field(..., description="Absolute path on disk")
    rel: str = Field(..., description="POSIX path relative to the project root")
    ext: str = Field(..., description="File extension including the dot")
    text: str = Field(..., description="Full file contents")
    lines: int = Field(..., ge=0, description="Number of lines in the file")

    model_config = ConfigDict(frozen=True)


class ScanResult(BaseModel):
    """All candidate source files of a project."""

    root: str
    files: list[SourceFile] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)

    def find(self, rel: str) -> SourceFile | None:
        """Return the scanned file with the given relative path, if any."""
        for entry in self.files:
            if entry.rel == rel:
                return entry
        return None


class TestSetup(BaseModel):
    """Detected test framework, UI renderer and output directory."""

    framework: TestFramework = "jest"
    renderer: UIRenderer = "none"
    output_dir: str

    model_config = ConfigDict(frozen=True)


class ContextInfo(BaseModel):
    """Context window reported (or assumed) for the backend."""

    context_size: int = Field(..., gt=0)

    model_config = ConfigDict(frozen=True)


class Chunk(BaseModel):
    """A token-bounded slice of one source file, submitted as one generation unit."""

    id: str = Field(..., description="Stable id: '<rel>#<name>' or '<rel>#slice<offset>'")
    code: str
    kind: ChunkKind
    approx_tokens: int = Field(..., ge=0)

    model_config = ConfigDict(frozen=True)


class WorkItem(BaseModel):
    """Planned work for one source file."""

    rel: str
    original_tokens: int = Field(..., ge=0)
    chunks: list[Chunk] = Field(default_factory=list)
    skip_reason: str | None = None

    model_config = ConfigDict(frozen=True)

    @property
    def is_skipped(self) -> bool:
        return not self.chunks


class WorkPlan(BaseModel):
    """Immutable plan for a whole run."""

    ctx_budget: int = Field(..., gt=0)
    framework: TestFramework
    renderer: UIRenderer
    items: list[WorkItem] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)

    @property
    def total_chunks(self) -> int:
        return sum(len(item.chunks) for item in self.items)

    @property
    def skipped_items(self) -> list[WorkItem]:
        return [item for item in self.items if item.is_skipped]


class TestPlanCase(BaseModel):
    """One planned test case produced by the planning agent."""

    title: str = ""
    kind: str = "unit"
    arrange: str = ""
    act: str = ""
    assert_: str = Field(default="", alias="assert")
    mocks: list[str] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("mocks", mode="before")
    @classmethod
    def coerce_mocks(cls, v: Any) -> Any:
        """Accept a single string where a list is expected."""
        if v is None:
            return []
        if isinstance(v, str):
            return [v] if v.strip() else []
        return v


class AgentResult(BaseModel):
    """Terminal result of a planning agent run."""

    ok: bool
    plan: list[TestPlanCase] = Field(default_factory=list)
    reason: str | None = None
    trace: list[dict[str, Any]] = Field(default_factory=list)
    steps: int = 0


class VerificationResult(BaseModel):
    """Outcome of statically verifying a candidate test file."""

    code: str
    diagnostics: list[str] = Field(default_factory=list)
    test_count: int = 0

    @property
    def ok(self) -> bool:
        return not self.diagnostics and self.test_count > 0


class RunTestResult(BaseModel):
    """Outcome of running one test file with the project's runner."""

    ok: bool
    output: str = ""
    command: str = ""
    runner_found: bool = True


class ProgressEventType(str, Enum):
    """Kinds of state transitions reported by the orchestrator."""

    START = "start"
    TOOL = "tool"
    WRITE = "write"
    SKIP = "skip"
    EXISTS = "exists"
    ERROR = "error"


class ProgressEvent(BaseModel):
    """One immutable state transition for a file or chunk."""

    type: ProgressEventType
    file: str
    chunk_id: str | None = None
    message: str | None = None
    tokens: int | None = None
    cases: int | None = None
    hints: str | None = None
    attempts: int | None = None
    duration_ms: int | None = None
    test_path: str | None = None

    model_config = ConfigDict(frozen=True)

    @property
    def is_terminal(self) -> bool:
        """Whether this event completes a chunk (or a file-level skip)."""
        return self.type in (
            ProgressEventType.WRITE,
            ProgressEventType.SKIP,
            ProgressEventType.EXISTS,
        )


class ChunkOutcome(BaseModel):
    """Result returned by the orchestrator for a single chunk."""

    status: Literal["write", "skip", "exists", "error"]
    attempts: int = 0
    message: str | None = None
    test_path: str | None = None
    cases: int = 0
    hints: str = ""


class ChunkRunRecord(BaseModel):
    """Persisted terminal status of one chunk."""

    status: Literal["write", "skip", "exists"]
    message: str | None = None
    tokens: int | None = None
    duration_ms: int | None = Field(default=None, alias="durationMs")
    updated_at: int = Field(..., alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)


class FileSummary(BaseModel):
    """Per-file summary shown at the end of a run and persisted for resume."""

    status: Literal["wrote", "exists", "skip"] = "skip"
    cases: int | None = None
    hints: str | None = None
    reason: str | None = None
    tokens: int | None = None
    duration_ms: int | None = Field(default=None, alias="durationMs")

    model_config = ConfigDict(populate_by_name=True)


class FileRunState(BaseModel):
    """Persisted state for one file: its summary plus its chunk records."""

    summary: FileSummary = Field(default_factory=FileSummary)
    chunks: dict[str, ChunkRunRecord] = Field(default_factory=dict)


class RunTotals(BaseModel):
    """Counters of a run."""

    written: int = 0
    skipped: int = 0
    exists: int = 0
    completed_chunks: int = Field(default=0, alias="completedChunks")
    total_chunks: int = Field(default=0, alias="totalChunks")

    model_config = ConfigDict(populate_by_name=True)


class RunState(BaseModel):
    """On-disk record of which chunks completed for a given plan."""

    version: Literal[1] = 1
    plan_signature: str = Field(..., alias="planSignature")
    mode: RunMode
    totals: RunTotals = Field(default_factory=RunTotals)
    per_file: dict[str, FileRunState] = Field(default_factory=dict, alias="perFile")
    created_at: int = Field(..., alias="createdAt")
    updated_at: int = Field(..., alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)
