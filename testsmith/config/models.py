"""Configuration models for testsmith."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_SKIP_SENTINEL = "__SKIP__"


class LLMProviderConfig(BaseModel):
    """Generative backend selection and sampling defaults."""

    provider: Literal["openai", "anthropic"] = Field(
        default="openai", description="Backend adapter to use"
    )
    model: str = Field(default="gpt-4.1-mini", description="Model identifier")
    base_url: str | None = Field(
        default=None, description="Custom OpenAI-compatible endpoint"
    )
    context_size: int = Field(
        default=8192, ge=1024, description="Assumed context window when the backend does not report one"
    )
    temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    timeout: float = Field(default=180.0, gt=0.0, description="Request timeout in seconds")
    max_retries: int = Field(default=3, ge=0, le=10)


class BudgetConfig(BaseModel):
    """Token budget derivation used by the planner and the orchestrator."""

    context_fraction: float = Field(
        default=0.5, gt=0.0, le=1.0, description="Share of the context window to use"
    )
    min_budget: int = Field(default=1024, ge=256, description="Absolute budget floor")
    prompt_reserve: int = Field(
        default=768, ge=0, description="Tokens reserved for prompt scaffolding per chunk"
    )
    prompt_headroom: int = Field(
        default=128, ge=0, description="Headroom kept free when sizing a prompt"
    )
    min_file_tokens: int = Field(
        default=64, ge=0, description="Files below this estimate are skipped"
    )
    answer_fraction: float = Field(
        default=0.35, gt=0.0, le=1.0, description="Share of the budget for the answer"
    )
    max_answer_tokens: int = Field(default=900, ge=64)


class GenerationConfig(BaseModel):
    """Per-chunk generation behavior."""

    max_attempts: int = Field(
        default=3, ge=1, le=10, description="Attempts per chunk before abandoning"
    )
    run_tests: bool = Field(
        default=False, description="Execute each candidate with the project's runner"
    )
    force: bool = Field(default=False, description="Overwrite existing test files")
    concurrency: int = Field(
        default=1, ge=1, le=16, description="Chunks processed at the same time"
    )
    test_timeout: int = Field(default=120, ge=5, description="Seconds per test run")
    skip_sentinel: str = Field(
        default=DEFAULT_SKIP_SENTINEL, min_length=1, description="Reply meaning nothing to test"
    )
    state_file: str = Field(default=".testsmith-state.json")
    state_debounce_ms: int = Field(default=200, ge=0)


class AgentConfig(BaseModel):
    """Tool-calling planning agent settings."""

    enabled: bool = Field(default=False, description="Plan with tools before generating")
    max_tool_calls: int = Field(
        default=40, ge=1, le=500, description="Tool invocations allowed per chunk"
    )
    review: bool = Field(
        default=False, description="Let the backend review each accepted test"
    )
    review_max_tool_calls: int = Field(default=30, ge=1, le=500)


class DiscoveryConfig(BaseModel):
    """Project scan settings."""

    include: list[str] = Field(
        default_factory=lambda: ["**/*.ts", "**/*.tsx", "**/*.js", "**/*.jsx"]
    )
    exclude: list[str] = Field(default_factory=list)
    min_lines: int = Field(default=10, ge=0)
    max_files: int | None = Field(default=None, ge=1)

    @field_validator("include", "exclude")
    @classmethod
    def validate_patterns(cls, v: list[str]) -> list[str]:
        """Reject empty glob patterns."""
        for pattern in v:
            if not isinstance(pattern, str) or not pattern.strip():
                raise ValueError("Glob patterns must be non-empty strings")
        return v


class LoggingConfig(BaseModel):
    """Logging behavior."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"


class TestSmithConfig(BaseModel):
    """Main configuration model for testsmith."""

    llm: LLMProviderConfig = Field(default_factory=LLMProviderConfig)
    budget: BudgetConfig = Field(default_factory=BudgetConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def update_from_dict(self, updates: dict[str, Any]) -> "TestSmithConfig":
        """Return a copy with ``updates`` deep-merged over the current values."""
        return TestSmithConfig(**deep_merge(self.model_dump(), updates))

    model_config = ConfigDict(validate_assignment=True, extra="forbid")


def deep_merge(base: dict, updates: dict) -> dict:
    """Deeply merge updates into a copy of base."""
    result = base.copy()
    for key, value in updates.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result
