"""
Pydantic models for ibex configuration.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class SyncConfig(BaseModel):
    """
    Record-branch sync settings.

    Attributes:
        branch: Name of the record branch
        remote: Remote to sync with
        max_push_attempts: Total push attempts before giving up
        backoff_base_seconds: Delay before the second attempt
        backoff_multiplier: Exponential backoff multiplier
        network_timeout_seconds: Timeout for fetch and push
        auto_stage_on_permanent_failure: Save changed records to the outbox
            when the remote refuses the push
        import_outbox_on_success: Import a pending outbox after a successful push
    """

    model_config = ConfigDict(extra="ignore")

    branch: str = Field(default="ibex-sync", min_length=1)
    remote: str = Field(default="origin", min_length=1)
    max_push_attempts: int = Field(default=3, ge=1, le=20)
    backoff_base_seconds: float = Field(default=0.5, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    network_timeout_seconds: float = Field(default=60, gt=0)
    auto_stage_on_permanent_failure: bool = True
    import_outbox_on_success: bool = True


class ExternalConfig(BaseModel):
    """External tracker settings."""

    model_config = ConfigDict(extra="ignore")

    enabled: bool = True
    tracker: str = Field(default="github")
    timeout_seconds: float = Field(default=30, gt=0)


class DocsConfig(BaseModel):
    """Doc cache settings: destination name -> path or URL."""

    model_config = ConfigDict(extra="ignore")

    files: dict[str, str] = Field(default_factory=dict)
    timeout_seconds: float = Field(default=30, gt=0)


class MergeConfig(BaseModel):
    """Merge settings."""

    model_config = ConfigDict(extra="ignore")

    strict: bool = Field(default=False, description="Fail on any last-write-wins conflict")


class IbexConfig(BaseModel):
    """
    Top-level ibex configuration.

    Example:
        >>> config = IbexConfig()
        >>> config.sync.branch
        'ibex-sync'
    """

    model_config = ConfigDict(extra="ignore")

    sync: SyncConfig = Field(default_factory=SyncConfig)
    external: ExternalConfig = Field(default_factory=ExternalConfig)
    docs: DocsConfig = Field(default_factory=DocsConfig)
    merge: MergeConfig = Field(default_factory=MergeConfig)
