"""
Pydantic configuration models for protannot.

Defines configuration for the batch annotation pipeline: the BLAST
invocation, batching, hit selection and the record store. Configuration
can be loaded from YAML files or supplied through CLI arguments.
"""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Any, Self

from pydantic import BaseModel, Field, model_validator

from protannot.core.constants import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_EVALUE,
    DEFAULT_NUM_THREADS,
    DEFAULT_PROVENANCE_TAG,
    DEFAULT_SUB_BATCH_SIZE,
)

logger = logging.getLogger(__name__)


class SelectionPolicy(str, Enum):
    """Which BLAST hits of a query are used for annotation."""

    ALL = "all"
    BEST_EVALUE = "best_evalue"
    BEST_BITSCORE = "best_bitscore"


class PipelineConfig(BaseModel):
    """
    Configuration for a batch annotation run.

    Attributes:
        blast_path: BLAST executable (name on PATH or explicit path)
        database: Preformatted BLAST protein database prefix
        evalue: E-value cutoff passed to BLAST and re-checked on selection
        num_threads: Threads BLAST uses internally
        batch_size: Proteins per BLAST invocation
        sub_batch_size: Annotations per committed transaction (defaults to
            the smaller of 500 and batch_size)
        selection_policy: Hit selection policy
        tool_timeout: Seconds to wait for BLAST before terminating it
        overlap_alignment: Align batch N+1 while batch N is persisted
        provenance_tag: Marker stored with each derived annotation
        database_url: SQLAlchemy URL of the record store
    """

    blast_path: str = Field(default="blastp", description="BLAST executable")
    database: Path | None = Field(default=None, description="BLAST database prefix")
    evalue: float = Field(default=DEFAULT_EVALUE, gt=0, description="E-value cutoff")
    num_threads: int = Field(default=DEFAULT_NUM_THREADS, ge=1, description="BLAST threads")
    batch_size: int = Field(default=DEFAULT_BATCH_SIZE, ge=1, description="Proteins per batch")
    sub_batch_size: int = Field(
        default=DEFAULT_SUB_BATCH_SIZE,
        ge=1,
        description="Annotations per committed transaction",
    )
    selection_policy: SelectionPolicy = Field(
        default=SelectionPolicy.BEST_EVALUE,
        description="Hit selection policy",
    )
    tool_timeout: float | None = Field(
        default=None,
        gt=0,
        description="Seconds before a running BLAST process is terminated (None = no limit)",
    )
    overlap_alignment: bool = Field(
        default=False,
        description="Run the next batch's BLAST while the current batch is persisted",
    )
    provenance_tag: str = Field(
        default=DEFAULT_PROVENANCE_TAG,
        min_length=1,
        max_length=50,
        description="Marker stored with pipeline-derived annotations",
    )
    database_url: str = Field(
        default="sqlite:///protannot.db",
        description="SQLAlchemy URL of the record store",
    )

    @model_validator(mode="before")
    @classmethod
    def default_sub_batch_size(cls, data: Any) -> Any:
        """Without an explicit sub_batch_size, transactions never exceed the batch."""
        if not isinstance(data, dict) or data.get("sub_batch_size") is not None:
            return data
        batch_size = data.get("batch_size", DEFAULT_BATCH_SIZE)
        if isinstance(batch_size, int) and batch_size >= 1:
            data = {**data, "sub_batch_size": min(DEFAULT_SUB_BATCH_SIZE, batch_size)}
        return data

    @model_validator(mode="after")
    def validate_batch_sizes(self) -> Self:
        """Sub-batches bound transactions inside one alignment batch."""
        if self.sub_batch_size > self.batch_size:
            msg = (
                f"sub_batch_size ({self.sub_batch_size}) must be <= "
                f"batch_size ({self.batch_size})"
            )
            raise ValueError(msg)
        return self

    @classmethod
    def from_yaml(cls, path: Path, **overrides: Any) -> PipelineConfig:
        """
        Load pipeline configuration from a YAML file.

        The YAML file uses a nested structure (blast, batching, selection,
        store) that is flattened to model fields. Unknown keys are ignored.
        Keyword overrides that are not None take precedence over file values.

        Raises:
            FileNotFoundError: If YAML file does not exist.
            ValueError: If YAML is not a mapping or contains invalid values.
        """
        import yaml

        raw = yaml.safe_load(path.read_text())
        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            msg = f"YAML config must be a mapping, got {type(raw).__name__}"
            raise ValueError(msg)

        flat = _flatten_yaml_config(raw)
        flat.update({k: v for k, v in overrides.items() if v is not None})
        logger.debug("Loaded pipeline config from %s: %s", path, sorted(flat))
        return cls(**flat)

    def to_yaml(self, path: Path) -> None:
        """Write pipeline configuration to a YAML file."""
        path.write_text(self.to_yaml_str())

    def to_yaml_str(self) -> str:
        """Serialize pipeline configuration to a nested YAML string."""
        import yaml

        data = _build_yaml_structure(self)
        return yaml.dump(data, default_flow_style=False, sort_keys=False)

    model_config = {"frozen": True}


def _flatten_yaml_config(raw: dict[str, Any]) -> dict[str, Any]:
    """
    Flatten nested YAML config structure into PipelineConfig keyword arguments.

    Maps the documented nested YAML structure:
        blast.executable -> blast_path
        batching.sub_batch_size -> sub_batch_size
        selection.policy -> selection_policy
        store.url -> database_url
    """
    flat: dict[str, Any] = {}

    blast = raw.get("blast", {})
    _map_if_present(blast, "executable", flat, "blast_path")
    _map_if_present(blast, "database", flat, "database")
    _map_if_present(blast, "evalue", flat, "evalue")
    _map_if_present(blast, "threads", flat, "num_threads")
    _map_if_present(blast, "timeout", flat, "tool_timeout")

    batching = raw.get("batching", {})
    _map_if_present(batching, "batch_size", flat, "batch_size")
    _map_if_present(batching, "sub_batch_size", flat, "sub_batch_size")
    _map_if_present(batching, "overlap_alignment", flat, "overlap_alignment")

    selection = raw.get("selection", {})
    _map_if_present(selection, "policy", flat, "selection_policy")
    _map_if_present(selection, "provenance_tag", flat, "provenance_tag")

    store = raw.get("store", {})
    _map_if_present(store, "url", flat, "database_url")

    return flat


def _map_if_present(
    source: dict[str, Any],
    source_key: str,
    target: dict[str, Any],
    target_key: str,
) -> None:
    """Copy value from source dict to target dict if key exists."""
    if source_key in source and source[source_key] is not None:
        target[target_key] = source[source_key]


def _build_yaml_structure(config: PipelineConfig) -> dict[str, Any]:
    """Build nested YAML dict from a PipelineConfig instance."""
    return {
        "blast": {
            "executable": config.blast_path,
            "database": str(config.database) if config.database else None,
            "evalue": config.evalue,
            "threads": config.num_threads,
            "timeout": config.tool_timeout,
        },
        "batching": {
            "batch_size": config.batch_size,
            "sub_batch_size": config.sub_batch_size,
            "overlap_alignment": config.overlap_alignment,
        },
        "selection": {
            "policy": config.selection_policy.value,
            "provenance_tag": config.provenance_tag,
        },
        "store": {
            "url": config.database_url,
        },
    }
