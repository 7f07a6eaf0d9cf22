"""Unit tests for pipeline configuration."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from protannot.models.config import PipelineConfig, SelectionPolicy


class TestPipelineConfigDefaults:
    """Tests for default values and validation."""

    def test_defaults(self) -> None:
        """Should use the documented defaults."""
        config = PipelineConfig()
        assert config.blast_path == "blastp"
        assert config.database is None
        assert config.evalue == 1e-4
        assert config.num_threads == 8
        assert config.batch_size == 1000
        assert config.sub_batch_size == 500
        assert config.selection_policy == SelectionPolicy.BEST_EVALUE
        assert config.tool_timeout is None
        assert config.overlap_alignment is False
        assert config.provenance_tag == "BLAST"

    def test_frozen(self) -> None:
        """Should not allow modification after creation."""
        config = PipelineConfig()
        with pytest.raises(ValidationError):
            config.batch_size = 10

    @pytest.mark.parametrize(
        "field,value",
        [
            ("batch_size", 0),
            ("sub_batch_size", 0),
            ("evalue", 0),
            ("num_threads", 0),
            ("tool_timeout", -1),
            ("provenance_tag", ""),
        ],
    )
    def test_rejects_invalid_values(self, field: str, value: object) -> None:
        """Should reject non-positive sizes and empty tags."""
        with pytest.raises(ValidationError):
            PipelineConfig(**{field: value})

    def test_sub_batch_larger_than_batch(self) -> None:
        """Should reject sub-batches larger than the batch."""
        with pytest.raises(ValidationError, match="sub_batch_size"):
            PipelineConfig(batch_size=100, sub_batch_size=200)

    @pytest.mark.parametrize(
        "batch_size,expected",
        [(1, 1), (200, 200), (500, 500), (2000, 500)],
    )
    def test_sub_batch_follows_small_batches(self, batch_size: int, expected: int) -> None:
        """Should cap the default sub-batch size at the batch size."""
        assert PipelineConfig(batch_size=batch_size).sub_batch_size == expected

    def test_explicit_sub_batch_kept(self) -> None:
        """Should keep an explicit sub-batch size."""
        assert PipelineConfig(batch_size=200, sub_batch_size=50).sub_batch_size == 50

    def test_policy_from_string(self) -> None:
        """Should accept the policy name."""
        assert PipelineConfig(selection_policy="all").selection_policy == SelectionPolicy.ALL


class TestPipelineConfigYaml:
    """Tests for YAML loading and saving."""

    def test_nested_keys(self, tmp_path: Path) -> None:
        """Should map nested YAML sections to fields."""
        path = tmp_path / "config.yaml"
        path.write_text(
            "blast:\n"
            "  executable: /opt/blast/bin/blastp\n"
            "  database: /data/uniprot_sprot\n"
            "  evalue: 1.0e-5\n"
            "  threads: 16\n"
            "  timeout: 3600\n"
            "batching:\n"
            "  batch_size: 2000\n"
            "  sub_batch_size: 250\n"
            "  overlap_alignment: true\n"
            "selection:\n"
            "  policy: best_bitscore\n"
            "store:\n"
            "  url: sqlite:///proteins.db\n"
            "unknown_section:\n"
            "  ignored: 1\n"
        )

        config = PipelineConfig.from_yaml(path)

        assert config.blast_path == "/opt/blast/bin/blastp"
        assert config.database == Path("/data/uniprot_sprot")
        assert config.evalue == 1e-5
        assert config.num_threads == 16
        assert config.tool_timeout == 3600
        assert config.batch_size == 2000
        assert config.sub_batch_size == 250
        assert config.overlap_alignment is True
        assert config.selection_policy == SelectionPolicy.BEST_BITSCORE
        assert config.database_url == "sqlite:///proteins.db"

    def test_overrides_take_precedence(self, tmp_path: Path) -> None:
        """Should let non-None keyword overrides win over file values."""
        path = tmp_path / "config.yaml"
        path.write_text("blast:\n  threads: 16\n  evalue: 0.001\n")

        config = PipelineConfig.from_yaml(path, num_threads=4, evalue=None)

        assert config.num_threads == 4
        assert config.evalue == 0.001

    def test_small_batch_without_sub_batch(self, tmp_path: Path) -> None:
        """Should accept a batch size below the default sub-batch size."""
        path = tmp_path / "config.yaml"
        path.write_text("batching:\n  batch_size: 200\n")

        config = PipelineConfig.from_yaml(path)

        assert config.batch_size == 200
        assert config.sub_batch_size == 200

    def test_empty_file(self, tmp_path: Path) -> None:
        """Should fall back to defaults for an empty file."""
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert PipelineConfig.from_yaml(path) == PipelineConfig()

    def test_not_a_mapping(self, tmp_path: Path) -> None:
        """Should reject a YAML list."""
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError, match="mapping"):
            PipelineConfig.from_yaml(path)

    def test_missing_file(self, tmp_path: Path) -> None:
        """Should raise FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            PipelineConfig.from_yaml(tmp_path / "missing.yaml")

    def test_save_and_load(self, tmp_path: Path) -> None:
        """Should read back the configuration it wrote."""
        config = PipelineConfig(
            database=Path("/data/sprot"),
            batch_size=200,
            sub_batch_size=50,
            selection_policy=SelectionPolicy.ALL,
            tool_timeout=600,
        )
        path = tmp_path / "saved.yaml"
        config.to_yaml(path)

        assert PipelineConfig.from_yaml(path) == config
