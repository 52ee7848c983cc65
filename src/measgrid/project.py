"""Project-level configuration and scaffolding.

A measgrid project is a directory holding ``measgrid.yaml`` (engine
settings), the grid document (``grid.yaml`` by default) and ``logs/``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

CONFIG_FILENAME = "measgrid.yaml"

DEFAULT_CONFIG: dict[str, Any] = {
    "sample_half_width": 1,
    "default_precision": 3,
    "max_precision": 10,
    "sample_warning_threshold": 1_000_000,
    "document_file": "grid.yaml",
    "logging_fsync": False,
    "logging_tail_bytes": 2_097_152,  # 2 MB
}

DEMO_CONFIG = """\
# measgrid project config
# Samples per side of each input interval; evaluator calls per row grow as
# (2 * sample_half_width + 1) ** input_columns.
sample_half_width: 1
default_precision: 3
max_precision: 10
sample_warning_threshold: 1000000
document_file: grid.yaml
"""


class ConfigError(Exception):
    """Raised when ``measgrid.yaml`` cannot be read or fails validation."""


class GridConfig(BaseModel):
    """Validated engine settings."""

    sample_half_width: int = Field(default=1, ge=1)
    default_precision: int = Field(default=3, ge=0)
    max_precision: int = Field(default=10, ge=0)
    sample_warning_threshold: int = Field(default=1_000_000, ge=1)
    document_file: str = "grid.yaml"
    logging_fsync: bool = False
    logging_tail_bytes: int = Field(default=2_097_152, ge=1)

    def clamp_precision(self, precision: int) -> int:
        """Clamp *precision* to ``[0, max_precision]``."""
        return max(0, min(int(precision), self.max_precision))


def load_project_config(project_dir: Path) -> GridConfig:
    """Load project configuration from ``measgrid.yaml``, with defaults.

    Args:
        project_dir: Root of the measgrid project.

    Returns:
        The merged, validated configuration.

    Raises:
        ConfigError: If the file is not valid YAML or a setting is invalid.
    """
    config = dict(DEFAULT_CONFIG)
    config_path = project_dir / CONFIG_FILENAME
    if config_path.exists():
        try:
            user_config = yaml.safe_load(config_path.read_text()) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {config_path}: {exc}") from exc
        if not isinstance(user_config, dict):
            raise ConfigError(f"{config_path} must contain a mapping")
        config.update(user_config)

    try:
        return GridConfig.model_validate(config)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration in {config_path}: {exc}") from exc


def document_path(project_dir: Path, config: GridConfig | None = None) -> Path:
    """Return the path of the grid document inside *project_dir*."""
    config = config or load_project_config(project_dir)
    return project_dir / config.document_file


def scaffold_project(target_dir: Path) -> Path:
    """Create a new measgrid project at the target directory.

    Writes the default config and a document with the ``y`` and ``x``
    columns and one blank row.

    Args:
        target_dir: Directory to create (must not already hold a document).

    Returns:
        Path to the created project directory.
    """
    from measgrid.document import GridDocument
    from measgrid.storage import save_document

    target_dir = target_dir.resolve()
    target_dir.mkdir(parents=True, exist_ok=True)

    config_path = target_dir / CONFIG_FILENAME
    if not config_path.exists():
        config_path.write_text(DEMO_CONFIG)

    config = load_project_config(target_dir)
    doc_path = target_dir / config.document_file
    if doc_path.exists():
        raise FileExistsError(f"{config.document_file} already exists in {target_dir}")

    save_document(GridDocument.new(config), doc_path)
    (target_dir / "logs").mkdir(exist_ok=True)

    return target_dir
