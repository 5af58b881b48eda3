"""
Configuration Schema and Loader
===============================

Pydantic-based configuration for extractors and logging, read from YAML.

Design Principles:
    - Pydantic validation catches typos and type errors before any network loads
    - Field aliases accept the extractor option names (``netFile``) as well
      as snake_case field names (``net_file``)
    - Relative paths are resolved against the config file's directory

Configuration Hierarchy::

    AppConfig
    ├── ExtractorConfig      extractor type, engine, options
    │   └── CNNParams        netFile, weightsFile, meanFile, layerName, ...
    └── LoggingConfig        level, optional log directory

Example::

    extractor:
      type: cnn
      engine: torch
      params:
        netFile: nets/toy.yaml
        weightsFile: nets/toy.pth
        layerName: conv3,conv4
        maxImgSize: 800
    logging:
      level: INFO
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field

_PATH_FIELDS = ("net_file", "weights_file", "mean_file", "scales_file", "pca_file")


class CNNParams(BaseModel):
    """Options of the CNN feature extractor."""

    net_file: Path = Field(..., alias="netFile", description="Network definition (YAML)")
    weights_file: Path = Field(..., alias="weightsFile", description="Trained weights")
    mean_file: Optional[Path] = Field(
        default=None,
        alias="meanFile",
        description="Per-channel mean (3 text values) or .npy mean image",
    )
    layer_name: str = Field(
        default="",
        alias="layerName",
        description=(
            "Comma-separated layers to concatenate. Empty = last convolution "
            "before the first fully-connected layer."
        ),
    )
    scales_file: Optional[Path] = Field(
        default=None, alias="scalesFile", description="Per-channel maxima of raw features"
    )
    pca_file: Optional[Path] = Field(
        default=None, alias="pcaFile", description="PCA mean + projection matrix (binary)"
    )
    max_img_size: int = Field(
        default=0, ge=0, alias="maxImgSize", description="Cap on the larger image side; 0 = unlimited"
    )

    model_config = {"populate_by_name": True, "extra": "forbid"}

    def resolve_paths(self, base_dir: Path) -> "CNNParams":
        """Copy with relative paths made relative to ``base_dir``."""
        updates = {}
        for name in _PATH_FIELDS:
            value = getattr(self, name)
            if value is not None and not value.is_absolute():
                updates[name] = base_dir / value
        return self.model_copy(update=updates)

    def to_options(self) -> dict[str, Any]:
        """Extractor options keyed by option name, unset files omitted."""
        options = self.model_dump(by_alias=True, exclude_none=True)
        return {k: (str(v) if isinstance(v, Path) else v) for k, v in options.items()}


class ExtractorConfig(BaseModel):
    """Which extractor to build and with which options."""

    type: str = Field(default="cnn", description="Registered extractor type")
    engine: str = Field(default="torch", description="Registered inference engine")
    params: CNNParams

    model_config = {"extra": "forbid"}


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO", description="DEBUG, INFO, WARNING or ERROR")
    log_dir: Optional[Path] = Field(default=None, description="Directory for a plain-text log file")


class AppConfig(BaseModel):
    """Top-level configuration."""

    extractor: ExtractorConfig
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"extra": "forbid"}


def load_config(path: str | Path) -> AppConfig:
    """Load and validate a YAML config file.

    Parameters
    ----------
    path : str | Path
        Path to YAML config file.

    Returns
    -------
    AppConfig
        Validated configuration with file paths resolved.
    """
    path = Path(path)
    with open(path, "r") as f:
        raw = yaml.safe_load(f)
    cfg = AppConfig(**raw)
    base_dir = path.parent
    cfg.extractor.params = cfg.extractor.params.resolve_paths(base_dir)
    if cfg.logging.log_dir is not None and not cfg.logging.log_dir.is_absolute():
        cfg.logging.log_dir = base_dir / cfg.logging.log_dir
    return cfg
