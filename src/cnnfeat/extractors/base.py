"""
Feature Extractor Base Class
============================

Abstract interface that every feature extractor implements.

An extractor maps an image to a grid of cells, each described by a
fixed-length feature vector.  Callers (e.g. a sliding-window detector)
only need the geometry queries below to relate cells to pixels::

    pixels = cells * cell_size + 2 * border_size      (0 cells -> 0 pixels)
    cells  = max(0, (pixels - 2 * border_size) // cell_size)

Required Overrides:
    - ``type``, ``name``, ``num_features``, ``cell_size``, ``border_size``
    - ``extract(image)`` -> ``(cells_y, cells_x, num_features)`` array
    - ``_apply_param(name)`` to react to option changes
    - ``PARAM_TYPES`` listing the options in the order they must be applied
"""

from __future__ import annotations

import numbers
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, ClassVar, Mapping

import numpy as np

from cnnfeat.errors import InvalidParameterValueError, UnknownParameterError
from cnnfeat.geometry import Size
from cnnfeat.image import ImageLike


class FeatureExtractor(ABC):
    """Abstract base for all feature extractors."""

    #: Option name -> value type, in canonical application order.
    PARAM_TYPES: ClassVar[dict[str, type]] = {}

    def __init__(self):
        self._params: dict[str, Any] = {
            name: ("" if t is str else t()) for name, t in self.PARAM_TYPES.items()
        }

    # ------------------------------------------------------------------
    # Identity and geometry
    # ------------------------------------------------------------------

    @property
    @abstractmethod
    def type(self) -> str:
        """Identifier of this kind of extractor (e.g. 'CNN')."""
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name for logging."""
        ...

    @property
    @abstractmethod
    def num_features(self) -> int:
        """Length of the feature vector of one cell."""
        ...

    @property
    @abstractmethod
    def cell_size(self) -> Size:
        """Pixels covered by one cell along x and y."""
        ...

    @property
    @abstractmethod
    def border_size(self) -> Size:
        """Pixels at each image edge that produce no cells."""
        ...

    @property
    def max_image_size(self) -> Size:
        """Largest image size processed; 0 means unlimited."""
        return Size(0, 0)

    @property
    def supports_multi_thread(self) -> bool:
        """Whether ``extract`` may be called from several threads at once."""
        return False

    @property
    def patchwork_processing(self) -> bool:
        """Whether several scales may be tiled onto one canvas and extracted at once."""
        return False

    @property
    def patchwork_padding(self) -> Size:
        """Padding to leave between images tiled onto one canvas."""
        return Size(0, 0)

    def cells_to_pixels(self, cells: Size) -> Size:
        cell, border = self.cell_size, self.border_size
        return Size(
            cells[0] * cell.width + 2 * border.width if cells[0] > 0 else 0,
            cells[1] * cell.height + 2 * border.height if cells[1] > 0 else 0,
        )

    def pixels_to_cells(self, pixels: Size) -> Size:
        cell, border = self.cell_size, self.border_size
        return Size(
            max(0, (pixels[0] - 2 * border.width) // cell.width),
            max(0, (pixels[1] - 2 * border.height) // cell.height),
        )

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    @abstractmethod
    def extract(self, image: ImageLike) -> np.ndarray:
        """Compute the feature grid of an image.

        Parameters
        ----------
        image : ImageLike
            ``(H, W, C)`` RGB array (C = 1 or 3) or PIL image.

        Returns
        -------
        np.ndarray, shape (cells_y, cells_x, num_features)
        """
        ...

    def save_features(self, features: np.ndarray, output_path: Path) -> Path:
        """Save one feature grid as ``.npy``."""
        output_path = Path(output_path).with_suffix(".npy")
        output_path.parent.mkdir(parents=True, exist_ok=True)
        np.save(output_path, features)
        return output_path

    # ------------------------------------------------------------------
    # Options
    # ------------------------------------------------------------------

    @property
    def params(self) -> dict[str, Any]:
        """Current option values."""
        return dict(self._params)

    def get_param(self, name: str) -> Any:
        if name not in self.PARAM_TYPES:
            raise UnknownParameterError(name, tuple(self.PARAM_TYPES))
        return self._params[name]

    def set_param(self, name: str, value: Any) -> None:
        """Change an option.

        If applying the new value fails, the previous value and all state
        derived from it stay in effect.

        Raises
        ------
        UnknownParameterError
            ``name`` is not an option of this extractor.
        InvalidParameterValueError
            ``value`` has the wrong type for the option.
        ConfigurationError
            The value was accepted but could not be applied.
        """
        if name not in self.PARAM_TYPES:
            raise UnknownParameterError(name, tuple(self.PARAM_TYPES))
        value = self._coerce(name, value)
        old = self._params[name]
        self._params[name] = value
        try:
            self._apply_param(name)
        except Exception:
            self._params[name] = old
            raise

    def _coerce(self, name: str, value: Any) -> Any:
        expected = self.PARAM_TYPES[name]
        if expected is str and isinstance(value, os.PathLike):
            return os.fspath(value)
        if expected is int:
            # numpy integers count, bools do not
            if isinstance(value, bool) or not isinstance(value, numbers.Integral):
                raise InvalidParameterValueError(
                    f"Parameter '{name}' expects an integer, got {value!r}"
                )
            return int(value)
        if not isinstance(value, expected):
            raise InvalidParameterValueError(
                f"Parameter '{name}' expects {expected.__name__}, got {type(value).__name__}"
            )
        return value

    @abstractmethod
    def _apply_param(self, name: str) -> None:
        """React to ``self._params[name]`` having changed."""
        ...

    @classmethod
    def from_params(cls, params: Mapping[str, Any], **kwargs: Any) -> "FeatureExtractor":
        """Create an extractor and apply ``params`` in canonical order.

        ``None`` values are skipped; ``kwargs`` go to the constructor.
        """
        for key in params:
            if key not in cls.PARAM_TYPES:
                raise UnknownParameterError(key, tuple(cls.PARAM_TYPES))
        extractor = cls(**kwargs)
        for key in cls.PARAM_TYPES:
            if params.get(key) is not None:
                extractor.set_param(key, params[key])
        return extractor
