"""
CNN Feature Extractor
=====================

Dense features read from internal layers of a pre-trained CNN, usable as a
drop-in replacement for hand-crafted descriptors such as HOG.

Options:
    - ``netFile`` (str)     network definition (required)
    - ``weightsFile`` (str) trained weights (required)
    - ``meanFile`` (str)    per-channel mean (3 text values) or ``.npy`` mean image
    - ``layerName`` (str)   comma-separated layers to concatenate; empty selects
                            the last convolution before the first fully-connected layer
    - ``scalesFile`` (str)  per-channel maxima of the raw features; must follow ``layerName``
    - ``pcaFile`` (str)     PCA mean + matrix; must follow ``layerName``
    - ``maxImgSize`` (int)  cap on the larger image side, 0 = unlimited

Setting ``netFile``/``weightsFile`` (re)loads the network through the shared
cache and re-resolves the layers; setting ``layerName`` re-resolves the
layers.  Scales or PCA parameters that no longer match the number of
channels after such a change are dropped with a warning.
"""

from __future__ import annotations

from typing import Optional

import numpy as np

from cnnfeat.engines.base import Network
from cnnfeat.errors import ConfigurationError, InvalidParameterValueError
from cnnfeat.extractors.base import FeatureExtractor
from cnnfeat.features.assembler import FeatureAssembler
from cnnfeat.features.normalization import PCAParams, load_pca, load_scales
from cnnfeat.features.preprocess import Preprocessor
from cnnfeat.geometry import LayerGeometry, Size, compute_geometry, parse_layer_names
from cnnfeat.image import ImageLike
from cnnfeat.network.cache import NetworkCache
from cnnfeat.network.loader import ChannelMean, load_mean, load_network
from cnnfeat.utils.logging import get_logger

logger = get_logger(__name__)


class CNNFeatureExtractor(FeatureExtractor):
    """Extract features from one or more layers of a CNN.

    Parameters
    ----------
    net_file, weights_file : str
        Network definition and weights.  Both are needed before use.
    mean_file : str
        Optional channel mean.
    layer_name : str or None
        Layers to extract from (see ``layerName``).
    engine : str
        Registered inference engine.
    cache : NetworkCache or None
        Network cache; defaults to the process-wide one.
    """

    PARAM_TYPES = {
        "netFile": str,
        "weightsFile": str,
        "meanFile": str,
        "layerName": str,
        "scalesFile": str,
        "pcaFile": str,
        "maxImgSize": int,
    }

    def __init__(
        self,
        net_file: str = "",
        weights_file: str = "",
        mean_file: str = "",
        layer_name: Optional[str] = None,
        *,
        engine: str = "torch",
        cache: Optional[NetworkCache] = None,
    ):
        super().__init__()
        self._engine = engine
        self._cache = cache
        self._layer_name_set = False
        self._net: Optional[Network] = None
        self._mean: Optional[ChannelMean] = None
        self._geometry: Optional[LayerGeometry] = None
        self._scales: Optional[np.ndarray] = None
        self._pca: Optional[PCAParams] = None
        self._assembler: Optional[FeatureAssembler] = None

        if net_file:
            self.set_param("netFile", net_file)
        if weights_file:
            self.set_param("weightsFile", weights_file)
        if mean_file:
            self.set_param("meanFile", mean_file)
        if layer_name is not None:
            self.set_param("layerName", layer_name)

    def __repr__(self) -> str:
        layers = ",".join(self._geometry.layer_names) if self._geometry else "-"
        return f"CNNFeatureExtractor(engine={self._engine!r}, layers={layers}, features={self.num_features})"

    # ------------------------------------------------------------------
    # Geometry queries
    # ------------------------------------------------------------------

    @property
    def type(self) -> str:
        return "CNN"

    @property
    def name(self) -> str:
        return "CNN Feature Extractor"

    @property
    def engine(self) -> str:
        return self._engine

    @property
    def network(self) -> Optional[Network]:
        return self._net

    @property
    def geometry(self) -> Optional[LayerGeometry]:
        return self._geometry

    @property
    def layer_names(self) -> tuple[str, ...]:
        return self._geometry.layer_names if self._geometry else ()

    @property
    def num_features(self) -> int:
        if self._pca is not None:
            return self._pca.output_dim
        return self._geometry.output_channels if self._geometry else 0

    @property
    def cell_size(self) -> Size:
        return self._geometry.cell_size if self._geometry else Size(1, 1)

    @property
    def border_size(self) -> Size:
        return self._geometry.border_size if self._geometry else Size(0, 0)

    @property
    def max_image_size(self) -> Size:
        return Size.square(self._params["maxImgSize"])

    @property
    def supports_multi_thread(self) -> bool:
        return self._net is not None and self._net.supports_concurrent_forward

    @property
    def patchwork_processing(self) -> bool:
        return True

    @property
    def patchwork_padding(self) -> Size:
        return self.border_size

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    def extract(self, image: ImageLike, scale: bool = True, project: bool = True) -> np.ndarray:
        """Compute the feature grid of ``image``.

        ``scale=False`` returns raw concatenated activations; ``project=False``
        skips PCA.  Both are used when computing normalization parameters.

        Raises
        ------
        ConfigurationError
            If no network has been loaded yet.
        """
        assembler = self._assembler
        if assembler is None:
            raise ConfigurationError("netFile and weightsFile must be set before extracting features")
        return assembler.extract(image, scale=scale, project=project)

    # ------------------------------------------------------------------
    # Options
    # ------------------------------------------------------------------

    def _apply_param(self, name: str) -> None:
        if name in ("netFile", "weightsFile"):
            self._load_network()
        elif name == "meanFile":
            path = self._params["meanFile"]
            self._mean = load_mean(path) if path else None
        elif name == "layerName":
            self._load_layer_info()
        elif name == "scalesFile":
            self._load_scales()
        elif name == "pcaFile":
            self._load_pca()
        elif name == "maxImgSize":
            if self._params["maxImgSize"] < 0:
                raise InvalidParameterValueError("maxImgSize must be >= 0")
        self._rebuild()

    def _load_network(self) -> None:
        net_file, weights_file = self._params["netFile"], self._params["weightsFile"]
        if not net_file or not weights_file:
            if self._net is not None:
                logger.info("extractor | network released")
            self._net = None
            self._geometry = None
            return
        net = load_network(self._engine, net_file, weights_file, self._cache)
        geometry = compute_geometry(net, self._requested_layers())
        self._commit_geometry(geometry)
        self._net = net

    def _load_layer_info(self) -> None:
        if self._net is not None:
            geometry = compute_geometry(self._net, self._requested_layers())
            self._commit_geometry(geometry)
        self._layer_name_set = True

    def _requested_layers(self) -> list[str]:
        return parse_layer_names(self._params["layerName"])

    def _commit_geometry(self, geometry: LayerGeometry) -> None:
        channels = geometry.output_channels
        if self._scales is not None and self._scales.shape[0] != channels:
            logger.warning(
                "extractor | dropping scales (%d values) for %d channels",
                self._scales.shape[0],
                channels,
            )
            self._scales = None
            self._params["scalesFile"] = ""
        if self._pca is not None and self._pca.input_dim != channels:
            logger.warning(
                "extractor | dropping PCA (%d inputs) for %d channels",
                self._pca.input_dim,
                channels,
            )
            self._pca = None
            self._params["pcaFile"] = ""
        self._geometry = geometry

    def _require_layers(self, param: str) -> LayerGeometry:
        if not self._layer_name_set or self._geometry is None:
            raise ConfigurationError(
                f"{param} must be set after layerName and after the network has been loaded"
            )
        return self._geometry

    def _load_scales(self) -> None:
        path = self._params["scalesFile"]
        if not path:
            self._scales = None
            return
        geometry = self._require_layers("scalesFile")
        self._scales = load_scales(path, expected=geometry.output_channels)

    def _load_pca(self) -> None:
        path = self._params["pcaFile"]
        if not path:
            self._pca = None
            return
        geometry = self._require_layers("pcaFile")
        self._pca = load_pca(path, expected=geometry.output_channels)

    def _rebuild(self) -> None:
        if self._net is None or self._geometry is None:
            self._assembler = None
            return
        self._assembler = FeatureAssembler(
            self._net,
            self._geometry,
            Preprocessor(self._net.input_spec, self._mean, self._params["maxImgSize"]),
            self._scales,
            self._pca,
        )
