"""
cnnfeat
=======

Dense per-cell feature vectors read from internal layers of a pre-trained
CNN, as a drop-in replacement for hand-crafted descriptors in detection
pipelines.

Package Layout::

    cli/          Typer CLI commands (info, extract, compute-scales, fit-pca)
    engines/      Network definitions and inference engines (torch)
    extractors/   FeatureExtractor interface, CNN extractor, registry
    features/     Preprocessing, layer concatenation, scaling/PCA, calibration
    network/      Shared network cache and loader
    utils/        Logging
"""

__version__ = "0.1.0"
