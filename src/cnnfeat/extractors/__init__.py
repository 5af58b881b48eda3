"""
Feature Extractors
==================

Dense per-cell feature extractors behind one interface.

Design Principles:
    - Abstract base class (``FeatureExtractor``) defines geometry queries,
      pixel/cell conversion, typed options and ``extract``
    - ``CNNFeatureExtractor`` reads activations of pre-trained CNN layers
    - Factory pattern via ``registry.create_extractor()`` driven by config
"""
