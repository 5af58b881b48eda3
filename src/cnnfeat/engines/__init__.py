"""
Inference Engines
=================

The seam between feature extraction and the library that actually runs
the network.

Design Principles:
    - Abstract ``Network`` exposes the layer list, static channel counts
      and a batched ``forward`` returning named activations
    - Network definitions are YAML (``definition.py``), shared by all engines
    - ``TorchNetwork`` runs definitions with PyTorch
    - Engine classes are looked up by name via ``registry.get_engine()``
"""
