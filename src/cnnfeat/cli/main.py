"""
CLI entry point for cnnfeat.

Commands:
  - 'info'            geometry of the configured extractor
  - 'extract'         feature grids for one or more images
  - 'compute-scales'  per-channel maxima over a directory of images
  - 'fit-pca'         PCA projection fitted on a directory of images

All commands read the extractor from a YAML config (see ``cnnfeat.config``).
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

app = typer.Typer(
    name="cnnfeat",
    help="Dense per-cell CNN features for object detection.",
    add_completion=False,
)
console = Console()


def _fail(error: Exception) -> None:
    """Report a configuration error and end the command with exit code 1."""
    console.print(f"[red]Configuration error:[/red] {escape(str(error))}", highlight=False)
    raise typer.Exit(code=1)


def _build_extractor(command: str, config: Path, **overrides):
    """Load the config, set up logging and create the extractor.

    The log file (if ``logging.log_dir`` is set) is named after ``command``.
    Configuration errors end the command with exit code 1.
    """
    from cnnfeat.config import load_config
    from cnnfeat.errors import CNNFeatError
    from cnnfeat.extractors.registry import create_extractor_from_config
    from cnnfeat.utils.logging import configure_logging

    cfg = load_config(config)
    configure_logging(cfg.logging.level, cfg.logging.log_dir, run_name=command)
    for key, value in overrides.items():
        setattr(cfg.extractor.params, key, value)
    try:
        return create_extractor_from_config(cfg.extractor)
    except CNNFeatError as e:
        _fail(e)


@app.command()
def info(
    config: Path = typer.Option(..., "--config", "-c", help="Path to YAML config file"),
) -> None:
    """Print the layers and cell geometry of the configured extractor."""
    extractor = _build_extractor("info", config)
    geometry = extractor.geometry

    table = Table(title=f"{extractor.name} ({extractor.network.name})")
    table.add_column("layer")
    table.add_column("channels", justify="right")
    table.add_column("cell size")
    table.add_column("border")
    for name, channels, cell, border in zip(
        geometry.layer_names,
        geometry.layer_channels,
        geometry.cell_sizes,
        geometry.border_sizes,
    ):
        table.add_row(name, str(channels), str(cell), str(border))
    console.print(table)
    console.print(f"  Cell size: {extractor.cell_size}")
    console.print(f"  Border size: {extractor.border_size}")
    console.print(f"  Features per cell: {extractor.num_features}")
    console.print(f"  Max image size: {extractor.max_image_size}")
    console.print(f"  Multi-thread: {extractor.supports_multi_thread}")


@app.command()
def extract(
    images: list[Path] = typer.Argument(..., help="Image files"),
    config: Path = typer.Option(..., "--config", "-c", help="Path to YAML config file"),
    output: Path = typer.Option(..., "--output", "-o", help=".npy (single image) or .npz output"),
) -> None:
    """Extract feature grids and save them.

    One image is saved as ``.npy``; several are saved into one ``.npz``
    keyed by file stem.
    """
    import numpy as np

    from cnnfeat.errors import CNNFeatError
    from cnnfeat.image import load_image

    extractor = _build_extractor("extract", config)
    grids = {}
    for path in images:
        try:
            feat = extractor.extract(load_image(path))
        except CNNFeatError as e:
            _fail(e)
        grids[path.stem] = feat
        console.print(f"  {path.name}: {feat.shape[1]}x{feat.shape[0]} cells, {feat.shape[2]} features")

    output.parent.mkdir(parents=True, exist_ok=True)
    if len(grids) == 1:
        saved = extractor.save_features(next(iter(grids.values())), output)
    else:
        saved = output.with_suffix(".npz")
        np.savez(saved, **grids)
    console.print(f"\n[bold green]Saved features to {saved}[/bold green]")


@app.command("compute-scales")
def compute_scales_cmd(
    image_dir: Path = typer.Argument(..., help="Directory of sample images"),
    config: Path = typer.Option(..., "--config", "-c", help="Path to YAML config file"),
    output: Path = typer.Option(..., "--output", "-o", help="Scales text file to write"),
) -> None:
    """Compute per-channel maxima of the raw features (for ``scalesFile``)."""
    from cnnfeat.errors import CNNFeatError
    from cnnfeat.features.calibration import compute_scales
    from cnnfeat.features.normalization import write_scales
    from cnnfeat.image import list_images, load_image

    # Scales are computed on raw features; drop any configured normalization
    extractor = _build_extractor("compute-scales", config, scales_file=None, pca_file=None)
    paths = list_images(image_dir)
    try:
        scales = compute_scales(extractor, (load_image(p) for p in paths))
    except CNNFeatError as e:
        _fail(e)
    write_scales(output, scales)
    console.print(
        f"\n[bold green]Wrote {scales.shape[0]} scales from {len(paths)} images to {output}[/bold green]"
    )


@app.command("fit-pca")
def fit_pca_cmd(
    image_dir: Path = typer.Argument(..., help="Directory of sample images"),
    config: Path = typer.Option(..., "--config", "-c", help="Path to YAML config file"),
    n_components: int = typer.Option(..., "--n-components", "-n", min=1, help="Output dimensionality"),
    output: Path = typer.Option(..., "--output", "-o", help="PCA binary file to write"),
    max_cells: Optional[int] = typer.Option(None, "--max-cells", help="Subsample at most this many cells"),
) -> None:
    """Fit a PCA projection on scaled features (for ``pcaFile``)."""
    from cnnfeat.errors import CNNFeatError
    from cnnfeat.features.calibration import fit_pca
    from cnnfeat.features.normalization import write_pca
    from cnnfeat.image import list_images, load_image

    extractor = _build_extractor("fit-pca", config, pca_file=None)
    paths = list_images(image_dir)
    try:
        params = fit_pca(extractor, (load_image(p) for p in paths), n_components, max_cells=max_cells)
    except CNNFeatError as e:
        _fail(e)
    write_pca(output, params)
    console.print(
        f"\n[bold green]Wrote PCA {params.input_dim} -> {params.output_dim} to {output}[/bold green]"
    )


if __name__ == "__main__":
    app()
