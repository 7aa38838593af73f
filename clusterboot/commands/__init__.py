from pathlib import Path
from typing import Optional

import typer

from ..errors import ClusterbootError
from ..modules.topology import ClusterSpec


def load_topology(file: Path, name: Optional[str] = None) -> ClusterSpec:
    """Load a topology file, optionally overriding the cluster name."""
    spec = ClusterSpec.load(file)
    if name and name != spec.name:
        spec = ClusterSpec.from_mapping({**spec.model_dump(), "name": name})
    return spec


def fail(error: ClusterbootError, code: int = 1) -> typer.Exit:
    typer.secho(f"❌ {error}", fg=typer.colors.RED, err=True)
    return typer.Exit(code=code)


__all__ = ['load_topology', 'fail']
