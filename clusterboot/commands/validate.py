from pathlib import Path

import typer

from clusterboot.commands import fail, load_topology
from clusterboot.errors import ClusterbootError
from clusterboot.modules.orchestrator import ClusterOrchestrator

app = typer.Typer()


@app.command("topology")
def validate_topology(
    file: Path = typer.Option(..., "--file", "-f", help="Cluster topology YAML"),
):
    """Validate a topology and check every host's credential resolves."""
    print(f"🔍 Validating topology: {file}")
    try:
        spec = load_topology(file)
        with ClusterOrchestrator(spec) as orchestrator:
            tasks = orchestrator.plan()
    except ClusterbootError as e:
        raise fail(e)

    for task in tasks:
        info = task.describe()
        after = f" after {', '.join(info['depends_on'])}" if info['depends_on'] else ""
        print(f"📋 {info['task']}: {info['user']}@{info['address']} (timeout {info['timeout']:.0f}s){after}")
    print(f"✅ Topology for cluster {spec.name} is valid.")
