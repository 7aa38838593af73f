import logging
from pathlib import Path
from typing import Optional

import typer

from clusterboot import registry
from clusterboot.commands import fail, load_topology
from clusterboot.errors import ClusterbootError
from clusterboot.modules.orchestrator import ClusterOrchestrator

app = typer.Typer()

logger = logging.getLogger("clusterboot.commands.create")

EXIT_PARTIAL = 2


@app.command("cluster")
def create_cluster_cmd(
    file: Path = typer.Option(..., "--file", "-f", help="Cluster topology YAML"),
    name: Optional[str] = typer.Option(None, help="Override the cluster name from the topology"),
    state_dir: Optional[Path] = typer.Option(None, help="Where to save cluster state (default: $CLUSTERBOOT_STATE_DIR)"),
):
    """Provision the master, then every worker in parallel."""
    try:
        spec = load_topology(file, name)
        print(f"🚀 Creating cluster {spec.name} ({1 + len(spec.workers)} hosts)...")
        with ClusterOrchestrator(spec) as orchestrator:
            state = orchestrator.run()
    except ClusterbootError as e:
        raise fail(e)

    print(f"🖥️  Master: {state.master_address}")
    for worker in state.workers:
        print(f"🔗 Worker {worker.name}: {worker.ip}")
    for failure in state.failed_workers.values():
        print(f"⚠️  Worker {failure.host} failed ({failure.kind}): {failure.message}")

    try:
        target = registry.save_state(state, state_dir)
    except OSError as e:
        raise fail(ClusterbootError(f"Could not save cluster state: {e}"))
    print(f"🔐 Kubeconfig written to {target / registry.KUBECONFIG_FILE}")

    if state.partial:
        print(f"⚠️  Cluster {spec.name} is only partially provisioned.")
        raise typer.Exit(code=EXIT_PARTIAL)
    print(f"✅ Cluster {spec.name} is ready.")
