from pathlib import Path
from typing import Optional

import typer

from clusterboot import registry
from clusterboot.commands import fail
from clusterboot.errors import ClusterbootError

app = typer.Typer()


@app.command("cluster")
def status_cluster(
    name: str = typer.Option(..., help="Cluster name"),
    state_dir: Optional[Path] = typer.Option(None, help="Cluster state directory (default: $CLUSTERBOOT_STATE_DIR)"),
):
    """Show the saved outputs of a cluster."""
    try:
        record = registry.load_state(name, state_dir)
    except ClusterbootError as e:
        raise fail(e)

    outputs = record.get("outputs", {})
    status = record.get("status", {})
    state = "deleted" if status.get("deleted") else ("partial" if record.get("partial") else "provisioned")

    print(f"📡 Status for cluster: {name} ({state})")
    print(f"🖥️  Master: {outputs.get('masterNodeIP')}")
    workers = outputs.get("workerNodeIPs", [])
    print(f"🔗 Workers: {', '.join(workers) if workers else '-'}")
    for worker, failure in outputs.get("failedWorkers", {}).items():
        print(f"⚠️  {worker}: {failure.get('error')}")
    print(f"🔐 Kubeconfig: {record.get('kubeconfig_path')}")
    print(f"🕒 Last updated: {status.get('last_updated')}")
