from pathlib import Path
from typing import Optional

import typer

from clusterboot import registry
from clusterboot.commands import fail, load_topology
from clusterboot.errors import ClusterbootError
from clusterboot.modules.orchestrator import ClusterOrchestrator

app = typer.Typer()


@app.command("cluster")
def delete_cluster_cmd(
    file: Path = typer.Option(..., "--file", "-f", help="Cluster topology YAML"),
    name: Optional[str] = typer.Option(None, help="Override the cluster name from the topology"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
    state_dir: Optional[Path] = typer.Option(None, help="Cluster state directory (default: $CLUSTERBOOT_STATE_DIR)"),
):
    """Tear down every worker VM, then the master VM."""
    try:
        spec = load_topology(file, name)
    except ClusterbootError as e:
        raise fail(e)

    if not yes:
        confirm = typer.confirm(f"Are you sure you want to delete cluster '{spec.name}'?", default=False)
        if not confirm:
            print("❌ Deletion cancelled.")
            raise typer.Exit()

    try:
        with ClusterOrchestrator(spec) as orchestrator:
            report = orchestrator.teardown()
    except ClusterbootError as e:
        raise fail(e)

    for task_name in report.destroyed:
        print(f"🗑️ {task_name}: destroyed")
    for task_name, error in report.errors.items():
        print(f"⚠️  {task_name}: {error}")

    if not report.ok:
        typer.secho(f"❌ Teardown incomplete: {report.summary()}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    path = registry.mark_deleted(spec.name, state_dir)
    if path:
        print(f"📝 Updated cluster status in {path}")
    print("✅ Cluster deletion complete.")
