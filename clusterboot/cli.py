import logging
import sys

import typer

from clusterboot.commands import create, delete, status, validate
from clusterboot.logging import setup_logging

app = typer.Typer(help="Bootstrap k3s clusters on Lima VMs across macOS hosts.")

# Global debug flag
debug_mode = False

# Add all command groups
app.add_typer(create.app, name="create")
app.add_typer(delete.app, name="delete")
app.add_typer(status.app, name="status")
app.add_typer(validate.app, name="validate")


# Global options callback
@app.callback()
def main(
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug logging"),
):
    """clusterboot - multi-host k3s cluster bootstrap."""
    global debug_mode
    debug_mode = debug
    setup_logging(debug)
    if debug:
        logging.debug("Debug mode enabled")


if __name__ == "__main__":
    try:
        app()
    except Exception as e:
        if debug_mode:
            import traceback
            logging.error(f"Unhandled exception: {e}\n{traceback.format_exc()}")
        else:
            logging.error(f"Error: {e}")
        sys.exit(1)
