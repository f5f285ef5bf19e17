"""Server command for offlinesync CLI.

Commands:
- serve: Run the reference record server
"""

from __future__ import annotations

import os

import click


@click.command()
@click.option("--host", default="127.0.0.1", show_default=True, help="Bind address.")
@click.option("--port", "-p", type=int, default=8000, show_default=True, help="Bind port.")
@click.option(
    "--db-path",
    type=click.Path(),
    default=None,
    help="Path to database file (default: OFFLINESYNC_DB_PATH or ./offlinesync-server.db).",
)
@click.option(
    "--token",
    default=None,
    help="Require this bearer token (default: OFFLINESYNC_TOKEN, unset = no auth).",
)
def serve(host: str, port: int, db_path: str | None, token: str | None) -> None:
    """Run the reference record server.

    Examples:

        offlinesync serve --port 8000

        OFFLINESYNC_TOKEN=secret offlinesync serve --host 0.0.0.0
    """
    from pathlib import Path

    import uvicorn

    from offlinesync.server.app import create_app, setup_logging
    from offlinesync.server.database import Database

    resolved_db_path = db_path or os.environ.get("OFFLINESYNC_DB_PATH", "offlinesync-server.db")
    resolved_token = token or os.environ.get("OFFLINESYNC_TOKEN") or None

    setup_logging()
    app = create_app(Database(Path(resolved_db_path)), token=resolved_token)
    click.echo(f"Serving records on http://{host}:{port} (database: {resolved_db_path})")
    uvicorn.run(app, host=host, port=port)
