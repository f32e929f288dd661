"""Cohort chat CLI: run the API server, apply migrations, inspect unread counts."""

import asyncio

import typer
import uvicorn

from backend.app.config import settings
from backend.app.log import configure_logging

app = typer.Typer(
    help="Cohort chat - messaging for the language school portals",
    no_args_is_help=True,
)


@app.command()
def start(
    host: str = typer.Option(settings.host, "--host", help="Interface to bind"),
    port: int = typer.Option(settings.port, "--port", "-p", help="API server port"),
    reload: bool = typer.Option(False, "--reload", help="Restart on code changes"),
) -> None:
    """Start the API server (HTTP + WebSocket)."""
    typer.secho("Cohort chat is starting up", fg=typer.colors.GREEN, bold=True)
    typer.echo(f"  API:      http://{settings.public_host}:{port}/api")
    typer.echo(f"  WS:       ws://{settings.public_host}:{port}/ws")
    typer.echo(f"  API docs: http://{settings.public_host}:{port}/docs")
    typer.echo(f"  Data:     {settings.data_dir}")
    typer.echo("")

    uvicorn.run(
        "backend.app.main:app",
        host=host,
        port=port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


@app.command()
def migrate() -> None:
    """Apply database migrations up to the latest revision."""
    from backend.app.db import init_db

    configure_logging(settings.log_level)
    asyncio.run(init_db())
    typer.secho(f"Database ready at {settings.db_path}", fg=typer.colors.GREEN)


@app.command()
def unread(user_id: str = typer.Argument(..., help="User id to report on")) -> None:
    """Print the unread message breakdown for a user."""
    configure_logging("WARNING")
    try:
        counts = asyncio.run(_unread(user_id))
    except LookupError:
        typer.secho(f"Unknown user: {user_id}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from None

    typer.echo(f"cohort: {counts.cohort}")
    typer.echo(f"direct: {counts.direct}")
    typer.echo(f"total:  {counts.total}")


async def _unread(user_id: str):
    from backend.app.db import async_session, engine
    from backend.app.services.auth import CallerSession
    from backend.app.services.chat_repository import ChatRepository
    from backend.app.services.read_tracker import unread_count

    try:
        async with async_session() as db:
            repo = ChatRepository(db)
            user = await repo.get_user(user_id)
            if user is None:
                raise LookupError(user_id)
            return await unread_count(repo, CallerSession(user.id, user.role))
    finally:
        await engine.dispose()


if __name__ == "__main__":
    app()
