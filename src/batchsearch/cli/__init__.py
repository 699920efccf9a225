"""
CLI for the batch search runner.

Provides commands to submit, run and inspect batch searches.
"""

import logging
import uuid
from pathlib import Path
from typing import List, Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from batchsearch.core.config import LoggingConfig
from batchsearch.core.models import BatchSearch, BatchSearchState, User
from batchsearch.infrastructure import BatchSearchNotFound
from batchsearch.services import ServicesContainer, create_services

# Initialize Rich Console
console = Console()
# Log records go to stderr, away from command output
err_console = Console(stderr=True)

app = typer.Typer(
    name="batchsearch",
    help="Batch search runner - run multi-query searches against a document index",
    add_completion=False,
)

_STATE_STYLES = {
    BatchSearchState.QUEUED: "yellow",
    BatchSearchState.RUNNING: "blue",
    BatchSearchState.SUCCESS: "green",
    BatchSearchState.FAILURE: "red",
}


def configure_logging(config: LoggingConfig) -> None:
    """Route log records through Rich at the configured level."""
    logging.basicConfig(
        level=config.level.upper(),
        format=config.format,
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def get_services(config_path: Optional[Path], db_path: Optional[Path]) -> ServicesContainer:
    """Load .env, build services and apply the logging config."""
    load_dotenv()
    container = create_services(config_path=config_path, db_path=db_path)
    configure_logging(container.config.logging)
    return container


def _state_label(state: BatchSearchState) -> str:
    return f"[{_STATE_STYLES[state]}]{state.value}[/{_STATE_STYLES[state]}]"


ConfigOption = typer.Option(None, "--config", "-c", help="Path to a YAML or JSON config file")
DbOption = typer.Option(None, "--db", help="Path to the batch search database")


@app.command()
def submit(
    project: str = typer.Argument(..., help="Collection to search"),
    name: str = typer.Option(..., "--name", "-n", help="Name of the batch search"),
    queries: List[str] = typer.Option(..., "--query", "-q", help="Query (repeatable)"),
    user: str = typer.Option("local", "--user", "-u", help="Owner of the batch search"),
    description: str = typer.Option("", "--description", help="Free text description"),
    fuzziness: int = typer.Option(0, "--fuzziness", help="Fuzziness level"),
    phrase_matches: bool = typer.Option(False, "--phrase", help="Match queries as phrases"),
    file_types: List[str] = typer.Option([], "--file-type", help="Content type filter"),
    paths: List[str] = typer.Option([], "--path", help="Directory prefix filter"),
    config: Optional[Path] = ConfigOption,
    db: Optional[Path] = DbOption,
):
    """Queue a new batch search."""
    container = get_services(config, db)
    batch_search = BatchSearch(
        uuid=str(uuid.uuid4()),
        user=User(user),
        project=project,
        name=name,
        description=description,
        queries={query: 0 for query in queries},
        fuzziness=fuzziness,
        phrase_matches=phrase_matches,
        file_types=list(file_types),
        paths=list(paths),
    )
    try:
        container.repository.save(batch_search)
    finally:
        container.repository.close()
    console.print(f"[bold green]Queued[/bold green] batch search {batch_search.uuid}")


@app.command()
def run(
    batch_search_id: Optional[str] = typer.Option(
        None, "--id", help="Run only this batch search"
    ),
    user: str = typer.Option("local", "--user", "-u", help="User running the batch searches"),
    config: Optional[Path] = ConfigOption,
    db: Optional[Path] = DbOption,
):
    """Run queued batch searches."""
    container = get_services(config, db)

    with container.create_batch_search_runner(User(user)) as runner:
        try:
            if batch_search_id:
                total = runner.run_one(batch_search_id)
                processed = 1
            else:
                total = runner.run_all()
                processed = runner.progress.processed
        except BatchSearchNotFound as e:
            console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
            raise typer.Exit(1)

    summary = Table.grid(padding=1)
    summary.add_column(style="bold")
    summary.add_column()
    summary.add_row("Batch Searches:", str(processed))
    summary.add_row("Total Results:", str(total))
    console.print(
        Panel(
            summary,
            title="[bold green]Run Complete[/bold green]",
            border_style="green",
            expand=False,
        )
    )


@app.command(name="list")
def list_batch_searches(
    user: str = typer.Option("local", "--user", "-u", help="Owner of the batch searches"),
    config: Optional[Path] = ConfigOption,
    db: Optional[Path] = DbOption,
):
    """List the batch searches of a user."""
    container = get_services(config, db)
    try:
        batch_searches = container.repository.get_batch_searches(User(user))
    finally:
        container.repository.close()

    if not batch_searches:
        console.print("[yellow]No batch searches found.[/yellow]")
        return

    table = Table(title=f"Batch searches of {escape(user)}")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name")
    table.add_column("Project")
    table.add_column("Queries", justify="right")
    table.add_column("Results", justify="right")
    table.add_column("State")
    for bs in batch_searches:
        table.add_row(
            bs.uuid,
            escape(bs.name),
            escape(bs.project),
            str(len(bs.queries)),
            str(bs.nb_results),
            _state_label(bs.state),
        )
    console.print(table)


@app.command()
def show(
    batch_search_id: str = typer.Argument(..., help="Batch search ID"),
    config: Optional[Path] = ConfigOption,
    db: Optional[Path] = DbOption,
):
    """Show one batch search with its per-query result counts."""
    container = get_services(config, db)
    try:
        bs = container.repository.get(batch_search_id)
    except BatchSearchNotFound as e:
        console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
        raise typer.Exit(1)
    finally:
        container.repository.close()

    details = Table.grid(padding=1)
    details.add_column(style="bold")
    details.add_column()
    details.add_row("Name:", escape(bs.name))
    details.add_row("User:", escape(bs.user.id))
    details.add_row("Project:", escape(bs.project))
    details.add_row("State:", _state_label(bs.state))
    details.add_row("Results:", str(bs.nb_results))
    if bs.state == BatchSearchState.FAILURE:
        details.add_row("Failed Query:", escape(bs.error_query or "-"))
        details.add_row("Error:", f"[red]{escape(bs.error_message or '')}[/red]")
    console.print(Panel(details, title=f"[bold]{bs.uuid}[/bold]", expand=False))

    queries = Table(title="Queries")
    queries.add_column("Query")
    queries.add_column("Results", justify="right")
    for query, count in bs.queries.items():
        queries.add_row(escape(query), str(count))
    console.print(queries)


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
