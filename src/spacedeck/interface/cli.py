"""spacedeck CLI: reviews, queues, scores and the HTTP server."""

import asyncio
import json
import logging
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Annotated

import typer

from spacedeck.application.config import resolve_config
from spacedeck.domain.errors import NotFoundError, StorageError, ValidationError
from spacedeck.domain.stats.models import ScoreWindow

# ---------------------------------------------------------------------------
# Root app
# ---------------------------------------------------------------------------

app = typer.Typer(
    help="spacedeck: spaced-repetition scheduling and deck mastery scoring.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s:%(name)s:%(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Subgroups
# ---------------------------------------------------------------------------

deck_app = typer.Typer(help="Manage decks.", no_args_is_help=True)
app.add_typer(deck_app, name="deck")

card_app = typer.Typer(help="Manage cards.", no_args_is_help=True)
app.add_typer(card_app, name="card")

scores_app = typer.Typer(help="Deck mastery scores.", no_args_is_help=True)
app.add_typer(scores_app, name="scores")

config_app = typer.Typer(help="Manage spacedeck configuration.")
app.add_typer(config_app, name="config")

UserOption = Annotated[
    str, typer.Option("--user", "-u", envvar="SPACEDECK_USER", help="Acting user id.")
]
DbOption = Annotated[
    Path | None, typer.Option("--db", help="SQLite database path override.")
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@contextmanager
def _session(db: Path | None = None):
    """Yield (config, store, service) and close the store afterwards."""
    from spacedeck.application.factory import build_study_service, get_store

    config = resolve_config({"database_path": db})
    logging.getLogger().setLevel(config.log_level)
    store = get_store(config)
    try:
        yield config, store, build_study_service(config, store=store)
    finally:
        store.close()


def _run(coro):
    """Run a coroutine, turning domain errors into exit codes."""
    try:
        return asyncio.run(coro)
    except (ValidationError, NotFoundError) as e:
        typer.secho(f"Error: {e}", fg="red", err=True)
        raise typer.Exit(1) from e
    except StorageError as e:
        typer.secho(f"Storage error: {e}", fg="red", err=True)
        raise typer.Exit(2) from e


def _echo_warning(warning) -> None:
    if warning is not None:
        typer.secho(f"Warning ({warning.reason}): {warning.message}", fg="yellow")


# ---------------------------------------------------------------------------
# Root commands
# ---------------------------------------------------------------------------


@app.command()
def review(
    deck: Annotated[str, typer.Argument(help="Deck id.")],
    card: Annotated[str, typer.Argument(help="Card id.")],
    rating: Annotated[str, typer.Argument(help="Recall rating: again, hard, good or easy.")],
    user: UserOption,
    db: DbOption = None,
):
    """[bold green]Record[/bold green] a rating and print the next due date."""
    with _session(db) as (_, _, service):
        outcome = _run(service.record_review(user, deck, card, rating))
    typer.echo(f"Next due: {outcome.due.isoformat()}")
    typer.echo(f"Interval: {outcome.scheduled_days}d")
    typer.echo(f"Stability: {outcome.stability:.2f}")


@app.command()
def queue(
    deck: Annotated[str, typer.Argument(help="Deck id.")],
    user: UserOption,
    limit: Annotated[int | None, typer.Option(help="Maximum cards in the queue.")] = None,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
    db: DbOption = None,
):
    """Build the study queue: due cards first, then new cards."""
    with _session(db) as (_, _, service):

        async def run():
            q = await service.build_study_queue(
                user, deck, limit if limit is not None else service.study_limit
            )
            return q, await service.get_daily_load_warning(user, deck)

        q, warning = _run(run())
    if json_output:
        typer.echo(json.dumps({"due": q.due, "new": q.new, "total": q.total}, indent=2))
        return

    typer.echo(f"Due: {len(q.due)}  New: {len(q.new)}")
    for card_id in q.card_ids:
        typer.echo(f"  {card_id}")
    _echo_warning(warning)


@app.command()
def quiz(
    deck: Annotated[str, typer.Argument(help="Deck id.")],
    user: UserOption,
    limit: Annotated[int | None, typer.Option(help="Maximum quiz items.")] = None,
    db: DbOption = None,
):
    """Build a quiz queue with the daily load warning attached."""
    with _session(db) as (_, _, service):
        q = _run(service.build_quiz_queue(user, deck, limit))
    typer.echo(f"Due: {q.due_count}  New: {q.new_count}  Total: {q.total_count}")
    for card_id in q.items:
        typer.echo(f"  {card_id}")
    _echo_warning(q.warning)


@app.command()
def score(
    deck: Annotated[str, typer.Argument(help="Deck id.")],
    user: UserOption,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
    db: DbOption = None,
):
    """Show the deck's mastery scores and letter grades."""
    from spacedeck.application.stats.grades import best_grade, classify, to_percent

    with _session(db) as (_, _, service):
        scores = _run(service.list_deck_scores(user, deck))

    if json_output:
        data = [
            {
                "window": s.window.value,
                "accuracyPct": s.accuracy_pct,
                "stabilityAvg": s.stability_avg,
                "lapses": s.lapses,
                "grade": classify(s.accuracy_pct, service.grade_scale).key,
            }
            for s in scores
        ]
        typer.echo(json.dumps(data, indent=2))
        return

    if not scores:
        typer.secho("No reviews recorded yet.", fg="yellow")
        return

    for s in scores:
        grade = classify(s.accuracy_pct, service.grade_scale)
        typer.echo(
            f"{s.window.value:>4}  {to_percent(s.accuracy_pct):6.2f}%  {grade.label:<2}  "
            f"stability={s.stability_avg:.2f}  lapses={s.lapses}"
        )
    top = best_grade(scores, service.grade_scale)
    if top is not None:
        typer.secho(f"Best grade: {top.label}", fg="green")


@app.command()
def performance(
    deck: Annotated[str, typer.Argument(help="Deck id.")],
    user: UserOption,
    db: DbOption = None,
):
    """Grade the deck from its most recent reviews."""
    with _session(db) as (_, _, service):
        perf = _run(service.get_deck_performance(user, deck))
    if perf.insufficient_data:
        typer.secho(
            f"Not enough reviews yet ({perf.review_count}/{service.grade_min_reviews}).",
            fg="yellow",
        )
        return
    typer.echo(f"Reviews: {perf.review_count}")
    typer.echo(f"Success rate: {perf.success_rate * 100:.1f}%")
    typer.secho(f"Grade: {perf.grade.label}", fg="green")


@app.command()
def load(
    deck: Annotated[str, typer.Argument(help="Deck id.")],
    user: UserOption,
    db: DbOption = None,
):
    """Check today's review volume against the trailing average."""
    with _session(db) as (_, _, service):
        warning = _run(service.get_daily_load_warning(user, deck))
    if warning is None:
        typer.secho("Review load is normal.", fg="green")
        return
    _echo_warning(warning)


@app.command()
def serve(
    host: Annotated[str | None, typer.Option(help="Bind address.")] = None,
    port: Annotated[int | None, typer.Option(help="Bind port.")] = None,
):
    """Start the HTTP server."""
    import uvicorn

    config = resolve_config({"host": host, "port": port})
    typer.secho(f"Starting spacedeck server on {config.host}:{config.port}", fg="green")
    uvicorn.run("spacedeck.server:app", host=config.host, port=config.port, reload=False)


# ---------------------------------------------------------------------------
# Deck / card subgroups
# ---------------------------------------------------------------------------


@deck_app.command("add")
def deck_add(
    deck: Annotated[str, typer.Argument(help="Deck id.")],
    user: UserOption,
    db: DbOption = None,
):
    """Register a deck owned by the acting user."""
    with _session(db) as (_, store, _):
        _run(store.add_deck(deck, user))
    typer.secho(f"Added deck {deck}", fg="green")


@card_app.command("add")
def card_add(
    deck: Annotated[str, typer.Argument(help="Deck id.")],
    cards: Annotated[list[str], typer.Argument(help="Card ids, in deck order.")],
    db: DbOption = None,
):
    """Append cards to a deck."""
    with _session(db) as (_, store, _):

        async def run():
            for card_id in cards:
                await store.add_card(deck, card_id)

        _run(run())
    typer.secho(f"Added {len(cards)} card(s) to {deck}", fg="green")


# ---------------------------------------------------------------------------
# Scores subgroup
# ---------------------------------------------------------------------------


@scores_app.command("refresh")
def scores_refresh(
    deck: Annotated[str, typer.Argument(help="Deck id.")],
    user: UserOption,
    db: DbOption = None,
):
    """Recompute the d7/d30/d90 windows from the review log."""
    with _session(db) as (_, _, service):
        scores = _run(service.refresh_deck_scores(user, deck))
    by_window = {s.window: s for s in scores}
    for window in ScoreWindow:
        s = by_window.get(window)
        if s is None:
            typer.echo(f"{window.value:>4}  no reviews")
        else:
            typer.echo(f"{window.value:>4}  {s.accuracy_pct * 100:6.2f}%  lapses={s.lapses}")


# ---------------------------------------------------------------------------
# Config subgroup
# ---------------------------------------------------------------------------


@config_app.command("show")
def config_show():
    """Display final resolved configuration."""
    config = resolve_config()
    d = {k: str(v) if isinstance(v, Path) else v for k, v in config.model_dump().items()}
    typer.echo(json.dumps(d, indent=2))


if __name__ == "__main__":
    app()
