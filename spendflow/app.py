"""Command line entry point for Spendflow.

The process owns the lifecycle of the store connection and the Plaid client;
each command opens both, runs one :class:`~spendflow.service.Ledger`
operation and prints its result as JSON.
"""

import asyncio
import dataclasses
import json
from collections.abc import Awaitable, Callable
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Optional

import aiosqlite
import typer

from spendflow.api import PlaidClient
from spendflow.auth import TokenEncryption
from spendflow.config import Config, load_config
from spendflow.db.repository import Repository
from spendflow.errors import ErrorKind, SpendflowError
from spendflow.logging_setup import configure_logging
from spendflow.service import Ledger, OperationResult

app = typer.Typer(
    name="spendflow",
    help="Sync bank transactions from Plaid and summarize monthly spend.",
    no_args_is_help=True,
)

Operation = Callable[[Ledger], Awaitable[OperationResult]]


def to_jsonable(value: Any) -> Any:
    """Convert operation results into JSON-friendly structures."""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_jsonable(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_jsonable(v) for v in value]
    return value


def _emit(result: OperationResult) -> None:
    typer.echo(json.dumps(to_jsonable(result), indent=2, ensure_ascii=False))


async def _execute(config: Config, operation: Operation, needs_client: bool) -> OperationResult:
    try:
        encryption = TokenEncryption(config.security.encryption_key)
        async with Repository(config.database.path) as repo:
            if not needs_client:
                return await operation(Ledger(repo, encryption=encryption, sync_config=config.sync))
            async with PlaidClient(config.plaid) as client:
                return await operation(Ledger(repo, client, encryption, config.sync))
    except SpendflowError as e:
        return OperationResult.failure(e.kind, e.message)
    except aiosqlite.Error as e:
        return OperationResult.failure(ErrorKind.STORE, f"Store error: {e}")


def _run(ctx: typer.Context, operation: Operation, needs_client: bool = False) -> None:
    try:
        config = load_config(ctx.obj)
    except SpendflowError as e:
        _emit(OperationResult.failure(e.kind, e.message))
        raise typer.Exit(code=1) from e
    configure_logging(config.logging.level, config.logging.file)
    result = asyncio.run(_execute(config, operation, needs_client))
    _emit(result)
    if not result.ok:
        raise typer.Exit(code=1)


@app.callback()
def main_options(
    ctx: typer.Context,
    config: Annotated[
        Optional[Path], typer.Option("--config", "-c", help="Path to config.toml.")
    ] = None,
) -> None:
    ctx.obj = config


@app.command("link-token")
def link_token(ctx: typer.Context) -> None:
    """Issue a Plaid Link token for connecting an institution."""
    _run(ctx, lambda ledger: ledger.create_link_token(), needs_client=True)


@app.command()
def exchange(
    ctx: typer.Context,
    public_token: Annotated[str, typer.Argument(help="Public token returned by Link.")],
) -> None:
    """Exchange a Link public token and store the item."""
    _run(
        ctx,
        lambda ledger: ledger.exchange_public_token({"public_token": public_token}),
        needs_client=True,
    )


@app.command()
def sync(
    ctx: typer.Context,
    item_id: Annotated[Optional[int], typer.Option(help="Sync only this item.")] = None,
) -> None:
    """Pull new, changed and removed transactions for linked items."""
    _run(ctx, lambda ledger: ledger.sync({"item_id": item_id}), needs_client=True)


@app.command()
def seed(
    ctx: typer.Context,
    item_id: Annotated[Optional[int], typer.Option(help="Seed only this item.")] = None,
    count: Annotated[int, typer.Option(help="Transactions per item (1-100).")] = 30,
) -> None:
    """Create synthetic sandbox purchases and sync them."""
    _run(
        ctx,
        lambda ledger: ledger.seed_sandbox({"item_id": item_id, "count": count}),
        needs_client=True,
    )


@app.command()
def dashboard(
    ctx: typer.Context,
    month: Annotated[Optional[str], typer.Option(help="Month as YYYY-MM.")] = None,
    account: Annotated[str, typer.Option(help="Plaid account ID or 'all'.")] = "all",
    exclude: Annotated[
        Optional[list[str]], typer.Option(help="Resolved category to leave out.")
    ] = None,
    layout: Annotated[str, typer.Option(help="bipartite or tripartite.")] = "bipartite",
    limit: Annotated[int, typer.Option(help="Max transactions listed.")] = 500,
) -> None:
    """Spend flow graph and totals for a month."""
    query = {
        "month": month,
        "account": account,
        "exclude": exclude or [],
        "layout": layout,
        "limit": limit,
    }
    _run(ctx, lambda ledger: ledger.dashboard(query))


@app.command()
def override(
    ctx: typer.Context,
    transaction_id: Annotated[str, typer.Argument(help="Plaid transaction ID.")],
    category: Annotated[
        Optional[str], typer.Argument(help="Category label; omit to clear.")
    ] = None,
) -> None:
    """Set or clear the category override of a transaction."""
    _run(
        ctx,
        lambda ledger: ledger.set_override(
            {"transaction_id": transaction_id, "category": category}
        ),
    )


@app.command()
def rule(
    ctx: typer.Context,
    pattern: Annotated[str, typer.Argument(help="Text or regular expression to match.")],
    category: Annotated[str, typer.Argument(help="Category to assign.")],
    match_type: Annotated[str, typer.Option(help="contains or regex.")] = "contains",
    apply_now: Annotated[
        bool, typer.Option("--apply-now/--no-apply", help="Override matching transactions now.")
    ] = True,
) -> None:
    """Create a categorization rule."""
    body = {
        "match_type": match_type,
        "pattern": pattern,
        "category": category,
        "apply_now": apply_now,
    }
    _run(ctx, lambda ledger: ledger.create_rule(body))


@app.command()
def categories(ctx: typer.Context) -> None:
    """List category labels for picking overrides and rules."""
    _run(ctx, lambda ledger: ledger.list_categories())


def main() -> None:  # pragma: no cover
    """Entry point for the application."""
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
