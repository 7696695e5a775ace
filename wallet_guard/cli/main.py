"""
CLI interface for wallet_guard.

Operator access to wallets, history, reconciliation and the ops log.
"""

import logging
import sys
from dataclasses import replace
from decimal import Decimal
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from wallet_guard.config.loader import BillingConfig, StorageConfig, load_billing_config
from wallet_guard.core.audit import AuditLogger
from wallet_guard.core.correlation import new_correlation_id
from wallet_guard.core.errors import BillingError
from wallet_guard.core.ledger import WalletLedger
from wallet_guard.core.pricing import DEFAULT_CATALOG, calculate_cost
from wallet_guard.core.rate_limit import RateLimiter
from wallet_guard.core.token_counter import estimate_tokens
from wallet_guard.storage.base import StorageError
from wallet_guard.storage.repository import SQLiteStore, initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1


class CLIState:
    config: BillingConfig = BillingConfig()


state = CLIState()


def _store() -> SQLiteStore:
    return SQLiteStore(state.config.storage.db_path)


def _ledger() -> WalletLedger:
    store = _store()
    return WalletLedger(
        store,
        AuditLogger(store),
        currency=state.config.wallet.currency,
        fee_rate=state.config.wallet.fee_rate,
    )


def _format_amount(amount: Decimal) -> str:
    return f"{state.config.wallet.currency} {amount:,.2f}"


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to YAML billing config"),
    db: Optional[str] = typer.Option(None, "--db", help="Override the SQLite database path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """wallet_guard CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        loaded = load_billing_config(config) if config else BillingConfig()
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Invalid configuration:[/] {e}")
        raise typer.Exit(EXIT_CODE_FAIL)
    if db:
        loaded = replace(loaded, storage=StorageConfig(db_path=db))
    state.config = loaded

    if ctx.invoked_subcommand is None:
        console.print("wallet_guard - Use --help to see available commands")


@app.command()
def init():
    """Initialize the billing database."""
    try:
        initialize_schema(state.config.storage.db_path)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def balance(identity: str = typer.Argument(..., help="Wallet owner")):
    """Show the current wallet balance."""
    try:
        amount = _ledger().balance(identity)
    except StorageError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"{identity}: [bold]{_format_amount(amount)}[/]")


@app.command()
def credit(
    identity: str = typer.Argument(..., help="Wallet owner"),
    amount: str = typer.Argument(..., help="Amount to add"),
    reason: str = typer.Option("recharge", "--reason", "-r", help="Reason recorded on the transaction"),
):
    """Credit a wallet, e.g. after a confirmed recharge."""
    correlation_id = new_correlation_id()
    try:
        new_balance = _ledger().credit(identity, amount, reason=reason, correlation_id=correlation_id)
    except BillingError as e:
        console.print(f"[red]{e.kind.value}:[/] {e.message}")
        sys.exit(EXIT_CODE_FAIL)
    except StorageError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(
        f"[green]✓[/] Credited {identity}. New balance: {_format_amount(new_balance)} "
        f"[dim](corr {correlation_id})[/]"
    )


@app.command()
def history(
    identity: str = typer.Argument(..., help="Wallet owner"),
    limit: int = typer.Option(20, "--limit", "-n", help="Number of rows to show"),
):
    """Show recent transactions for a wallet."""
    rows = _ledger().history(identity, limit=limit)
    if not rows:
        console.print(f"[dim]No transactions for {identity}.[/]")
        return

    table = Table(title=f"Transactions for {identity}")
    table.add_column("ID", justify="right")
    table.add_column("Created")
    table.add_column("Type")
    table.add_column("Raw", justify="right")
    table.add_column("Settled", justify="right")
    table.add_column("Reason")
    for t in rows:
        table.add_row(
            str(t.id),
            t.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            t.type.value,
            f"{t.raw_amount:,.2f}",
            f"{t.settled_amount:,.2f}",
            t.reason or "",
        )
    console.print(table)


@app.command()
def reconcile(identity: str = typer.Argument(..., help="Wallet owner")):
    """Compare a wallet balance with its transaction history."""
    report = _ledger().reconcile(identity)
    console.print(f"\n[bold]Reconciliation for {identity}[/bold]")
    console.print("-" * 40)
    console.print(f"Balance:       {_format_amount(report.balance)}")
    console.print(f"Ledger total:  {_format_amount(report.ledger_total)}")
    console.print(f"Transactions:  {report.transaction_count}")
    if report.consistent:
        console.print("[green]✓[/] Balance reconciles with history")
        sys.exit(EXIT_CODE_PASS)
    console.print(f"[red]✗ Drift of {_format_amount(report.drift)}[/]")
    sys.exit(EXIT_CODE_FAIL)


@app.command("ops-log")
def ops_log(
    correlation_id: Optional[str] = typer.Option(None, "--correlation-id", help="Filter by correlation id"),
    code: Optional[str] = typer.Option(None, "--code", help="Filter by event code, e.g. ROLLBACK_FAILED"),
    limit: int = typer.Option(50, "--limit", "-n", help="Number of events to show"),
):
    """Show audit events."""
    events = _store().list_ops_events(correlation_id=correlation_id, code=code, limit=limit)
    if not events:
        console.print("[dim]No matching events.[/]")
        return

    table = Table(title="Ops log")
    table.add_column("Time")
    table.add_column("Corr")
    table.add_column("Level")
    table.add_column("Code")
    table.add_column("Identity")
    table.add_column("Message")
    for e in events:
        table.add_row(
            e.created_at.strftime("%Y-%m-%d %H:%M:%S") if e.created_at else "",
            e.correlation_id,
            e.level,
            e.code,
            e.identity or "",
            e.message,
        )
    console.print(table)


@app.command("sweep-rate-limits")
def sweep_rate_limits(
    keep_windows: int = typer.Option(1, "--keep-windows", help="Most recent windows to keep"),
):
    """Delete rate limit counters from expired windows."""
    store = _store()
    removed = RateLimiter(store, AuditLogger(store)).sweep(keep_windows=keep_windows)
    console.print(f"[green]✓[/] Removed {removed} stale counters")


@app.command()
def models():
    """List the model catalog."""
    table = Table(title="Models")
    table.add_column("ID")
    table.add_column("Provider")
    table.add_column("Input $/1M", justify="right")
    table.add_column("Output $/1M", justify="right")
    table.add_column("HTTP")
    table.add_column("Locked")
    for m in DEFAULT_CATALOG.list_models():
        table.add_row(
            m["id"],
            m["provider"],
            m["pricing_usd"]["input_per_1m"],
            m["pricing_usd"]["output_per_1m"],
            "yes" if m["permitted_over_http"] else "no",
            "yes" if m["locked"] else "no",
        )
    console.print(table)


@app.command()
def estimate(
    message: str = typer.Argument(..., help="Prompt text"),
    model: str = typer.Option("gpt-4o-mini", "--model", "-m", help="Model to price against"),
):
    """Estimate tokens and upstream USD cost for a prompt."""
    usage = estimate_tokens(message)
    try:
        cost = calculate_cost(model, usage)
    except ValueError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"Estimated tokens: in={usage.prompt_tokens} out={usage.completion_tokens}")
    console.print(f"Estimated upstream cost: ${cost}")


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", help="Bind port"),
):
    """Run the billing HTTP API."""
    import uvicorn

    from wallet_guard.api.app import create_app_from_config

    uvicorn.run(create_app_from_config(state.config), host=host, port=port)


if __name__ == "__main__":
    app()
