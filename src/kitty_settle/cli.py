"""CLI for Kitty Settle using Typer."""

import logging
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import load_settings
from .exceptions import InfeasibleBoundError, InvalidInputError, KittySettleError
from .loader import load_kitty
from .models import Balances, SettlementResult
from .service import SettlementService

app = typer.Typer(
    name="kitty-settle",
    help="Compute fair, minimal settlement plans for shared-expense kitties",
)

console = Console()


def setup_logging(verbose: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


def format_amount(amount: int, use_color: bool = True) -> str:
    """
    Format an amount in the smallest currency unit.

    Negative amounts use parentheses, like an accounting ledger.
    """
    if amount < 0:
        if use_color:
            return f"([red]{abs(amount):,}[/red])"
        return f"({abs(amount):,})"
    if use_color:
        return f" [green]{amount:,}[/green] "
    return f" {amount:,} "


def display_balances(balances: Balances, final_spend: dict[str, int] | None = None):
    """Display per-person balances in a table."""
    table = Table(title="Balances", show_header=True, header_style="bold magenta")
    table.add_column("Person", style="cyan")
    table.add_column("Spent", justify="right")
    table.add_column("Cap", justify="right", style="dim")
    if final_spend is not None:
        table.add_column("Final", justify="right")

    for person in balances.people:
        name = person
        if person == balances.exempt:
            name = f"{person} [dim](exempt)[/dim]"
        row = [
            name,
            format_amount(balances.initial_spend[person]),
            format_amount(balances.participation_cap[person], use_color=False),
        ]
        if final_spend is not None:
            row.append(format_amount(final_spend[person]))
        table.add_row(*row)

    console.print(table)


def display_result(result: SettlementResult):
    """Display a settlement plan and its summary."""
    table = Table(title="Transfers", show_header=True, header_style="bold magenta")
    table.add_column("From", style="cyan")
    table.add_column("To", style="cyan")
    table.add_column("Amount", justify="right")

    for transfer in result.plan.transfers:
        table.add_row(transfer.payer, transfer.payee, format_amount(transfer.amount))

    console.print(table)

    console.print()
    console.print("[bold]Summary:[/bold]")
    console.print(f"  Transfers: {result.exchange_count}")
    console.print(f"  Epsilon: {result.epsilon}")
    console.print(f"  Plan ID: [dim]{result.plan_id}[/dim]")

    initial_total = sum(result.initial_spend.values())
    final_total = sum(result.final_spend.values())
    if initial_total == final_total:
        console.print("  [green]✓ Totals match (money only redistributed)[/green]")
    else:
        console.print(
            f"  [red]✗ Total mismatch: final {final_total}, initial {initial_total}[/red]"
        )

    if not result.optimal:
        console.print(
            "  [yellow]⚠️  Search stopped early; this plan may not be minimal[/yellow]"
        )


@app.command()
def solve(
    kitty_file: Path = typer.Argument(..., help="Kitty JSON file"),
    max_transaction: Optional[int] = typer.Option(
        None, "--max-transaction", "-m", help="Cap on any single transfer"
    ),
    epsilon: Optional[int] = typer.Option(
        None, "--epsilon", "-e", help="Largest tolerated spread between final spends"
    ),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", "-t", help="Seconds before returning the best plan so far"
    ),
    workers: Optional[int] = typer.Option(
        None, "--workers", "-w", help="Threads used by the search"
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """
    Compute a settlement plan for a kitty.

    Finds the fairest achievable split first, then the fewest transfers
    that reach it.
    """
    setup_logging(verbose)

    try:
        overrides = {}
        if workers is not None:
            overrides["max_workers"] = workers
        if timeout is not None:
            overrides["search_timeout_seconds"] = timeout
        settings = load_settings(**overrides)
        service = SettlementService(settings)

        kitty = load_kitty(kitty_file)
        result = service.settle(
            kitty,
            max_transaction_amount=max_transaction,
            fixed_epsilon=epsilon,
        )

        if as_json:
            typer.echo(result.model_dump_json(indent=2))
            return

        display_balances(service.compute_balances(kitty), result.final_spend)
        console.print()
        display_result(result)

    except InfeasibleBoundError as e:
        console.print(f"\n[bold yellow]⚠️  {e}[/bold yellow]")
        console.print(
            f"[dim]Retry with --epsilon {e.achievable_epsilon} to accept it.[/dim]\n"
        )
        sys.exit(1)
    except InvalidInputError as e:
        console.print(f"\n[bold red]Invalid input:[/bold red] {e}")
        sys.exit(1)
    except KittySettleError as e:
        console.print(f"\n[bold red]Error:[/bold red] {e}")
        if verbose:
            raise
        sys.exit(1)


@app.command()
def balances(
    kitty_file: Path = typer.Argument(..., help="Kitty JSON file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Show what everyone spent and the most they can be responsible for."""
    setup_logging(verbose)

    try:
        service = SettlementService(load_settings())
        kitty = load_kitty(kitty_file)
        display_balances(service.compute_balances(kitty))
    except KittySettleError as e:
        console.print(f"\n[bold red]Error:[/bold red] {e}")
        sys.exit(1)


@app.command()
def version():
    """Show the installed version."""
    console.print(f"kitty-settle {__version__}")


if __name__ == "__main__":
    app()
