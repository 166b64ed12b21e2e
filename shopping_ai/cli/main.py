"""
CLI interface for Shopping AI.

Provides command-line access to the AI tasks, the usage ledger and the
prompt templates.
"""

import asyncio
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.table import Table

from shopping_ai.config.loader import AISettings, SettingsRepository, load_settings
from shopping_ai.core.errors import ShoppingAIError
from shopping_ai.core.ledger import UsageLedger
from shopping_ai.core.prompts import PromptTemplateStore, TaskKind
from shopping_ai.core.registry import DEFAULT_REGISTRY
from shopping_ai.logging import setup_logging
from shopping_ai.sdk.client import ShoppingAIClient
from shopping_ai.storage.repository import KeyValueStore

app = typer.Typer()
prompts_app = typer.Typer(help="Show, edit and reset prompt templates.")
app.add_typer(prompts_app, name="prompts")
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1


@dataclass
class Services:
    """Everything a command needs, built once per invocation."""
    settings: AISettings
    store: KeyValueStore
    ledger: UsageLedger
    templates: PromptTemplateStore


def _open_services(config_path: Optional[str]) -> Services:
    settings = load_settings(config_path)
    store = KeyValueStore(settings.database_path)
    settings = SettingsRepository(store).load(settings)
    return Services(
        settings=settings,
        store=store,
        ledger=UsageLedger(store),
        templates=PromptTemplateStore(store),
    )


def _services(ctx: typer.Context) -> Services:
    options = ctx.obj or {}
    try:
        services = _open_services(options.get("config"))
    except (FileNotFoundError, ValueError, yaml.YAMLError, ShoppingAIError) as e:
        console.print(f"[red]Configuration error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    setup_logging(options.get("log_level") or services.settings.log_level)
    return services


def _parse_task(value: str) -> TaskKind:
    try:
        return TaskKind(value)
    except ValueError:
        valid = ", ".join(kind.value for kind in TaskKind)
        console.print(f"[red]Unknown task:[/] {value} (expected one of: {valid})")
        sys.exit(EXIT_CODE_FAIL)


def _format_currency(amount: Optional[float]) -> str:
    """Format currency with sign and four decimals, since single calls cost fractions of a cent."""
    if amount is None:
        return "-"
    sign = "-" if amount < 0 else ""
    return f"{sign}${abs(amount):,.4f}"


def _format_count(value: Optional[int]) -> str:
    return "unknown" if value is None else f"{value:,}"


def _run(services: Services, coroutine_factory):
    """Run one async task against a fresh client, mapping errors to exit codes."""
    async def _main():
        async with ShoppingAIClient(services.settings, services.ledger, services.templates) as client:
            return await coroutine_factory(client)

    try:
        return asyncio.run(_main())
    except ShoppingAIError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        envvar="SHOPPING_AI_CONFIG",
        help="Path to a YAML settings file"
    ),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Log level; overrides the settings file")
):
    """Shopping AI CLI."""
    ctx.obj = {"config": config, "log_level": log_level}
    if ctx.invoked_subcommand is None:
        console.print("Shopping AI - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Initialize the Shopping AI database."""
    services = _services(ctx)
    SettingsRepository(services.store).save(services.settings)
    services.templates.persist()
    console.print(f"[green]✓[/] Database initialized at {services.store.db_path}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def status(ctx: typer.Context):
    """Show spend, budget and per-task usage."""
    ledger = _services(ctx).ledger

    console.print("\n[bold]AI Usage Summary[/bold]")
    console.print("-" * 40)
    console.print(f"Total spent (tracked): {_format_currency(ledger.total_spent_all_time)}")
    console.print(f"Manual adjustment: {_format_currency(ledger.manual_spend_adjustment)}")
    console.print(f"Total spent: {_format_currency(ledger.total_spent)}")
    console.print(f"Budget: {_format_currency(ledger.budget_amount)}")
    console.print(f"Remaining: {_format_currency(ledger.remaining_budget)}")
    console.print(f"Used: {ledger.used_fraction * 100:.1f}%")
    console.print(f"Interactions: {ledger.total_interaction_count:,}")

    table = Table(title="Usage by task")
    table.add_column("Task")
    table.add_column("Count", justify="right")
    table.add_column("Cost", justify="right")
    table.add_column("Average", justify="right")
    table.add_column("Est. remaining", justify="right")
    for kind in TaskKind:
        usage = ledger.category_usage(kind)
        table.add_row(
            kind.display_name,
            f"{usage.count:,}",
            _format_currency(usage.cost),
            _format_currency(usage.average_cost),
            _format_count(ledger.estimated_remaining_count(kind)),
        )
    console.print(table)


@app.command()
def history(ctx: typer.Context):
    """List the retained interaction history, newest first."""
    records = _services(ctx).ledger.history
    if not records:
        console.print("[dim]No interactions recorded.[/]")
        return

    table = Table(title="Recent interactions")
    table.add_column("ID")
    table.add_column("When")
    table.add_column("Task")
    table.add_column("Item")
    table.add_column("Model")
    table.add_column("Tokens", justify="right")
    table.add_column("Cost", justify="right")
    for record in records:
        table.add_row(
            record.id,
            record.timestamp.strftime("%Y-%m-%d %H:%M"),
            record.task_kind.display_name,
            record.subject_name or "-",
            f"{record.model_id} ({record.provider_name})",
            f"{record.input_tokens}/{record.output_tokens}",
            _format_currency(record.cost),
        )
    console.print(table)


@app.command("clear-history")
def clear_history(ctx: typer.Context):
    """Empty the interaction history; spend totals are kept."""
    _services(ctx).ledger.clear_display_history()
    console.print("[green]✓[/] History cleared (totals kept)")


@app.command("remove-record")
def remove_record(ctx: typer.Context, record_id: str = typer.Argument(..., help="Record ID")):
    """Delete one record from the history."""
    if not _services(ctx).ledger.remove_record(record_id):
        console.print(f"[red]No record with ID[/] {record_id}")
        sys.exit(EXIT_CODE_FAIL)
    console.print("[green]✓[/] Record removed")


@app.command("reset-billing")
def reset_billing(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Confirm the reset")
):
    """Zero all spend totals and empty the history."""
    if not yes:
        console.print("[yellow]This erases all spend totals. Re-run with --yes to confirm.[/]")
        sys.exit(EXIT_CODE_FAIL)
    _services(ctx).ledger.reset_billing()
    console.print("[green]✓[/] Billing reset")


@app.command("set-budget")
def set_budget(ctx: typer.Context, amount: float = typer.Argument(..., help="Budget amount")):
    """Set the spending budget."""
    try:
        _services(ctx).ledger.set_budget(amount)
    except ValueError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] Budget set to {_format_currency(amount)}")


@app.command("set-adjustment")
def set_adjustment(ctx: typer.Context, amount: float = typer.Argument(..., help="Signed adjustment")):
    """Set the manual spend adjustment."""
    _services(ctx).ledger.set_manual_adjustment(amount)
    console.print(f"[green]✓[/] Adjustment set to {_format_currency(amount)}")


@app.command("set-spent")
def set_spent(ctx: typer.Context, amount: float = typer.Argument(..., help="Actual total spent")):
    """Reconcile total spent with an external invoice."""
    ledger = _services(ctx).ledger
    ledger.set_total_spent_override(amount)
    console.print(
        f"[green]✓[/] Total spent set to {_format_currency(ledger.total_spent)} "
        f"(adjustment {_format_currency(ledger.manual_spend_adjustment)})"
    )


@app.command()
def models():
    """List supported models."""
    table = Table(title="Supported models")
    table.add_column("Model")
    table.add_column("Provider")
    table.add_column("Vision")
    table.add_column("Input / 1K", justify="right")
    table.add_column("Output / 1K", justify="right")
    for model_id in DEFAULT_REGISTRY.model_ids():
        descriptor = DEFAULT_REGISTRY.resolve(model_id)
        table.add_row(
            model_id,
            descriptor.provider_name,
            "yes" if descriptor.supports_vision else "no",
            f"${descriptor.pricing.input_cost_per_1k}",
            f"${descriptor.pricing.output_cost_per_1k}",
        )
    console.print(table)


@prompts_app.command("show")
def prompts_show(ctx: typer.Context, task: str = typer.Argument(..., help="Task kind, e.g. taxRate")):
    """Show the effective template for a task."""
    kind = _parse_task(task)
    templates = _services(ctx).templates
    source = "custom" if templates.get(kind).is_custom_enabled else "default"
    console.print(f"[bold]{kind.display_name}[/bold] ({source})")
    console.print(templates.get_effective(kind), markup=False)


@prompts_app.command("set")
def prompts_set(
    ctx: typer.Context,
    task: str = typer.Argument(..., help="Task kind, e.g. taxRate"),
    template: str = typer.Argument(..., help="Template text with {placeholder} tokens")
):
    """Enable a custom template for a task."""
    kind = _parse_task(task)
    try:
        _services(ctx).templates.update(kind, template)
    except ValueError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] Custom template enabled for {kind.display_name}")


@prompts_app.command("reset")
def prompts_reset(
    ctx: typer.Context,
    task: Optional[str] = typer.Argument(None, help="Task kind; all tasks when omitted")
):
    """Restore built-in templates."""
    templates = _services(ctx).templates
    if task is None:
        templates.reset_all()
        console.print("[green]✓[/] All templates reset")
        return
    kind = _parse_task(task)
    templates.reset(kind)
    console.print(f"[green]✓[/] Template reset for {kind.display_name}")


@app.command()
def tax(
    ctx: typer.Context,
    item: str = typer.Argument(..., help="Item name"),
    location: Optional[str] = typer.Option(None, "--location", "-l", help="Where the user is")
):
    """Look up the sales tax rate for an item."""
    result = _run(_services(ctx), lambda client: client.lookup_tax_rate(item, location))
    if result is None or result.tax_rate is None:
        console.print(f"Tax rate for {item}: [yellow]unknown[/]")
    else:
        console.print(f"Tax rate for {item}: {result.tax_rate}%")


@app.command("guess-price")
def guess_price(
    ctx: typer.Context,
    item: str = typer.Argument(..., help="Item name"),
    store: Optional[str] = typer.Option(None, "--store", help="Store name"),
    brand: Optional[str] = typer.Option(None, "--brand", help="Brand"),
    details: Optional[str] = typer.Option(None, "--details", help="Size, variant, ..."),
    location: Optional[str] = typer.Option(None, "--location", "-l", help="Where the user is")
):
    """Estimate the current price of an item."""
    result = _run(
        _services(ctx),
        lambda client: client.guess_price(item, location, store_name=store, brand=brand, additional_details=details),
    )
    if result is None or result.estimated_price is None:
        console.print(f"Price for {item}: [yellow]unknown[/]")
        return
    console.print(f"Price for {item}: {_format_currency(result.estimated_price)}")
    if result.source_url:
        console.print(f"Source: {result.source_url}")


@app.command()
def additives(ctx: typer.Context, product: str = typer.Argument(..., help="Product name")):
    """Analyze the additives in a product."""
    result = _run(_services(ctx), lambda client: client.analyze_additives(product))
    if result is None or result.is_indeterminate:
        console.print(f"Additives for {product}: [yellow]unknown[/]")
        return

    table = Table(title=f"Additives in {product}")
    table.add_column("Name")
    table.add_column("Risk")
    table.add_column("Description")
    for additive in result.all_additives:
        risk = (additive.risk_level or "Risky") if additive.is_risky else "Safe"
        table.add_row(additive.name, risk, additive.description)
    console.print(table)
    console.print(f"Risky: {result.risky_count}  Safe: {result.safe_count}")


@app.command("price-tag")
def price_tag(
    ctx: typer.Context,
    image_path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Photo of a price tag"),
    location: Optional[str] = typer.Option(None, "--location", "-l", help="Where the user is"),
    no_tax: bool = typer.Option(False, "--no-tax", help="Skip the follow-up tax lookup")
):
    """Read name and price from a price tag photo."""
    image = image_path.read_bytes()
    try:
        result = _run(
            _services(ctx),
            lambda client: client.analyze_price_tag(image, location, lookup_tax=not no_tax),
        )
    except ValueError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if result is None:
        console.print("[yellow]Could not read the price tag[/]")
        return
    console.print(f"Item: {result.name}")
    console.print(f"Price: {_format_currency(result.price)}")
    tax_text = "unknown" if result.tax_rate is None else f"{result.tax_rate}%"
    console.print(f"Tax: {tax_text}")
    if result.ingredients:
        console.print(f"Ingredients: {result.ingredients}")


if __name__ == "__main__":
    app()
