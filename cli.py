import asyncio
import csv
import logging
import traceback
from io import StringIO

import click
import sqlalchemy.exc
from playwright.async_api import Error as PlaywrightError
from tabulate import tabulate

from config.loader import load_config
from config.settings import get_settings
from core.aggregation.aggregator import ResultAggregator, consume, group_results
from core.errors import ConfigError, ScraperError, StorageError
from core.runner import ScrapeRunner, select_stores
from core.scrapers.listing_helper import format_price
from core.scrapers.scraper_factory import ScraperFactory
from core.storage.factory import create_storage

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=settings.LOG_LEVEL, format="%(asctime)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger("price-tracker-cli")


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.pass_context
def cli(ctx, verbose):
    """Beer crate price comparison across Belgian supermarkets."""
    # Store verbose flag in the Click context instead of a global variable
    ctx.ensure_object(dict)
    ctx.obj["VERBOSE"] = verbose

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.debug("Debug logging enabled")


@cli.command()
def init():
    """Initialize the database."""
    # importing the database layer creates its engine
    from core.database.operations import init_db

    try:
        init_db()
    except sqlalchemy.exc.SQLAlchemyError as e:
        raise click.ClickException(f"Database error: {e}")
    click.echo("Database initialized!")


@cli.command()
@click.option("--config", "config_path", type=click.Path(), help="Path to config.json")
def stores(config_path):
    """List configured stores and whether a scraper exists for them."""
    try:
        catalog = load_config(config_path)
    except ConfigError as e:
        raise click.ClickException(str(e))

    table_data = [
        [
            store.name,
            store.base_url,
            "yes" if store.enabled else "no",
            "yes" if ScraperFactory.supports(store.name) else "no",
        ]
        for store in catalog.supermarkets
    ]
    click.echo(tabulate(table_data, headers=["Store", "URL", "Enabled", "Supported"], tablefmt="grid"))


def echo_event(event):
    """Print one streamed run event as a progress line."""
    message = event.to_message()
    line = message["message"]
    if message.get("supermarket"):
        line = f"[{message['supermarket']}] {line}"
    if message.get("error"):
        line = f"{line}: {message['error']}"
    click.echo(line)


async def run_scrape(catalog, selected, storage):
    aggregator = ResultAggregator()
    runner = ScrapeRunner(catalog, storage=storage, aggregator=aggregator,
                          debug_dir=settings.debug_dir)
    printer = asyncio.create_task(consume(aggregator.queue, echo_event))
    try:
        results, _ = await runner.run(selected)
    finally:
        await printer
    return results


def write_output(text, output):
    if output:
        with open(output, "w", encoding="utf-8") as f:
            f.write(text)
        click.echo(f"Results written to {output}")
    else:
        click.echo("\n" + text)


@cli.command()
@click.option(
    "--store",
    "-s",
    multiple=True,
    help="Store to scrape (can be specified multiple times or comma-separated)",
)
@click.option("--config", "config_path", type=click.Path(), help="Path to config.json")
@click.option("--save/--no-save", default=True, help="Persist results (default: True)")
@click.option(
    "--format-type",
    "-f",
    type=click.Choice(["text", "table", "csv"]),
    default="table",
    help="Output format",
)
@click.option("--output", "-o", type=click.Path(), help="Save results to file")
@click.option("--headless/--headed", default=None, help="Override the configured browser mode")
@click.pass_context
def scrape(ctx, store, config_path, save, format_type, output, headless):
    """Scrape the configured products from the selected stores."""
    try:
        catalog = load_config(config_path)
        selected = select_stores(catalog, store)
        storage = create_storage(settings) if save else None
    except (ConfigError, ValueError) as e:
        raise click.ClickException(str(e))

    if not selected:
        raise click.ClickException("No supermarkets are enabled in the configuration")

    if headless is not None:
        catalog = catalog.model_copy(
            update={"scraping": catalog.scraping.model_copy(update={"headless": headless})}
        )

    click.echo(f"Scraping {len(selected)} store(s): {', '.join(s.name for s in selected)}")
    try:
        results = asyncio.run(run_scrape(catalog, selected, storage))
    except (ScraperError, PlaywrightError) as e:
        click.echo(f"Scraping failed: {str(e)}")
        if ctx.obj["VERBOSE"]:
            click.echo(traceback.format_exc())
        ctx.exit(1)

    write_output(format_results(group_results(results), format_type), output)


@cli.command()
@click.option(
    "--format-type",
    "-f",
    type=click.Choice(["text", "table", "csv"]),
    default="table",
    help="Output format",
)
@click.option("--output", "-o", type=click.Path(), help="Save results to file")
@click.pass_context
def history(ctx, format_type, output):
    """Show the latest persisted run."""
    try:
        storage = create_storage(settings)
    except ValueError as e:
        raise click.ClickException(str(e))
    if storage is None:
        raise click.ClickException("No storage backend is configured")

    try:
        results = storage.load_latest()
        last_updated = storage.last_update_time()
    except StorageError as e:
        click.echo(f"Storage error: {str(e)}")
        if ctx.obj["VERBOSE"]:
            click.echo(traceback.format_exc())
        ctx.exit(1)

    if not results:
        click.echo("No stored results found.")
        return

    if last_updated:
        click.echo(f"Last updated: {last_updated.strftime('%Y-%m-%d %H:%M:%S')}")
    write_output(format_results(group_results(results), format_type), output)


def _display_price(result):
    if result.price_value is not None:
        return format_price(result.price_value)
    return result.price_text or "n/a"


def format_results(grouped, format_type):
    """Format grouped results (cheapest first per product) for output."""
    if not grouped:
        return "No matching products found."

    if format_type == "text":
        lines = []
        for target, results in grouped.items():
            lines.append(f"\n{target}")
            for i, result in enumerate(results, 1):
                line = f"  {i}. {result.store}: {_display_price(result)} - {result.product_name}"
                if result.promo_tag:
                    line += f" ({result.promo_tag})"
                lines.append(line)
        return "\n".join(lines).lstrip("\n")

    elif format_type == "csv":
        output = StringIO()
        writer = csv.writer(output)
        writer.writerow(["Target Product", "Supermarket", "Product", "Price", "Price Value", "Promo", "Link"])
        for target, results in grouped.items():
            for result in results:
                writer.writerow([
                    target,
                    result.store,
                    result.product_name,
                    result.price_text,
                    f"{result.price_value:.2f}" if result.price_value is not None else "",
                    result.promo_tag or "",
                    result.link,
                ])
        return output.getvalue()

    else:  # table format
        table_data = []
        for target, results in grouped.items():
            for result in results:
                # Truncate product name if too long
                name = result.product_name
                if len(name) > 40:
                    name = name[:37] + "..."
                table_data.append([target, result.store, name, _display_price(result), result.promo_tag or ""])

        headers = ["Target Product", "Supermarket", "Product", "Price", "Promo"]
        return tabulate(table_data, headers=headers, tablefmt="grid")


if __name__ == "__main__":
    # This runs the Click application
    cli.main(obj={})
