"""
WebCleaner CLI - Command-line interface for per-site cleaning rules.
"""

from importlib import metadata
import asyncio
import logging
import shutil

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from webcleaner.core.config import CleanerConfig
from webcleaner.core.errors import CleanerError, SelectorInvalid
from webcleaner.storage.rule_store import ENLARGED_PREFIX, JsonRuleStore

console = Console()

CHROME_BINARIES = ("google-chrome", "chromium", "chromium-browser", "chrome")


def _setup_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


def _store(ctx: click.Context) -> JsonRuleStore:
    return JsonRuleStore(ctx.obj["config"].resolved_store_path)


@click.group()
@click.option('--store', 'store_path', default=None, help='Rule store JSON file (default: ~/.webcleaner/rules.json)')
@click.option('--debug', is_flag=True, help='Verbose logging')
@click.pass_context
def cli(ctx, store_path, debug):
    """🧹 WebCleaner - Per-site distraction removal

    Designate an element once and it stays blurred on every visit.
    """
    config = CleanerConfig.from_env(store_path=store_path, debug=debug or None)
    _setup_logging(config.debug)
    ctx.ensure_object(dict)
    ctx.obj["config"] = config


@cli.command()
@click.argument('url')
@click.option('--duration', default=10.0, type=float, help='Seconds to keep reconciling the page')
@click.option('--headless/--headed', default=False, help='Run browser in headless mode')
@click.option('--effect', default=None, type=click.Choice(['blur', 'hide']), help='Effect for stored rules')
@click.pass_context
def clean(ctx, url, duration, headless, effect):
    """
    Open URL and apply its stored rules.

    The page is watched for re-renders for the given duration; selectors
    that no longer match anything are pruned from the store.

    \b
    Examples:

        webcleaner clean "https://news.example.com"

        webcleaner clean "https://news.example.com" --effect hide --duration 60
    """
    config = ctx.obj["config"].with_overrides(effect=effect, headless=headless or None)

    console.print(Panel.fit(
        f"[bold blue]🧹 WebCleaner[/bold blue]\n"
        f"[dim]{url}[/dim]",
        border_style="blue"
    ))

    from webcleaner.core.session import CleanerSession

    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            task = progress.add_task("Opening page...", total=None)
            with CleanerSession(url, config=config) as session:
                progress.update(task, description=f"Reconciling for {duration:.0f}s...")
                result = asyncio.run(session.run(duration=duration))
    except ImportError as e:
        console.print(f"[red]Error: Missing dependency - {e}[/red]")
        raise SystemExit(1)

    table = Table(show_header=False, box=None)
    table.add_row("[bold]Origin:[/bold]", result.origin)
    table.add_row("[bold]State:[/bold]", result.state)
    table.add_row("[bold]Rules:[/bold]", str(len(result.rules)))
    table.add_row("[bold]Applied:[/bold]", str(result.applied))
    table.add_row("[bold]Pruned:[/bold]", escape(", ".join(result.pruned)) or "-")
    table.add_row("[bold]Duration:[/bold]", f"{result.duration_seconds:.2f}s")
    console.print(table)

    if result.error:
        console.print(f"[red]Error: {result.error}[/red]")


@cli.command()
@click.argument('url')
@click.option('--duration', default=120.0, type=float, help='Seconds before the session ends on its own')
@click.option('--enlarge', is_flag=True, help='Toggle enlargement instead of blurring')
@click.option('--effect', default=None, type=click.Choice(['blur', 'hide']), help='Effect for new rules')
@click.pass_context
def edit(ctx, url, duration, enlarge, effect):
    """
    Designate elements on a live page.

    Hover to preview, click to add a rule, press Escape to finish.
    """
    from webcleaner.core.controller import Mode
    from webcleaner.core.session import CleanerSession

    config = ctx.obj["config"].with_overrides(effect=effect, headless=False)
    mode = Mode.RESIZING if enlarge else Mode.DESIGNATING

    console.print(Panel.fit(
        f"[bold magenta]✏️  Edit mode[/bold magenta]\n"
        f"[dim]Click elements to {'enlarge' if enlarge else config.effect}; Escape to finish[/dim]",
        border_style="magenta"
    ))

    def on_designation(designation):
        console.print(f"  [green]{designation.action}[/green] {escape(designation.selector)} "
                      f"[dim]({designation.nodes} node(s))[/dim]")

    with CleanerSession(url, config=config) as session:
        result = asyncio.run(session.edit(duration=duration, mode=mode, on_designation=on_designation))

    console.print(f"\n[bold]{len(result.designations)} designation(s) on {result.origin}[/bold]")


@cli.command()
@click.argument('html_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--origin', required=True, help='Site whose stored rules to check')
@click.option('--prune', is_flag=True, help='Remove stale and invalid selectors from the store')
@click.pass_context
def audit(ctx, html_file, origin, prune):
    """
    Check stored selectors against a saved copy of a page.

    Example:

        webcleaner audit ./saved/news.html --origin news.example.com --prune
    """
    from webcleaner.layers.sense.soup_document import SoupDocument

    store = _store(ctx)
    document = SoupDocument.from_file(html_file, url=f"https://{origin}/")

    try:
        rules = asyncio.run(store.load(origin))
    except CleanerError as e:
        console.print(f"[red]❌ Error: {escape(str(e))}[/red]")
        raise SystemExit(1)

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Selector", style="yellow")
    table.add_column("Matches", justify="right")
    table.add_column("Status", justify="center")

    dead = []
    for selector in rules:
        try:
            count = len(document.query_all(selector))
        except SelectorInvalid:
            table.add_row(escape(selector), "-", "[red]invalid[/red]")
            dead.append(selector)
            continue
        if count:
            table.add_row(escape(selector), str(count), "[green]live[/green]")
        else:
            table.add_row(escape(selector), "0", "[yellow]stale[/yellow]")
            dead.append(selector)

    console.print(table)
    console.print(f"\n[bold]{len(rules) - len(dead)}/{len(rules)} selector(s) live on {origin}[/bold]")

    if prune and dead:
        async def remove_all():
            for selector in dead:
                await store.remove_one(origin, selector)

        asyncio.run(remove_all())
        console.print(f"[dim]Pruned {len(dead)} selector(s)[/dim]")


@cli.command()
@click.argument('html_file', type=click.Path(exists=True, dir_okay=False))
@click.argument('css')
def synth(html_file, css):
    """
    Print the durable selector for each element CSS matches in a saved page.
    """
    from webcleaner.layers.sense.soup_document import SoupDocument
    from webcleaner.layers.synthesis.selector_synthesizer import SelectorSynthesizer

    document = SoupDocument.from_file(html_file)
    synthesizer = SelectorSynthesizer(document)

    try:
        nodes = document.query_all(css)
    except SelectorInvalid as e:
        console.print(f"[red]❌ Error: {escape(str(e))}[/red]")
        raise SystemExit(1)

    if not nodes:
        console.print("[yellow]No elements matched[/yellow]")
        return

    for node in nodes:
        try:
            selector = synthesizer.synthesize(node)
            console.print(f"  [dim]{escape(document.describe(node))}[/dim] → [cyan]{escape(selector)}[/cyan]")
        except CleanerError as e:
            console.print(f"  [dim]{escape(document.describe(node))}[/dim] → [red]{escape(str(e))}[/red]")


@cli.group()
def rules():
    """Inspect and edit stored rules."""


@rules.command('list')
@click.argument('origin', required=False)
@click.pass_context
def rules_list(ctx, origin):
    """List rules for ORIGIN, or every origin with rules."""
    store = _store(ctx)

    async def collect():
        origins = [origin] if origin else await store.origins()
        enlarged = store.namespaced(ENLARGED_PREFIX)
        return [(o, await store.load(o), await enlarged.load(o)) for o in origins]

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Origin", style="blue")
    table.add_column("Selector", style="yellow")
    table.add_column("Effect", style="dim")

    for site, selectors, enlarged in asyncio.run(collect()):
        for selector in selectors:
            table.add_row(site, escape(selector), "blur")
        for selector in enlarged:
            table.add_row(site, escape(selector), "enlarge")

    console.print(table)


@rules.command('add')
@click.argument('origin')
@click.argument('selector')
@click.option('--enlarge', is_flag=True, help='Store as an enlargement rule')
@click.pass_context
def rules_add(ctx, origin, selector, enlarge):
    """Add SELECTOR to ORIGIN's rules."""
    store = _store(ctx)
    if enlarge:
        store = store.namespaced(ENLARGED_PREFIX)
    added = asyncio.run(store.add(origin, selector))
    if added:
        console.print(f"[green]✅ Added[/green] {escape(selector)}")
    else:
        console.print(f"[dim]Already stored:[/dim] {escape(selector)}")


@rules.command('remove')
@click.argument('origin')
@click.argument('selector')
@click.option('--enlarge', is_flag=True, help='Remove an enlargement rule')
@click.pass_context
def rules_remove(ctx, origin, selector, enlarge):
    """Remove SELECTOR from ORIGIN's rules."""
    store = _store(ctx)
    if enlarge:
        store = store.namespaced(ENLARGED_PREFIX)
    if asyncio.run(store.remove_one(origin, selector)):
        console.print(f"[green]✅ Removed[/green] {escape(selector)}")
    else:
        console.print(f"[yellow]⚠️ Not found:[/yellow] {escape(selector)}")


@rules.command('reset')
@click.argument('origin')
@click.pass_context
def rules_reset(ctx, origin):
    """Forget every rule stored for ORIGIN."""
    store = _store(ctx)

    async def clear():
        await store.clear(origin)
        await store.namespaced(ENLARGED_PREFIX).clear(origin)

    asyncio.run(clear())
    console.print(f"[green]✅ Cleared rules for {origin}[/green]")


@cli.group()
def site():
    """Enable or disable cleaning per site."""


@site.command('disable')
@click.argument('origin')
@click.pass_context
def site_disable(ctx, origin):
    """Stop applying rules on ORIGIN (rules are kept)."""
    asyncio.run(_store(ctx).set_disabled(origin, True))
    console.print(f"[yellow]Cleaning disabled for {origin}[/yellow]")


@site.command('enable')
@click.argument('origin')
@click.pass_context
def site_enable(ctx, origin):
    """Resume applying rules on ORIGIN."""
    asyncio.run(_store(ctx).set_disabled(origin, False))
    console.print(f"[green]Cleaning enabled for {origin}[/green]")


@cli.command()
@click.pass_context
def stats(ctx):
    """Show totals across every stored site."""
    totals = asyncio.run(_store(ctx).stats())

    table = Table(show_header=False, box=None)
    table.add_row("[bold]Sites:[/bold]", str(totals.total_sites))
    table.add_row("[bold]Rules:[/bold]", str(totals.total_rules))
    table.add_row("[bold]Blurred:[/bold]", str(totals.total_blurred))
    table.add_row("[bold]Enlarged:[/bold]", str(totals.total_enlarged))
    console.print(table)


@cli.command()
@click.pass_context
def doctor(ctx):
    """
    Check that rules can be loaded and pages can be opened.

    Exits with status 1 when a required package is missing or the rule
    store cannot be read.
    """
    console.print(Panel.fit(
        "[bold cyan]🩺 WebCleaner Doctor[/bold cyan]",
        border_style="cyan"
    ))

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Check", style="blue")
    table.add_column("Detail", style="dim")
    table.add_column("Status", justify="center")

    problems = 0
    for distribution in ("selenium", "beautifulsoup4", "soupsieve", "click", "rich"):
        try:
            table.add_row(distribution, metadata.version(distribution), "[green]ok[/green]")
        except metadata.PackageNotFoundError:
            table.add_row(distribution, "not installed", "[red]missing[/red]")
            problems += 1

    try:
        totals = asyncio.run(_store(ctx).stats())
        table.add_row("rule store", f"{totals.total_rules} rule(s)", "[green]ok[/green]")
    except CleanerError as e:
        table.add_row("rule store", escape(str(e)), "[red]unreadable[/red]")
        problems += 1

    # Selenium Manager downloads a driver on first use when none is on PATH
    browser = next(filter(None, map(shutil.which, CHROME_BINARIES)), None)
    table.add_row("chrome", escape(browser or "not on PATH"), "[green]ok[/green]" if browser else "[yellow]?[/yellow]")

    console.print(table)
    console.print(f"[dim]Rule store: {escape(ctx.obj['config'].resolved_store_path)}[/dim]")
    if problems:
        console.print(f"[red]{problems} problem(s) found.[/red] [dim]Reinstall with: pip install webcleaner[/dim]")
        raise SystemExit(1)
    console.print("[bold green]Ready to clean pages.[/bold green]")


@cli.command()
def version():
    """Show version information."""
    from webcleaner import __version__
    console.print(f"WebCleaner v{__version__}")


def main():
    """Entry point for the CLI."""
    cli(obj={})


if __name__ == '__main__':
    main()
