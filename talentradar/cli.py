"""Command-line interface for talentradar."""
import asyncio
import json
import logging
import random
from pathlib import Path
from typing import List, Optional, Tuple
from urllib.parse import urlparse

import click
from rich.console import Console
from rich.table import Table

from .config import Config, load_sites
from .error_handling import EngineUnavailableError
from .fetchers import BrowserEngine, Fetcher
from .models import EngineStats, FetchResult, SiteConfig, Viewport
from .stealth import generate_fingerprint, get_evasion_policy, realistic_headers

console = Console()
logger = logging.getLogger(__name__)


def site_name_for_url(url: str) -> str:
    """Site name from a URL host, e.g. "https://www.jobs.bg/x" -> "jobs.bg"."""
    host = urlparse(url).hostname or ""
    return host[4:] if host.startswith("www.") else host


def _load_site_list(sites_file: Optional[str]) -> List[SiteConfig]:
    try:
        return load_sites(Path(sites_file) if sites_file else None)
    except FileNotFoundError:
        if sites_file:
            raise
        return []


def resolve_site(url: str, site_name: Optional[str], sites_file: Optional[str]) -> SiteConfig:
    """Find the configured site for a fetch, or a default one."""
    name = site_name or site_name_for_url(url)
    for site in _load_site_list(sites_file):
        if site.name == name:
            return site
    return SiteConfig(name=name, base_url=url)


async def _run_fetch(url: str, site: SiteConfig) -> Tuple[FetchResult, EngineStats]:
    async with BrowserEngine() as engine:
        fetcher = Fetcher(engine)
        result = await fetcher.fetch(url, site)
        return result, engine.stats()


@click.group()
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
def cli(verbose: bool):
    """talentradar - browser session and fetch engine for job sites."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command()
@click.argument('url')
@click.option('--site', 'site_name', help='Site name (defaults to the URL host)')
@click.option('--sites-file', type=click.Path(), default=None, help='Sites YAML file')
@click.option('--http-first/--browser-only', default=None, help='Try a plain HTTP request before the browser')
@click.option('--infinite-scroll', is_flag=True, help='Scroll until the page stops growing')
@click.option('--no-stealth', is_flag=True, help='Use the plain browser identity')
@click.option('--output', '-o', type=click.Path(), help='Write the page HTML to this file')
@click.option('--json', 'as_json', is_flag=True, help='Print the result as JSON')
def fetch(url: str, site_name: Optional[str], sites_file: Optional[str], http_first: Optional[bool],
          infinite_scroll: bool, no_stealth: bool, output: Optional[str], as_json: bool):
    """Fetch a page through the browser engine."""
    site = resolve_site(url, site_name, sites_file)
    if http_first is not None:
        site.http_first = http_first
    if infinite_scroll:
        site.infinite_scroll = True
    if no_stealth:
        site.stealth = False

    try:
        result, stats = asyncio.run(_run_fetch(url, site))
    except EngineUnavailableError as e:
        console.print(f"[red]{e}[/red]")
        raise SystemExit(1)

    if output and result.success:
        Path(output).write_text(result.html, encoding="utf-8")
        console.print(f"[green]Saved {len(result.html)} characters to {output}[/green]")

    if as_json:
        data = result.to_dict()
        if output:
            data["html"] = output
        click.echo(json.dumps(data, indent=2, default=str))
    else:
        table = Table(title=f"Fetch {url}")
        table.add_column("Field", style="cyan")
        table.add_column("Value", style="green")
        table.add_row("Success", str(result.success))
        table.add_row("Status", str(result.status))
        table.add_row("Final URL", result.final_url)
        table.add_row("Source", result.source)
        table.add_row("Load time", f"{result.load_time:.0f} ms")
        table.add_row("HTML size", str(len(result.html)))
        table.add_row("Cookies", str(len(result.cookies)))
        if result.error:
            table.add_row("Error", f"[red]{result.error}[/red]")
        console.print(table)
        console.print(
            f"[blue]Requests: {stats.total_requests}, success rate: {stats.success_rate:.0%}, "
            f"average load: {stats.average_load_time:.0f} ms[/blue]"
        )

    if not result.success:
        raise SystemExit(1)


@cli.command()
@click.argument('site_name')
def policy(site_name: str):
    """Show the evasion policy for a site."""
    config = Config()
    site_policy = get_evasion_policy(site_name, config.get_evasion_overrides(site_name))
    table = Table(title=f"Evasion policy for {site_name}")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Delay", f"{site_policy.min_delay}-{site_policy.max_delay} ms")
    table.add_row("Scroll page", str(site_policy.scroll_page))
    table.add_row("Mouse movements", str(site_policy.mouse_movements))
    table.add_row("Max session requests", str(site_policy.max_session_requests))
    table.add_row("Rotation interval", f"{site_policy.rotation_interval:g} min")
    console.print(table)


@cli.command()
@click.option('--seed', type=int, default=None, help='Seed for reproducible profiles')
@click.option('--count', type=int, default=1, help='Number of profiles to generate')
@click.option('--user-agent', default=None, help='Keep this user agent')
@click.option('--viewport', default=None, help='Fixed viewport as WIDTHxHEIGHT')
@click.option('--headers', 'show_headers', is_flag=True, help='Also print request headers')
def fingerprint(seed: Optional[int], count: int, user_agent: Optional[str],
                viewport: Optional[str], show_headers: bool):
    """Generate randomized browser fingerprints."""
    fixed_viewport = None
    if viewport:
        try:
            width, height = (int(part) for part in viewport.lower().split("x"))
        except ValueError:
            raise click.BadParameter("expected WIDTHxHEIGHT", param_hint="--viewport")
        fixed_viewport = Viewport(width, height)

    rng = random.Random(seed)
    for index in range(count):
        profile = generate_fingerprint(rng, viewport=fixed_viewport, user_agent=user_agent)
        table = Table(title=f"Fingerprint {index + 1}")
        table.add_column("Attribute", style="cyan")
        table.add_column("Value", style="green")
        table.add_row("User agent", profile.user_agent)
        table.add_row("Platform", profile.platform)
        table.add_row("Vendor", profile.vendor or "-")
        table.add_row("Viewport", f"{profile.viewport.width}x{profile.viewport.height}")
        table.add_row("Timezone", profile.timezone)
        table.add_row("Languages", ", ".join(profile.languages))
        table.add_row("CPU cores", str(profile.hardware_concurrency))
        if show_headers:
            for name, value in realistic_headers(profile).items():
                table.add_row(f"Header {name}", value)
        console.print(table)


@cli.command()
@click.option('--sites-file', type=click.Path(), default=None, help='Sites YAML file')
def sites(sites_file: Optional[str]):
    """List configured sites."""
    try:
        site_list = load_sites(Path(sites_file) if sites_file else None)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]{e}[/red]")
        raise SystemExit(1)

    table = Table(title="Configured Sites")
    table.add_column("Name", style="cyan")
    table.add_column("Method", style="green")
    table.add_column("HTTP first")
    table.add_column("Infinite scroll")
    table.add_column("Base URL", style="blue")
    for site in site_list:
        table.add_row(site.name, site.fetch_method, str(site.http_first),
                      str(site.infinite_scroll), site.base_url)
    console.print(table)


@cli.command()
@click.option('--host', default=None, help='Host to bind the server to')
@click.option('--port', type=int, default=None, help='Port to bind the server to')
def serve(host: Optional[str], port: Optional[int]):
    """Start the metrics server."""
    import uvicorn
    from .web.app import create_app

    web_config = Config().get_web_config()
    host = host or web_config['host']
    port = port or web_config['port']
    console.print(f"[green]Starting metrics server at http://{host}:{port}/metrics[/green]")
    uvicorn.run(create_app(), host=host, port=port)


def main():
    """Main entry point for the CLI."""
    cli()
