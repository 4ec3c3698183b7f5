"""Hostclaim CLI - Command line interface."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any

import click
import structlog
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from hostclaim import __version__
from hostclaim.core.config import (
    HostclaimConfig,
    flatten_config,
    get_config,
    load_config_from_file,
)
from hostclaim.domains.errors import HostclaimError, ThrottledError
from hostclaim.domains.manager import DomainManager
from hostclaim.domains.storage import JSONDomainStore

console = Console()

STATUS_COLORS = {
    "not_started": "dim",
    "pending": "yellow",
    "conflicted": "red",
    "expired": "red",
    "failed": "red",
    "verified": "cyan",
    "active": "green",
    "pending_verification": "yellow",
    "pending_ssl": "yellow",
    "ready_for_activation": "cyan",
    "not_ready": "yellow",
}


def _configure_logging(log_level: str, verbose: bool) -> None:
    effective_log_level = "debug" if verbose else log_level
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, effective_log_level.upper())
        ),
    )


def _config(ctx: click.Context) -> HostclaimConfig:
    return ctx.obj["config"]


def _manager(ctx: click.Context, storage: str | None) -> DomainManager:
    cfg = _config(ctx)
    store = JSONDomainStore(storage or cfg.server.storage_path)
    return DomainManager.from_config(cfg, store=store)


def _fail(error: HostclaimError) -> None:
    console.print(f"[red]Error:[/red] {error.message}")
    if isinstance(error, ThrottledError):
        console.print(f"[dim]Next retry after: {error.next_retry_after.isoformat()}[/dim]")
    suggestion = getattr(error, "suggestion", None)
    if suggestion:
        console.print(f"[dim]Try: {suggestion}[/dim]")
    sys.exit(1)


def _print_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


storage_option = click.option(
    "--storage", default=None, help="Path to domain storage file (default: from config)"
)


@click.group()
@click.version_option(__version__, prog_name="hostclaim")
@click.option(
    "--config", "-c",
    "config_file",
    type=click.Path(exists=True),
    help="Path to YAML or TOML config file",
)
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"]),
    default="warning",
    help="Log level (default: warning, use --verbose for debug)",
)
@click.pass_context
def main(ctx: click.Context, config_file: str | None, verbose: bool, log_level: str):
    """Hostclaim - verify and activate tenant custom domains."""
    _configure_logging(log_level, verbose)
    ctx.ensure_object(dict)
    if config_file:
        try:
            values = flatten_config(load_config_from_file(config_file))
        except ValueError as e:
            console.print(f"[red]Error:[/red] {e}")
            sys.exit(1)
        ctx.obj["config"] = HostclaimConfig.from_flat(values)
    else:
        ctx.obj["config"] = get_config()


@main.group()
def tenant():
    """Manage the tenants known to the domain engine."""
    pass


@tenant.command("add")
@click.argument("tenant_id")
@click.argument("name")
@click.option("--slug", default=None, help="Tenant slug")
@click.option("--plan", default=None, help="Subscription plan (e.g. professional)")
@click.option("--subscription-status", default="active", help="Subscription status")
@storage_option
@click.pass_context
def tenant_add(
    ctx: click.Context,
    tenant_id: str,
    name: str,
    slug: str | None,
    plan: str | None,
    subscription_status: str,
    storage: str | None,
):
    """Register a tenant so it can claim a domain."""
    asyncio.run(
        _tenant_add_async(_manager(ctx, storage), tenant_id, name, slug, plan, subscription_status)
    )


async def _tenant_add_async(
    manager: DomainManager,
    tenant_id: str,
    name: str,
    slug: str | None,
    plan: str | None,
    subscription_status: str,
):
    try:
        added = await manager.add_tenant(tenant_id, name, slug, plan, subscription_status)
    except HostclaimError as e:
        _fail(e)
        return
    console.print(f"[green]Tenant saved:[/green] {added.tenant_id} ({added.name})")


@main.group()
def domain():
    """Verify and activate custom domains.

    A tenant proves ownership of a hostname by creating a CNAME record that
    points at a unique verification target.

    Examples:

        hostclaim tenant add t1 "Acme Tours" --plan professional

        hostclaim domain initiate t1 example.com --subdomain booking

        hostclaim domain retry t1

        hostclaim domain activation t1

        hostclaim domain cname t1 --provider cloudflare

        hostclaim domain activate t1
    """
    pass


@domain.command("initiate")
@click.argument("tenant_id")
@click.argument("apex_domain")
@click.option("--subdomain", "-s", default="booking", help="Subdomain to claim (default: booking)")
@storage_option
@click.pass_context
def domain_initiate(
    ctx: click.Context, tenant_id: str, apex_domain: str, subdomain: str, storage: str | None
):
    """Start verification of SUBDOMAIN.APEX_DOMAIN for a tenant."""
    asyncio.run(_domain_initiate_async(_manager(ctx, storage), tenant_id, apex_domain, subdomain))


async def _domain_initiate_async(
    manager: DomainManager, tenant_id: str, apex_domain: str, subdomain: str
):
    try:
        result = await manager.initiate(tenant_id, apex_domain, subdomain)
    except HostclaimError as e:
        _fail(e)
        return

    console.print(
        Panel(
            f"[green]Verification started![/green]\n\n"
            f"[yellow]Create this DNS record:[/yellow]\n\n"
            f"   [bold]Type:[/bold]  CNAME\n"
            f"   [bold]Name:[/bold]  {result['cname_source']}\n"
            f"   [bold]Value:[/bold] {result['cname_target']}\n"
            f"   [bold]TTL:[/bold]   {result['ttl_recommendation']}\n\n"
            f"[bold]Expires:[/bold] {result['expires_at']}\n\n"
            f"After configuring DNS, run:\n"
            f"  [cyan]hostclaim domain retry {tenant_id}[/cyan]",
            title="Domain Verification",
            border_style="green",
        )
    )


@domain.command("status")
@click.argument("tenant_id")
@click.option("--no-propagation", is_flag=True, help="Skip the cross-resolver DNS check")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@storage_option
@click.pass_context
def domain_status(
    ctx: click.Context,
    tenant_id: str,
    no_propagation: bool,
    json_output: bool,
    storage: str | None,
):
    """Show verification status for a tenant."""
    asyncio.run(
        _domain_status_async(_manager(ctx, storage), tenant_id, not no_propagation, json_output)
    )


async def _domain_status_async(
    manager: DomainManager, tenant_id: str, check_propagation: bool, json_output: bool
):
    try:
        status = await manager.status(tenant_id, check_propagation=check_propagation)
    except HostclaimError as e:
        _fail(e)
        return

    if json_output:
        _print_json(status)
        return

    state = status["status"]
    color = STATUS_COLORS.get(state, "white")
    content = (
        f"[bold]Domain:[/bold] {status['domain'] or 'N/A'}\n"
        f"[bold]Status:[/bold] [{color}]{state}[/{color}]\n"
        f"[bold]SSL:[/bold] {status['ssl_status'] or 'N/A'}\n"
        f"[bold]Attempts:[/bold] {status['verification_attempts']}\n"
        f"[bold]Next Check:[/bold] {status['next_check_at']}"
    )
    if status["verification_target"]:
        content += f"\n[bold]CNAME Target:[/bold] {status['verification_target']}"
    if status["verification_expires"]:
        content += f"\n[bold]Expires:[/bold] {status['verification_expires']}"
    if status["dns_propagation"]:
        propagation = status["dns_propagation"]
        content += f"\n\n[yellow]DNS Propagation:[/yellow] {propagation['state']}"
        for name, value in propagation.items():
            if name not in ("state", "errors"):
                content += f"\n   {name}: {value}"

    console.print(Panel(content, title=f"Domain Status: {tenant_id}", border_style=color))


@domain.command("retry")
@click.argument("tenant_id")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@storage_option
@click.pass_context
def domain_retry(ctx: click.Context, tenant_id: str, json_output: bool, storage: str | None):
    """Check the verification CNAME now."""
    asyncio.run(_domain_retry_async(_manager(ctx, storage), tenant_id, json_output))


async def _domain_retry_async(manager: DomainManager, tenant_id: str, json_output: bool):
    if not json_output:
        console.print(f"Checking DNS for tenant [cyan]{tenant_id}[/cyan]...", style="yellow")
    try:
        result = await manager.retry(tenant_id)
    except HostclaimError as e:
        _fail(e)
        return

    if json_output:
        _print_json(result)
        if not result["success"]:
            sys.exit(1)
        return

    if result["status"] == "already_verified":
        console.print(f"[green]{result['message']}[/green] (SSL: {result['ssl_status']})")
        return

    if result["status"] == "verified":
        console.print(
            Panel(
                f"[green]{result['message']}[/green]\n\n"
                f"[bold]Verified At:[/bold] {result['verified_at']}\n"
                f"[bold]SSL:[/bold] {result['ssl_status']}",
                title="Verification Successful",
                border_style="green",
            )
        )
        return

    expected = result["expected_record"]
    content = (
        f"[yellow]{result['message']}[/yellow]\n\n"
        f"[bold]Expected:[/bold] {expected['name']} CNAME {expected['target']}\n"
        f"[bold]Found:[/bold] {result['actual_target'] or 'nothing'}\n"
        f"[bold]Attempts Remaining:[/bold] {result['attempts_remaining']}\n"
        f"[bold]Retry After:[/bold] {result['next_retry_after']}"
    )
    if result["dns_conflicts"]:
        content += "\n\n[red]Conflicting records:[/red]"
        for record in result["dns_conflicts"]:
            content += f"\n   {record['type']}: {', '.join(record['values'])}"
    if result["error"]:
        content += f"\n\n[red]DNS error:[/red] {result['error']}"
    console.print(Panel(content, title="Verification Status", border_style="yellow"))
    sys.exit(1)


@domain.command("activation")
@click.argument("tenant_id")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@storage_option
@click.pass_context
def domain_activation(ctx: click.Context, tenant_id: str, json_output: bool, storage: str | None):
    """Show activation progress for a tenant."""
    asyncio.run(_domain_activation_async(_manager(ctx, storage), tenant_id, json_output))


async def _domain_activation_async(manager: DomainManager, tenant_id: str, json_output: bool):
    try:
        status = await manager.activation_status(tenant_id)
    except HostclaimError as e:
        _fail(e)
        return

    if json_output:
        _print_json(status)
        return

    phase = status["status"]
    color = STATUS_COLORS.get(phase, "white")
    content = (
        f"[bold]Status:[/bold] [{color}]{phase}[/{color}]\n"
        f"{status['message']}\n\n"
        f"[bold]Next Step:[/bold] {status['next_step']}"
    )
    instructions = status.get("instructions")
    if instructions and "new_record" in instructions:
        content += f"\n\n[yellow]New record:[/yellow] {instructions['new_record']}"
    if status.get("test_url"):
        content += f"\n[bold]Test URL:[/bold] {status['test_url']}"
    console.print(Panel(content, title=f"Activation: {tenant_id}", border_style=color))


@domain.command("activate")
@click.argument("tenant_id")
@storage_option
@click.pass_context
def domain_activate(ctx: click.Context, tenant_id: str, storage: str | None):
    """Activate a verified domain once its certificate is ready."""
    asyncio.run(_domain_activate_async(_manager(ctx, storage), tenant_id))


async def _domain_activate_async(manager: DomainManager, tenant_id: str):
    try:
        result = await manager.activation_check(tenant_id)
    except HostclaimError as e:
        _fail(e)
        return

    if result["activated"]:
        console.print(f"[green]{result['message']}[/green] {result.get('test_url', '')}")
        return
    console.print(f"[yellow]{result['message']}[/yellow] (status: {result['status']})")
    if result.get("expected_cname"):
        console.print(f"[dim]Expected CNAME target: {result['expected_cname']}[/dim]")
    sys.exit(1)


@domain.command("cname")
@click.argument("tenant_id")
@click.option("--provider", "-p", default=None, help="Show the guide for one DNS provider")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@storage_option
@click.pass_context
def domain_cname(
    ctx: click.Context,
    tenant_id: str,
    provider: str | None,
    json_output: bool,
    storage: str | None,
):
    """Show how to point a verified domain at the platform."""
    asyncio.run(
        _domain_cname_async(_manager(ctx, storage), tenant_id, provider, json_output)
    )


async def _domain_cname_async(
    manager: DomainManager, tenant_id: str, provider: str | None, json_output: bool
):
    try:
        guide = await manager.cname_instructions(tenant_id)
    except HostclaimError as e:
        _fail(e)
        return

    if json_output:
        _print_json(guide)
        return

    record = guide["cname_record"]
    console.print(
        Panel(
            f"[bold]Type:[/bold] {record['type']}\n"
            f"[bold]Name:[/bold] {record['name']}\n"
            f"[bold]Value:[/bold] [cyan]{record['value']}[/cyan]\n\n"
            f"{record['description']}",
            title=f"Cutover CNAME: {guide['domain_info']['full_custom_domain']}",
            border_style="cyan",
        )
    )

    guides = guide["provider_guides"]
    if provider is not None:
        if provider not in guides:
            console.print(f"[red]Unknown provider:[/red] {provider}")
            console.print(f"[dim]Available: {', '.join(guides)}[/dim]")
            sys.exit(1)
        guides = {provider: guides[provider]}
    for entry in guides.values():
        steps = "\n".join(f"{i}. {step}" for i, step in enumerate(entry["steps"], 1))
        console.print(Panel(steps, title=entry["provider"], border_style="dim"))


@domain.command("ssl")
@click.argument("tenant_id")
@click.argument(
    "ssl_status", type=click.Choice(["provisioning", "provisioned", "active", "failed"])
)
@storage_option
@click.pass_context
def domain_ssl(ctx: click.Context, tenant_id: str, ssl_status: str, storage: str | None):
    """Record an SSL provisioner status for a tenant's domain."""
    asyncio.run(_domain_ssl_async(_manager(ctx, storage), tenant_id, ssl_status))


async def _domain_ssl_async(manager: DomainManager, tenant_id: str, ssl_status: str):
    try:
        result = await manager.report_ssl(tenant_id, ssl_status)
    except HostclaimError as e:
        _fail(e)
        return
    console.print(
        f"[green]SSL status recorded:[/green] {result['custom_domain']} "
        f"ssl={result['ssl_status']} domain={result['domain_status']}"
    )


@domain.command("history")
@click.argument("tenant_id")
@storage_option
@click.pass_context
def domain_history(ctx: click.Context, tenant_id: str, storage: str | None):
    """Show recorded verification attempts for a tenant."""
    asyncio.run(_domain_history_async(_manager(ctx, storage), tenant_id))


async def _domain_history_async(manager: DomainManager, tenant_id: str):
    attempts = await manager.history(tenant_id)
    if not attempts:
        console.print("[dim]No verification attempts recorded[/dim]")
        return

    table = Table(title=f"Verification Attempts: {tenant_id}")
    table.add_column("Time")
    table.add_column("Hostname", style="cyan")
    table.add_column("Outcome", justify="center")
    table.add_column("Found", style="dim")

    for attempt in attempts:
        outcome = attempt["outcome"]
        color = "green" if outcome == "verified" else "red" if outcome == "conflicted" else "yellow"
        found = attempt["diagnostic"].get("cname", {}).get("actual_targets") or []
        table.add_row(
            attempt["timestamp"],
            attempt["hostname"],
            f"[{color}]{outcome}[/{color}]",
            ", ".join(found) or "-",
        )
    console.print(table)


@domain.command("list")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@storage_option
@click.pass_context
def domain_list(ctx: click.Context, json_output: bool, storage: str | None):
    """List all domain records."""
    asyncio.run(_domain_list_async(_manager(ctx, storage), json_output))


async def _domain_list_async(manager: DomainManager, json_output: bool):
    records = await manager.list_records()
    now = manager.machine.now()

    if json_output:
        _print_json([r.to_dict() for r in records])
        return

    if not records:
        console.print("[dim]No domains registered[/dim]")
        return

    table = Table(title="Custom Domains")
    table.add_column("Tenant", style="dim")
    table.add_column("Hostname", style="cyan")
    table.add_column("State", justify="center")
    table.add_column("SSL")
    table.add_column("Attempts", justify="right")
    table.add_column("Created At")

    for record in records:
        state = record.state(now).value
        color = STATUS_COLORS.get(state, "white")
        table.add_row(
            record.tenant_id,
            record.hostname,
            f"[{color}]{state}[/{color}]",
            record.ssl_status.value,
            str(record.attempts),
            record.created_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


@domain.command("remove")
@click.argument("tenant_id")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@storage_option
@click.pass_context
def domain_remove(ctx: click.Context, tenant_id: str, yes: bool, storage: str | None):
    """Remove a tenant's domain record."""
    if not yes and not click.confirm(f"Are you sure you want to remove the domain of '{tenant_id}'?"):
        console.print("[dim]Cancelled[/dim]")
        return

    asyncio.run(_domain_remove_async(_manager(ctx, storage), tenant_id))


async def _domain_remove_async(manager: DomainManager, tenant_id: str):
    if await manager.remove(tenant_id):
        console.print(f"[green]Domain removed for tenant:[/green] {tenant_id}")
    else:
        console.print(f"[red]No domain found for tenant:[/red] {tenant_id}")
        sys.exit(1)


@main.command()
@click.option("--host", default=None, help="Bind host (default: from config)")
@click.option("--port", "-p", type=int, default=None, help="Bind port (default: from config)")
@storage_option
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None, storage: str | None):
    """Run the domain verification HTTP API."""
    from hostclaim.server.api import serve as serve_api

    cfg = _config(ctx)
    manager = _manager(ctx, storage)
    host = host or cfg.server.api_host
    port = port or cfg.server.api_port

    console.print(f"Serving domain API on [cyan]http://{host}:{port}[/cyan]", style="yellow")
    try:
        asyncio.run(
            serve_api(manager, host, port, provisioner_secret=cfg.activation.provisioner_secret)
        )
    except KeyboardInterrupt:
        console.print("\n[dim]Stopped[/dim]")


@main.group()
def config():
    """View configuration settings.

    All settings can be configured via environment variables with the
    HOSTCLAIM_ prefix, or loaded from a file with --config.
    """
    pass


@config.command("show")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.option(
    "--section", "-s", help="Show only specific section (verification, dns, activation, server)"
)
@click.pass_context
def config_show(ctx: click.Context, json_output: bool, section: str | None):
    """Show current configuration settings."""
    display = _config(ctx).to_display_dict()

    if section:
        section = section.lower()
        if section not in display:
            console.print(f"[red]Unknown section:[/red] {section}")
            console.print(f"[dim]Available: {', '.join(display.keys())}[/dim]")
            sys.exit(1)
        display = {section: display[section]}

    if json_output:
        _print_json(display)
        return

    console.print("[bold]Current Configuration[/bold]\n")
    for section_name, settings in display.items():
        table = Table(title=section_name.replace("_", " ").title())
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="green")
        table.add_column("Env Variable", style="dim")

        for key, value in settings.items():
            env_var = f"HOSTCLAIM_{key.upper()}"
            value_str = str(value) if value is not None else "[dim]None[/dim]"
            table.add_row(key, value_str, env_var)

        console.print(table)
        console.print()


if __name__ == "__main__":
    main()
