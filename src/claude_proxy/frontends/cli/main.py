"""CLI entry point."""

from __future__ import annotations

import asyncio
import json

import rich_click as click
from rich.console import Console
from rich.table import Table

from claude_proxy.compose import ProxySettings, build_settings, create_proxy
from claude_proxy.core.logging_config import LOG_LEVELS, configure_logging
from claude_proxy.gateway.errors import ConfigError

# Configure rich-click styling
click.rich_click.USE_RICH_MARKUP = True
click.rich_click.USE_MARKDOWN = True
click.rich_click.SHOW_ARGUMENTS = True
click.rich_click.GROUP_ARGUMENTS_OPTIONS = True
click.rich_click.STYLE_ERRORS_SUGGESTION = "magenta italic"
click.rich_click.ERRORS_SUGGESTION = "Try running '--help' for more information."
click.rich_click.ERRORS_EPILOGUE = ""
click.rich_click.MAX_WIDTH = 100

config_option = click.option(
    "--config",
    "-c",
    "config_file",
    default=None,
    type=click.Path(dir_okay=False),
    help="YAML config file (or CLAUDE_PROXY_CONFIG)",
)


def mask_secret(secret: str | None) -> str:
    """Show just enough of a credential to tell keys apart."""
    if not secret:
        return "-"
    if len(secret) <= 8:
        return "***"
    return f"{secret[:3]}...{secret[-4:]}"


def _load(config_file: str | None, default_provider: str | None = None) -> ProxySettings:
    try:
        return build_settings(config_file=config_file, default_provider=default_provider)
    except ConfigError as e:
        raise click.ClickException(e.message) from e


# =========================================================================
# Root CLI
# =========================================================================
@click.group()
@click.version_option(package_name="claude-proxy")
def cli():
    """claude-proxy - Anthropic Messages API gateway for many LLM providers.

    Point an Anthropic client at the proxy and pick the backend per request
    with the `x-claude-proxy-provider` header or `metadata.provider`.

    **Commands:**

        claude-proxy serve       Run the proxy server

        claude-proxy providers   Show configured providers

        claude-proxy resolve     Show where a model would be routed
    """
    pass


@cli.command()
@click.option("--host", "-h", default=None, help="Host to bind to (or PROXY_HOST)")
@click.option("--port", "-p", default=None, type=int, help="Port to bind to (or PROXY_PORT)")
@click.option(
    "--provider",
    "default_provider",
    default=None,
    help="Default provider (or DEFAULT_PROVIDER)",
)
@config_option
@click.option(
    "--log-level",
    "-l",
    default=None,
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    help="Log level (or CLAUDE_PROXY_LOG_LEVEL)",
)
@click.option(
    "--log-format",
    default=None,
    type=click.Choice(["text", "json"]),
    help="Log format (or CLAUDE_PROXY_LOG_FORMAT)",
)
@click.option("--log-file", default=None, help="Also log to this file (or CLAUDE_PROXY_LOG_FILE)")
@click.option(
    "--debug-dir",
    default=None,
    help="Save request/response JSON per trace id under this directory",
)
def serve(
    host: str | None,
    port: int | None,
    default_provider: str | None,
    config_file: str | None,
    log_level: str | None,
    log_format: str | None,
    log_file: str | None,
    debug_dir: str | None,
):
    """Run the proxy server.

    Stops on Ctrl+C or `POST /api/shutdown`.

    **Examples:**

        claude-proxy serve

        claude-proxy serve --port 8082 --provider openai

        claude-proxy serve --config proxy.yaml --log-level DEBUG
    """
    configure_logging(
        level=log_level, format=log_format, file_path=log_file  # type: ignore[arg-type]
    )

    try:
        asyncio.run(
            create_proxy(
                host=host,
                port=port,
                default_provider=default_provider,
                config_file=config_file,
                debug_dir=debug_dir,
            )
        )
    except ConfigError as e:
        raise click.ClickException(e.message) from e
    except KeyboardInterrupt:
        click.echo("Stopped.")


@cli.command()
@config_option
@click.option("--json", "-j", "json_output", is_flag=True, help="Output as JSON")
def providers(config_file: str | None, json_output: bool):
    """Show configured providers.

    Credentials are masked.
    """
    settings = _load(config_file)
    registry = settings.registry

    if json_output:
        data = [
            {
                "name": p.name,
                "kind": p.kind,
                "base_url": p.base_url,
                "model": p.model,
                "api_key": mask_secret(p.api_key),
                "model_mapping": dict(p.model_mapping),
                "default": p.name == registry.default_provider,
            }
            for p in registry.providers.values()
        ]
        click.echo(json.dumps(data, indent=2))
        return

    table = Table(title="Providers")
    table.add_column("Name", style="cyan")
    table.add_column("Kind")
    table.add_column("Base URL")
    table.add_column("Model", style="green")
    table.add_column("API key")
    table.add_column("Model mapping")

    for provider in registry.providers.values():
        name = provider.name
        if name == registry.default_provider:
            name += " (default)"
        table.add_row(
            name,
            provider.kind,
            provider.base_url,
            provider.model,
            mask_secret(provider.api_key),
            ", ".join(f"{k} -> {v}" for k, v in provider.model_mapping.items()) or "-",
        )

    Console().print(table)


@cli.command()
@click.argument("model")
@click.option("--provider", default=None, help="Provider name (default: the default provider)")
@config_option
def resolve(model: str, provider: str | None, config_file: str | None):
    """Show which provider and model a request would be routed to.

    **Examples:**

        claude-proxy resolve claude-3-haiku

        claude-proxy resolve claude-3-opus --provider openai
    """
    settings = _load(config_file)
    registry = settings.registry
    try:
        config = registry.resolve_provider(provider)
    except ConfigError as e:
        raise click.ClickException(e.message) from e

    click.echo(f"provider: {config.name} ({config.kind})")
    click.echo(f"model: {registry.resolve_model(config, model)}")


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
