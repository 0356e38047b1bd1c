"""
Clinical LLM Router - Main Entry Point

CLI for inspecting and exercising the routing layer: credential status,
the routing table, one-off prompts (plain or streamed) and provider
health probes.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from clinical_router.config.loader import (
    PROVIDER_ENV_KEYS,
    build_config_from_env,
    load_system_config,
    providers_with_credentials,
)
from clinical_router.config.schema import ModelTarget, SystemConfig, TaskCategory
from clinical_router.exceptions import ConfigurationError
from clinical_router.llm.factory import create_router
from clinical_router.llm.types import LLMRequest, LLMResponse, ResponseFormat
from clinical_router.observability.logging_config import (
    configure_logging,
    set_request_id,
)

# Load environment (override=True to ensure .env values take precedence)
root_env = Path(__file__).parent / ".env"
if root_env.exists():
    load_dotenv(root_env, override=True)
else:
    load_dotenv(override=True)

app = typer.Typer(
    name="clinical-router",
    help="Clinical LLM Router - multi-provider routing with fallback and circuit breakers",
)
console = Console()
logger = logging.getLogger("clinical_router.cli")

ConfigOption = typer.Option(
    None, "--config", "-c", help="YAML config file (defaults to environment variables)"
)


def _get_config(config_path: Optional[Path]) -> SystemConfig:
    """Load config from YAML or the environment, with a friendly error on failure."""
    try:
        config = load_system_config(config_path) if config_path else build_config_from_env()
    except FileNotFoundError:
        console.print(Panel(
            f"[red]Config not found:[/] [bold]{config_path}[/]\n\n"
            f"Start from the example:\n"
            f"  [dim]cp config/router.example.yaml config/router.yaml[/]",
            title="⚠ Configuration Error",
            border_style="red",
        ))
        raise typer.Exit(code=1)
    except ConfigurationError as e:
        console.print(Panel(
            f"[red]{e}[/]",
            title="⚠ Configuration Error",
            border_style="red",
        ))
        raise typer.Exit(code=1)

    if config.logging:
        configure_logging()
    return config


def _parse_target(target: Optional[str]) -> Optional[ModelTarget]:
    """'provider/model' -> ModelTarget."""
    if not target:
        return None
    provider, sep, model = target.partition("/")
    if not sep or not provider or not model:
        console.print(f"[red]Invalid target:[/] {target} (expected provider/model)")
        raise typer.Exit(code=1)
    return ModelTarget(provider=provider, model=model)


def _print_response(response: LLMResponse, *, show_content: bool = True) -> None:
    if response.success:
        if show_content:
            console.print(Panel(response.content, title="Response", border_style="green"))
        usage = response.usage
        tokens = f" | tokens={usage.total_tokens}" if usage else ""
        console.print(
            f"[dim]{response.provider}/{response.model} | "
            f"{response.latency_ms:.0f}ms{tokens}[/]"
        )
        return

    style = "yellow" if response.cancelled else "red"
    console.print(Panel(
        f"[{style}]{response.error}[/{style}]",
        title="Cancelled" if response.cancelled else "Request Failed",
        border_style=style,
    ))


# =========================================================================
# Commands
# =========================================================================


@app.command()
def providers(config_path: Optional[Path] = ConfigOption):
    """Show which providers have credentials configured."""
    config = _get_config(config_path)
    configured = set(providers_with_credentials(config))

    table = Table(title="Provider Credentials")
    table.add_column("Provider", style="cyan")
    table.add_column("Status")
    table.add_column("Env Var", style="dim")
    table.add_column("Base URL", style="white")

    for name, env_var in PROVIDER_ENV_KEYS.items():
        cfg = config.providers.get(name)
        table.add_row(
            name,
            "[green]configured[/]" if name in configured else "[yellow]missing[/]",
            env_var,
            (cfg.base_url if cfg and cfg.base_url else "default"),
        )

    console.print(table)


@app.command()
def routes(
    task: Optional[str] = typer.Option(
        None, help="Show the full candidate chain for one task category"
    ),
    config_path: Optional[Path] = ConfigOption,
):
    """Show the routing table, or one task's candidate chain."""
    config = _get_config(config_path)
    router = create_router(config)
    configured = set(router.available_providers())

    if task:
        table = Table(title=f"Candidate Chain: {task}")
        table.add_column("#", style="dim")
        table.add_column("Provider / Model", style="cyan")
        table.add_column("Credentials")
        for i, candidate in enumerate(router.candidate_chain(task), 1):
            table.add_row(
                str(i),
                candidate.display_name,
                "[green]yes[/]" if candidate.provider in configured else "[yellow]no (skipped)[/]",
            )
        console.print(table)
        return

    table = Table(title="Routing Table")
    table.add_column("Task", style="cyan")
    table.add_column("Preferred", style="green")
    table.add_column("Fallbacks", style="white")
    table.add_column("Description", style="dim")
    for route in config.router.list_routes():
        table.add_row(
            str(route["task"]),
            str(route["preferred"]),
            ", ".join(route["fallbacks"]) or "-",  # type: ignore[arg-type]
            str(route["description"]),
        )
    console.print(table)
    console.print(
        f"[dim]default={config.router.default_target.display_name} "
        f"fallback={config.router.fallback_target.display_name} "
        f"max_retries={config.router.max_retries} "
        f"timeout={config.router.timeout_seconds:g}s[/]"
    )


@app.command()
def ask(
    prompt: str = typer.Argument(..., help="User prompt"),
    task: TaskCategory = typer.Option(TaskCategory.GENERAL, help="Task category"),
    system: str = typer.Option("You are a helpful clinical assistant.", help="System prompt"),
    target: Optional[str] = typer.Option(None, help="Try provider/model first"),
    pin: bool = typer.Option(False, help="Use only --target, no fallback"),
    json_output: bool = typer.Option(False, "--json", help="Request JSON output"),
    config_path: Optional[Path] = ConfigOption,
):
    """Route one prompt and print the response."""
    config = _get_config(config_path)
    model_target = _parse_target(target)
    if pin and model_target is None:
        console.print("[red]--pin requires --target[/]")
        raise typer.Exit(code=1)

    async def _run() -> LLMResponse:
        set_request_id(uuid.uuid4().hex[:12])
        router = create_router(config)
        try:
            return await router.route(
                LLMRequest(
                    system_prompt=system,
                    user_prompt=prompt,
                    response_format=ResponseFormat.JSON if json_output else ResponseFormat.TEXT,
                ),
                task,
                target=model_target,
                allow_fallback=not pin,
                feature="cli",
            )
        finally:
            await router.aclose()

    response = asyncio.run(_run())
    _print_response(response)
    if not response.success:
        raise typer.Exit(code=1)


@app.command()
def stream(
    prompt: str = typer.Argument(..., help="User prompt"),
    task: TaskCategory = typer.Option(TaskCategory.GENERAL, help="Task category"),
    system: str = typer.Option("You are a helpful clinical assistant.", help="System prompt"),
    target: Optional[str] = typer.Option(None, help="Try provider/model first"),
    config_path: Optional[Path] = ConfigOption,
):
    """Stream one prompt, printing tokens as they arrive."""
    config = _get_config(config_path)
    model_target = _parse_target(target)

    def _on_token(text: str) -> None:
        console.print(text, end="", markup=False, highlight=False)

    async def _run() -> LLMResponse:
        set_request_id(uuid.uuid4().hex[:12])
        router = create_router(config)
        try:
            return await router.route_stream(
                LLMRequest(system_prompt=system, user_prompt=prompt),
                _on_token,
                task,
                target=model_target,
                feature="cli",
            )
        finally:
            await router.aclose()

    response = asyncio.run(_run())
    console.print()
    _print_response(response, show_content=False)
    if not response.success:
        raise typer.Exit(code=1)


@app.command()
def health(config_path: Optional[Path] = ConfigOption):
    """Probe every configured provider."""
    config = _get_config(config_path)

    async def _run() -> dict[str, bool]:
        router = create_router(config)
        try:
            return await router.health_check_all()
        finally:
            await router.aclose()

    results = asyncio.run(_run())
    if not results:
        console.print("[yellow]No providers configured. Set an API key in .env[/]")
        raise typer.Exit(code=1)

    table = Table(title="Provider Health")
    table.add_column("Provider", style="cyan")
    table.add_column("Reachable")
    for name in sorted(results):
        table.add_row(name, "[green]yes[/]" if results[name] else "[red]no[/]")
    console.print(table)

    if not all(results.values()):
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
