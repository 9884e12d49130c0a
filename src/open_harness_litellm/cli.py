"""Command line interface: list proxy models and run one-shot requests."""

from __future__ import annotations

import asyncio
import logging

import click
from rich.console import Console
from rich.table import Table

from open_harness_litellm import __version__
from open_harness_litellm.config import GatewayConfig, load_config
from open_harness_litellm.llm.errors import (
    ChatCompletionError,
    ProviderConfigurationError,
    ProviderRequestError,
)
from open_harness_litellm.pricing import PricingTable
from open_harness_litellm.providers.litellm import LiteLLMProvider
from open_harness_litellm.providers.registry import Blacklist, ModelRegistry
from open_harness_litellm.types import ExecutionResult, ProviderRequest, StreamingExecution

console = Console()


def _build_provider(config: GatewayConfig) -> LiteLLMProvider:
    return LiteLLMProvider(
        config.litellm,
        registry=ModelRegistry(),
        cost_calculator=PricingTable(config.pricing),
        blacklist=Blacklist(config.blacklist),
    )


def _usage_table(result: ExecutionResult) -> Table:
    table = Table(title="Usage", show_header=True, header_style="bold")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Model", result.model)
    table.add_row("Tokens (in/out/total)",
                  f"{result.tokens.input}/{result.tokens.output}/{result.tokens.total}")
    table.add_row("Cost (USD)", f"{result.cost.total:.6f}")
    if result.timing:
        table.add_row("Duration", f"{result.timing.duration:.0f} ms")
        table.add_row("Model time", f"{result.timing.model_time:.0f} ms")
        table.add_row("Tools time", f"{result.timing.tools_time:.0f} ms")
        table.add_row("Iterations", str(result.timing.iterations))
    if result.tool_calls:
        table.add_row("Tool calls", ", ".join(tc.name for tc in result.tool_calls))
    return table


@click.group()
@click.option("--config", "-c", "config_path", default=None,
              help="Path to open_harness_litellm.yaml")
@click.option("--verbose", "-v", is_flag=True, help="Verbose logging")
@click.version_option(__version__)
@click.pass_context
def main(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """LiteLLM provider adapter."""
    config = load_config(config_path)
    if verbose:
        logging.basicConfig(level=logging.DEBUG)
    else:
        logging.basicConfig(level=config.log_level.upper())
    ctx.obj = config


@main.command()
@click.pass_obj
def models(config: GatewayConfig) -> None:
    """Discover and list the models served by the proxy."""
    provider = _build_provider(config)
    discovered = asyncio.run(provider.initialize())
    if not discovered:
        console.print("[yellow]No models available (proxy unconfigured or unreachable).[/yellow]")
        return
    table = Table(title=f"LiteLLM models ({config.litellm.normalized_base_url})")
    table.add_column("Model")
    for model in discovered:
        table.add_row(model)
    console.print(table)


@main.command()
@click.argument("prompt")
@click.option("--model", "-m", default=None, help="Model id, e.g. litellm/gpt-4o")
@click.option("--system", "-s", "system_prompt", default=None, help="System prompt")
@click.option("--stream/--no-stream", default=False, help="Stream the answer")
@click.option("--temperature", type=float, default=None)
@click.option("--max-tokens", type=int, default=None)
@click.pass_obj
def chat(
    config: GatewayConfig,
    prompt: str,
    model: str | None,
    system_prompt: str | None,
    stream: bool,
    temperature: float | None,
    max_tokens: int | None,
) -> None:
    """Send PROMPT to the proxy and print the answer."""
    provider = _build_provider(config)
    model = model or provider.default_model
    if not model:
        raise click.UsageError("No model given and no default_model configured")

    request = ProviderRequest(
        model=model,
        system_prompt=system_prompt,
        messages=[{"role": "user", "content": prompt}],
        temperature=temperature,
        max_tokens=max_tokens,
        stream=stream,
    )

    async def _run() -> ExecutionResult:
        try:
            result = await provider.execute_request(request)
            if isinstance(result, StreamingExecution):
                try:
                    async for chunk in result.stream:
                        console.print(chunk.decode("utf-8"), end="", highlight=False)
                    console.print()
                    await result.finalized
                finally:
                    await result.aclose()
                return result.execution
            console.print(result.content, highlight=False)
            return result
        finally:
            await provider.aclose()

    try:
        result = asyncio.run(_run())
    except ProviderConfigurationError as e:
        raise click.ClickException(str(e)) from e
    except ProviderRequestError as e:
        detail = f" ({e.error_type})" if e.error_type else ""
        raise click.ClickException(f"{e.message}{detail}") from e
    except ChatCompletionError as e:
        raise click.ClickException(f"Stream failed: {e.message}") from e

    console.print(_usage_table(result))


if __name__ == "__main__":
    main()
