"""Ask subcommand: one text turn through the completion engine."""

import asyncio
import click
import json
import sys
import time
from typing import Optional
import structlog

from ..config.settings import settings
from ..core.chat_client import ChatClient, NetworkError
from ..core.completion_engine import CompletionFallbackEngine, InvalidRequest
from ..core.scenarios import create_default_registry
from ..metrics.collector import MetricsCollector
from ..state.session_store import SessionStore
from ..utils.logging import setup_logging

logger = structlog.get_logger()


async def _ask_engine(scenario_id, session_id, message, mock):
    from ..providers import registry

    if mock:
        from mocks.providers import MockCompletionProvider

        providers = [MockCompletionProvider()]
    else:
        providers = registry.build_completion_chain(
            settings.providers.completion_order, settings.get_provider_config
        )

    metrics = MetricsCollector()
    engine = CompletionFallbackEngine(
        create_default_registry(), SessionStore(), providers, metrics
    )
    try:
        reply = await engine.complete(scenario_id, session_id, message)
    finally:
        await engine.aclose()
    return reply, metrics.get_summary()


async def _ask_server(server_url, scenario_id, session_id, message):
    client = ChatClient(server_url, timeout=settings.timeouts.chat_request_timeout)
    try:
        return await client.send(scenario_id, message, session_id)
    finally:
        await client.aclose()


@click.command()
@click.option(
    "--input", "-i", help="Message to send (if not provided, reads from stdin)"
)
@click.option("--scenario", "-s", help="Scenario id (defaults to calling_agent)")
@click.option("--session", help="Session id for the conversation")
@click.option(
    "--server-url",
    help="Send the message to a running server instead of answering in-process",
)
@click.option(
    "--json", "json_output", is_flag=True, help="Output response as JSON with metadata"
)
@click.option("--metrics", is_flag=True, help="Include performance metrics in output")
@click.option("--mock", is_flag=True, help="Answer with a mock provider (no API calls)")
@click.option("--debug", is_flag=True, help="Enable debug logging")
def ask(
    input: Optional[str],
    scenario: Optional[str],
    session: Optional[str],
    server_url: Optional[str],
    json_output: bool,
    metrics: bool,
    mock: bool,
    debug: bool,
):
    """
    Send one text message and print the agent's reply.

    Examples:
    \b
        voice-agent ask --input "I'd like to book an appointment"
        echo "My order never arrived" | voice-agent ask --scenario customer_support
        voice-agent ask -i "Hello" --server-url http://localhost:3001
    """
    setup_logging(debug=debug, log_level="DEBUG" if debug else "WARNING", log_format="dev")

    if input:
        user_input = input
    else:
        try:
            user_input = sys.stdin.read().strip()
        except KeyboardInterrupt:
            click.echo("\nInterrupted", err=True)
            sys.exit(1)
        if not user_input:
            click.echo("Error: No input provided", err=True)
            sys.exit(1)

    start_time = time.time()
    summary = None
    try:
        if server_url:
            reply = asyncio.run(_ask_server(server_url, scenario, session, user_input))
        else:
            reply, summary = asyncio.run(_ask_engine(scenario, session, user_input, mock))
    except InvalidRequest as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except NetworkError as e:
        logger.error("Chat request failed", error=str(e))
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    total_latency_ms = (time.time() - start_time) * 1000

    if json_output:
        output_data = reply.to_dict()
        output_data["input"] = user_input
        if metrics:
            output_data["metadata"] = {
                "total_latency_ms": round(total_latency_ms, 2),
                "response_length": len(reply.text),
            }
            if summary is not None:
                output_data["metadata"]["degraded"] = summary["degraded_replies"] > 0
        click.echo(json.dumps(output_data, indent=2))
        return

    click.echo(reply.text)
    if metrics:
        click.echo("\n--- Metrics ---", err=True)
        click.echo(f"Scenario: {reply.scenario_display_name}", err=True)
        click.echo(f"Total latency: {total_latency_ms:.2f}ms", err=True)
        click.echo(f"Response length: {len(reply.text)} chars", err=True)
        if summary is not None:
            for name, stats in summary["providers"].items():
                click.echo(f"{name}: {stats['errors']} errors", err=True)
