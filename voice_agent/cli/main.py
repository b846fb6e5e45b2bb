"""CLI entry point for the voice agent."""

import asyncio
import click
import json
import sys
from pathlib import Path
import structlog
from typing import Optional

from .ask import ask
from ..config.settings import settings
from ..core.chat_client import ChatClient
from ..core.scenarios import create_default_registry
from ..core.voice_session import SessionPhase, VoiceSessionController, VoiceSessionSnapshot
from ..providers import registry
from ..providers.stt.base import CaptureError
from ..utils.logging import setup_logging


logger = structlog.get_logger()


PHASE_LABELS = {
    SessionPhase.IDLE: "⏹️  Disconnected",
    SessionPhase.LISTENING: "🎙️  Listening...",
    SessionPhase.PROCESSING: "🤔 Thinking...",
    SessionPhase.SPEAKING: "🔊 Speaking...",
    SessionPhase.ERROR: "❌ Error",
}


def _setup_logging(debug: bool) -> None:
    setup_logging(
        debug=debug,
        log_file=settings.logging.file_enabled,
        log_level=settings.logging.level,
        log_format=settings.logging.format,
        file_rotation_mb=settings.logging.file_rotation_mb,
        file_backup_count=settings.logging.file_backup_count,
    )


def _load_config(config: Optional[str]) -> None:
    if config:
        settings.config_file = Path(config)
        settings.load_from_file()


def validate_provider(ctx, param, value):
    """Validate provider selection."""
    if param.name == "capture_provider":
        valid_providers = registry.list_capture_providers()
        provider_type = "capture"
    elif param.name == "synthesis_provider":
        valid_providers = registry.list_synthesis_providers()
        provider_type = "synthesis"
    else:
        return value

    if value not in valid_providers:
        raise click.BadParameter(
            f"Invalid {provider_type} provider '{value}'. "
            f"Available options: {', '.join(valid_providers)}"
        )
    return value


@click.command()
@click.option("--host", help="Interface to bind (default from HOST)")
@click.option("--port", type=int, help="Port to listen on (default from PORT)")
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option(
    "--config", type=click.Path(exists=True), help="Path to configuration file"
)
def serve(host: Optional[str], port: Optional[int], debug: bool, config: Optional[str]):
    """Run the completion server."""
    import uvicorn
    from ..server.app import build_app

    _load_config(config)
    _setup_logging(debug)

    issues = settings.validate()
    if issues:
        for issue in issues:
            click.echo(click.style(f"❌ {issue}", fg="red"), err=True)
        sys.exit(1)

    host = host or settings.server.host
    port = port or settings.server.port

    app = build_app(settings)
    click.echo(click.style("🚀 Voice agent server starting...", fg="green", bold=True))
    click.echo(f"Listening on http://{host}:{port}")
    uvicorn.run(app, host=host, port=port, log_config=None)


async def run_talk(
    controller: VoiceSessionController,
    scenario_id: Optional[str],
    echo_transcripts: bool = True,
    poll_interval: float = 0.1,
) -> VoiceSessionSnapshot:
    """
    Run one voice session until it disconnects or its input ends.

    Returns the session state taken before teardown, so a failure is still
    visible after the controller has gone back to idle.
    """
    last = {"phase": None, "error": None}

    def show(snapshot):
        if snapshot.phase is not last["phase"]:
            last["phase"] = snapshot.phase
            if echo_transcripts and snapshot.phase is SessionPhase.PROCESSING:
                click.echo(f"You: {snapshot.user_transcript}")
            if echo_transcripts and snapshot.phase is SessionPhase.SPEAKING:
                click.echo(f"Agent: {snapshot.agent_transcript}")
            click.echo(click.style(PHASE_LABELS[snapshot.phase], dim=True), err=True)
        if snapshot.error and snapshot.error != last["error"]:
            click.echo(click.style(f"⚠️  {snapshot.error}", fg="yellow"), err=True)
        last["error"] = snapshot.error

    unsubscribe = controller.subscribe(show)
    try:
        async with controller:
            await controller.start(scenario_id)
            while controller.connected and not getattr(controller.capture, "end_of_input", False):
                await asyncio.sleep(poll_interval)
            # Let the last reply finish before leaving
            while controller.chat_in_flight or controller.phase is SessionPhase.SPEAKING:
                await asyncio.sleep(poll_interval)
            final = controller.snapshot()
    finally:
        unsubscribe()
        await controller.chat.aclose()
    return final


@click.command()
@click.option("--scenario", "-s", help="Scenario id (defaults to calling_agent)")
@click.option("--server-url", help="Completion server URL (default from VOICE_AGENT_SERVER_URL)")
@click.option(
    "--capture",
    "capture_provider",
    callback=validate_provider,
    default="whisperkit",
    help="Speech capture provider to use",
)
@click.option(
    "--synthesis",
    "synthesis_provider",
    callback=validate_provider,
    default="elevenlabs",
    help="Speech synthesis provider to use",
)
@click.option("--mock", is_flag=True, help="Type instead of speaking and print replies")
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option(
    "--config", type=click.Path(exists=True), help="Path to configuration file"
)
def talk(
    scenario: Optional[str],
    server_url: Optional[str],
    capture_provider: str,
    synthesis_provider: str,
    mock: bool,
    debug: bool,
    config: Optional[str],
):
    """
    Hold a spoken conversation with a scenario persona.

    Requires a running completion server (see `voice-agent serve`).
    """
    _load_config(config)
    _setup_logging(debug)

    if mock:
        from mocks.providers import ConsoleSynthesis, KeyboardCapture

        capture = KeyboardCapture()
        synthesis = ConsoleSynthesis()
    else:
        capture = registry.get_capture_provider(capture_provider)
        synthesis = registry.get_synthesis_provider(synthesis_provider)

    chat = ChatClient(
        server_url or settings.client.server_url,
        timeout=settings.timeouts.chat_request_timeout,
    )
    controller = VoiceSessionController(
        capture,
        synthesis,
        chat,
        welcome_message=settings.client.welcome_message,
        rearm_delay=settings.client.rearm_delay_ms / 1000.0,
        debug_log_size=settings.client.debug_log_size,
    )

    click.echo(click.style("🎙️  Voice session starting...", fg="green", bold=True))
    click.echo(f"Scenario: {create_default_registry().get(scenario).display_name}")
    click.echo(f"Server: {chat.server_url}")
    if mock:
        click.echo(
            click.style("⚠️  Running in MOCK mode - type your messages", fg="yellow")
        )
    click.echo("\nPress Ctrl+C to stop the conversation.\n")

    final = None
    try:
        final = asyncio.run(run_talk(controller, scenario, echo_transcripts=not mock))
    except KeyboardInterrupt:
        click.echo("\n\nShutting down...")
    except CaptureError as e:
        logger.error("Voice session failed", error=str(e), code=e.code)
        click.echo(click.style(f"\n❌ Error: {controller.error or e}", fg="red"))
        sys.exit(1)

    if final is not None and final.phase is SessionPhase.ERROR:
        click.echo(click.style(f"\n❌ Error: {final.error}", fg="red"))
        sys.exit(1)

    click.echo("\n👋 Goodbye!")


@click.command()
@click.option(
    "--format",
    type=click.Choice(["text", "json"]),
    default="text",
    help="Output format",
)
def scenarios(format: str):
    """List available scenarios."""
    items = create_default_registry().list()

    if format == "json":
        click.echo(json.dumps(items, indent=2))
        return

    click.echo("🎭 Available Scenarios")
    click.echo("-" * 50)
    for item in items:
        click.echo(f"  {item['id']:<22} {item['name']}")


@click.command()
def providers():
    """List available providers."""
    click.echo("🔌 Available Providers")
    click.echo("-" * 50)

    configured = settings.to_dict()["credentials"]

    # Completion providers
    completion_providers = registry.list_completion_providers()
    click.echo(f"\n🤖 Completion Providers ({len(completion_providers)})")
    for provider in completion_providers:
        status = "configured" if configured.get(provider) else "no API key"
        click.echo(f"  - {provider} ({status})")
    click.echo(f"  Order: {' -> '.join(settings.providers.completion_order)}")

    # Capture providers
    capture_providers = registry.list_capture_providers()
    click.echo(f"\n🎙️  Capture Providers ({len(capture_providers)})")
    for provider in capture_providers:
        click.echo(f"  - {provider}")

    # Synthesis providers
    synthesis_providers = registry.list_synthesis_providers()
    click.echo(f"\n🔊 Synthesis Providers ({len(synthesis_providers)})")
    for provider in synthesis_providers:
        click.echo(f"  - {provider}")

    click.echo("\nUse --capture/--synthesis to select a specific provider.")
    click.echo("Example: voice-agent talk --capture whisperkit")


@click.command(name="config")
def show_config():
    """Show effective configuration and any problems with it."""
    click.echo(json.dumps(settings.to_dict(), indent=2))

    issues = settings.validate()
    for issue in issues:
        click.echo(click.style(f"❌ {issue}", fg="red"), err=True)
    if issues:
        sys.exit(1)


# Create CLI group
cli = click.Group()
cli.add_command(serve)
cli.add_command(talk)
cli.add_command(ask)
cli.add_command(scenarios)
cli.add_command(providers)
cli.add_command(show_config)


if __name__ == "__main__":
    cli()
