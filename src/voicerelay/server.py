"""Voice relay server.

Main server implementation that:
1. Validates configuration and credentials
2. Starts the client WebSocket transport
3. Provides an HTTP health check endpoint
4. Accepts client connections and runs one relay session per connection
"""

import argparse
import asyncio
import logging
from pathlib import Path

from aiohttp.web import AppRunner, TCPSite

from voicerelay.asr.base import AsrClient
from voicerelay.asr.deepgram import DeepgramClient
from voicerelay.completion import CompletionClient
from voicerelay.config import RelayConfig
from voicerelay.errors import ConfigurationError
from voicerelay.health import create_health_app
from voicerelay.registry import SessionRegistry
from voicerelay.session import Completer, RelaySession, Synthesizer
from voicerelay.synthesis import SynthesisClient
from voicerelay.transport.base import TransportSession
from voicerelay.transport.websocket_transport import WebSocketTransport

logger = logging.getLogger(__name__)


async def handle_session(
    transport_session: TransportSession,
    registry: SessionRegistry,
    asr_client: AsrClient,
    completion: Completer,
    synthesis: Synthesizer,
    config: RelayConfig,
) -> None:
    """Run a single client session from connect to disconnect.

    Args:
        transport_session: Newly accepted client connection
        registry: Live session registry
        asr_client: Shared ASR client
        completion: Shared completion invoker
        synthesis: Shared synthesis invoker
        config: Relay configuration

    Notes:
        Every error is scoped to this session; nothing raised here stops
        the server loop.
    """
    session = RelaySession(transport_session, asr_client, completion, synthesis, config)
    registry.add(session)

    try:
        await session.run()
    except Exception as e:
        logger.exception(
            "Session error",
            extra={"session_id": session.session_id, "error": str(e)},
        )
        await session.close(reason="error")
    finally:
        registry.remove(session.session_id)
        logger.info(
            "Session ended",
            extra={"session_id": session.session_id, "active_sessions": len(registry)},
        )


async def start_server(config_path: Path) -> None:
    """Start the relay with configured transport and health endpoint.

    Runs the accept loop until interrupted.

    Args:
        config_path: Path to YAML config file (defaults are used if missing)

    Raises:
        ConfigurationError: If a required credential is missing
    """
    config = RelayConfig.from_yaml_with_defaults(config_path)

    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.info("Loaded configuration", extra={"config_path": str(config_path)})

    config.validate_credentials()

    asr_client = DeepgramClient(api_key=config.deepgram.api_key, url=config.deepgram.url)
    completion = CompletionClient(
        api_key=config.openai.api_key,
        model=config.openai.model,
        system_prompt=config.openai.system_prompt,
        base_url=config.openai.base_url,
        timeout_s=config.openai.timeout_s,
    )
    el = config.elevenlabs
    synthesis = SynthesisClient(
        api_key=el.api_key,
        voice_id=el.voice_id,
        model_id=el.model_id,
        output_format=el.output_format,
        voice_settings=el.voice_settings,
        base_url=el.base_url,
        timeout_s=el.timeout_s,
    )

    registry = SessionRegistry()

    transport = WebSocketTransport(
        host=config.server.host,
        port=config.server.port,
        max_message_bytes=config.server.max_message_bytes,
    )
    await transport.start()
    logger.info("WebSocket transport started", extra={"port": config.server.port})

    health_port = config.server.resolved_health_port
    runner = AppRunner(create_health_app(registry))
    await runner.setup()
    site = TCPSite(runner, config.server.host, health_port)
    await site.start()
    logger.info("Health check server started", extra={"port": health_port})

    session_tasks: set[asyncio.Task[None]] = set()
    try:
        logger.info(
            "Voice relay ready",
            extra={"port": config.server.port, "turn_ordering": config.turns.ordering},
        )

        while True:
            transport_session = await transport.accept_session()
            logger.info(
                "New session accepted",
                extra={"session_id": transport_session.session_id},
            )
            task = asyncio.create_task(
                handle_session(
                    transport_session, registry, asr_client, completion, synthesis, config
                )
            )
            session_tasks.add(task)
            task.add_done_callback(session_tasks.discard)

    except asyncio.CancelledError:
        logger.info("Server loop cancelled")
    finally:
        logger.info("Shutting down voice relay")

        await transport.stop()
        logger.info("WebSocket transport stopped")

        await registry.close_all()

        if session_tasks:
            logger.info("Waiting for sessions to complete", extra={"count": len(session_tasks)})
            try:
                await asyncio.wait_for(
                    asyncio.gather(*session_tasks, return_exceptions=True),
                    timeout=config.graceful_shutdown_timeout_s,
                )
            except TimeoutError:
                logger.warning("Timed out waiting for sessions to complete")

        await runner.cleanup()
        logger.info("Health check server stopped")

        await completion.close()
        await synthesis.close()

        logger.info("Voice relay stopped")


def main() -> None:
    """Entry point for the voice relay server."""
    parser = argparse.ArgumentParser(description="Voice relay server")
    parser.add_argument(
        "--config",
        type=Path,
        default=Path(__file__).parent.parent.parent / "configs" / "relay.yaml",
        help="Path to relay config YAML file",
    )
    args = parser.parse_args()

    try:
        asyncio.run(start_server(args.config))
    except ConfigurationError as e:
        logger.error(str(e))
        raise SystemExit(1) from e
    except KeyboardInterrupt:
        logger.info("Voice relay interrupted")


if __name__ == "__main__":
    main()
