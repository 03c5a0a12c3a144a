"""
Claw - Personal Autonomous Agent

Entry point with support for several input/output channels.

Usage:
    python main.py              # CLI + notepad poller + scheduler (default)
    python main.py cli          # Same as above
    python main.py serve        # API server only
    python main.py serve 8080   # API server on a custom port
    python main.py all          # CLI + API server + notepad poller + scheduler
    python main.py all 8080

Configuration:
    config.yaml (or the file named by CLAW_CONFIG). See config.py for
    defaults and ${VAR:default} substitution.

Logging and output:
    CLAW_LOG_LEVEL=DEBUG|INFO|WARNING   log level for stderr logging (default INFO)
    CLAW_VERBOSE=off|light|deep         console trace of tools and turns
"""

import asyncio
import logging
import os
import sys

from utils.console import console

handler = logging.StreamHandler(sys.stderr)
handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))

logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("LiteLLM").setLevel(logging.WARNING)
logging.root.addHandler(handler)
logging.root.setLevel(os.environ.get("CLAW_LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)

BANNER = "Claw v0.1.0"
DEFAULT_PORT = 5000


def main():
    command = sys.argv[1] if len(sys.argv) > 1 else "cli"
    port = int(sys.argv[2]) if len(sys.argv) > 2 else None

    if command == "cli":
        asyncio.run(run_channels(with_server=False))
    elif command == "serve":
        run_server_only(port)
    elif command == "all":
        asyncio.run(run_channels(with_server=True, port=port))
    else:
        console.error(f"Unknown command: {command}")
        console.system("Usage: python main.py [cli|serve|all] [port]")
        sys.exit(1)


def _create_agent():
    from agent import Agent
    from config import load_config
    from llm_config import check_llm_configuration

    config = load_config()
    check_llm_configuration()
    return Agent(config=config), config


def _register_senders(agent, config):
    from config import is_channel_enabled

    if is_channel_enabled(config, "cli"):
        from senders.cli import CLISender
        agent.register_sender("cli", CLISender(prefix=agent.name))


def run_server_only(port: int | None = None):
    import uvicorn
    from config import get_channel_config
    from server import create_app

    console.banner(f"{BANNER} - API Server")
    agent, config = _create_agent()
    api_config = get_channel_config(config, "api")
    app = create_app(agent)
    uvicorn.run(app, host=api_config.get("host", "0.0.0.0"), port=port or api_config.get("port", DEFAULT_PORT))


async def run_channels(with_server: bool, port: int | None = None):
    """Run the enabled listeners (and optionally the API server) on one agent."""
    from config import get_channel_config, is_channel_enabled
    from listeners.proactive import run_proactive_listener

    console.banner(BANNER if not with_server else f"{BANNER} - Full Mode")
    agent, config = _create_agent()
    _register_senders(agent, config)

    tasks = [run_proactive_listener(agent, config)]
    active = ["notepad"]

    if with_server:
        import uvicorn
        from server import create_app

        api_config = get_channel_config(config, "api")
        app = create_app(agent, manage_lifecycle=False)
        server = uvicorn.Server(uvicorn.Config(
            app,
            host=api_config.get("host", "0.0.0.0"),
            port=port or api_config.get("port", DEFAULT_PORT),
            log_level="warning",
        ))
        tasks.append(server.serve())
        active.append(f"api (http://{server.config.host}:{server.config.port})")

    await agent.start()
    try:
        if is_channel_enabled(config, "cli"):
            from listeners.cli import run_cli_listener
            active.insert(0, "cli")
            console.system(f"Active channels: {', '.join(active)}")
            background = [asyncio.create_task(t) for t in tasks]
            try:
                await run_cli_listener(agent, config)
            finally:
                for task in background:
                    task.cancel()
                await asyncio.gather(*background, return_exceptions=True)
        else:
            console.system(f"Active channels: {', '.join(active)}")
            console.system("Press Ctrl+C to stop\n")
            await asyncio.gather(*tasks)
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    finally:
        await agent.stop()


if __name__ == "__main__":
    main()
