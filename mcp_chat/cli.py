"""mcp-chat 命令行入口。

用法：

    mcp-chat path/to/weather_server.py
    python -m mcp_chat path/to/weather_server.js
"""

import sys

import click

from mcp_chat.config.settings import settings
from mcp_chat.domain.exceptions import BusinessError
from mcp_chat.infrastructure.logging.logger import logger
from mcp_chat.session import ChatSession


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.argument("server_script")
def main(server_script: str) -> None:
    """Chat with a language model that can call tools of the MCP server SERVER_SCRIPT (.py or .js)."""

    if not settings.openai_api_key:
        click.echo("Error: OPENAI_API_KEY is required", err=True)
        sys.exit(1)

    with ChatSession() as session:
        click.echo(f"Starting server: {server_script}")
        try:
            tools = session.start(server_script)
        except BusinessError as e:
            logger.error("Startup failed", extra={"extra": {"code": e.code, "error": e.message}})
            click.echo(f"Error: {e.message}", err=True)
            sys.exit(1)
        except KeyboardInterrupt:
            click.echo("Exiting...")
            return
        names = ", ".join(tool.name for tool in tools) or "(none)"
        click.echo(f"Connected with {len(tools)} tool(s): {names}")
        session.run()


if __name__ == "__main__":
    main()
