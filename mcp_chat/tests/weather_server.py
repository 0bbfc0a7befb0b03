"""测试用的最小天气 MCP 服务器，通过 stdio 运行。"""

import os

from mcp.server.fastmcp import FastMCP

server = FastMCP("weather-test")


@server.tool()
def get_forecast(latitude: float, longitude: float) -> str:
    """Get weather forecast for a location."""
    return f"Sunny, 22C at {latitude:.1f},{longitude:.1f}"


@server.tool()
def fail(reason: str = "station offline") -> str:
    """Always fails."""
    raise RuntimeError(reason)


@server.tool()
def crash() -> str:
    """Terminates the server process in the middle of the call."""
    os._exit(3)


if __name__ == "__main__":
    server.run()
