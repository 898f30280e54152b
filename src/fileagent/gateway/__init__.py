"""FileAgent gateway: sandboxed MCP file tools over HTTP/SSE."""


def main() -> None:
    """CLI entry point for ``fileagent-gateway``."""
    from fileagent.gateway.control import run_gateway

    run_gateway()
