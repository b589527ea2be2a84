"""claude-proxy command line interface."""

from claude_proxy.frontends.cli.main import cli, main

__all__ = ["cli", "main"]
