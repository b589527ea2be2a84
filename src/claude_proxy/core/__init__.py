"""Process-level utilities shared by the gateway and the CLI."""
