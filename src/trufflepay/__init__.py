"""Pay-gated digital goods with bounded agent-to-agent price negotiation."""

__version__ = "0.1.0"
