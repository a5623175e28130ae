"""unibuild - incremental multi-architecture native build orchestrator."""

__version__ = "0.1.0"
