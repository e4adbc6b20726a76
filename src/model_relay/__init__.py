"""Role-based LLM provider routing with background operation tracking."""

__version__ = "0.1.0"
