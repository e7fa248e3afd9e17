"""Remote coding agent: chat conversations routed to isolated assistant sessions."""

__version__ = "0.1.0"

__all__ = ["__version__"]
