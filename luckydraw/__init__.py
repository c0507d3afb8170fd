"""Prize-lottery allocation engine: draw tickets, weighted prize codes, admin tools."""

__version__ = "0.1.0"
