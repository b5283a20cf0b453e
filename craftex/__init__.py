"""CraftEx - position and settlement core for a server-economy trading desk."""

__version__ = "0.1.0"
