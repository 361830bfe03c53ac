"""chatrelay: multi-provider chat backend with resumable response streams."""

__version__ = "0.1.0"
