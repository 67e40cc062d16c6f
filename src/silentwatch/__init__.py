"""SilentWatch: observation and verdict engine for silent UI failures."""

__version__ = "0.4.0"
