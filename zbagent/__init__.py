"""zbackup agent: host side of the zbackup snapshot protocol."""

__version__ = "1.4.0"
