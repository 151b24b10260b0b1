"""cellbridge - renders kernel messages as notebook cell outputs."""

__version__ = "0.1.0"
