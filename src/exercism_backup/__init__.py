"""Back up Exercism solutions to a local directory."""

__version__ = "0.3.0"
