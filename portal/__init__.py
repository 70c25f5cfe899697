"""Reading portal: catalog cache, reading state and audio resolution."""

__version__ = "0.1.0"
