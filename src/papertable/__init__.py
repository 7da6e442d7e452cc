"""papertable: AI-generated computed columns for a papers table."""

__version__ = "0.1.0"
