"""Configuration: runtime settings and data-entry catalog."""
