"""Command-line interface for Final Tabs."""
