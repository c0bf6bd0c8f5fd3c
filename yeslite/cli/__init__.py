"""Command-line tools for yeslite."""
