"""observability/ — structured logging setup."""
