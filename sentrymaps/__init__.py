"""sentrymaps - Sentry source maps for scripts loaded in Chrome."""

__version__ = "0.1.0"
