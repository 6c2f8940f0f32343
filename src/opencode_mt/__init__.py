"""opencode-mt: a streaming terminal client for opencode servers."""

__version__ = "0.1.0"
