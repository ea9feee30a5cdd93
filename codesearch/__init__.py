"""ai-code-search: ask coding agents about cached git projects."""

__version__ = "0.1.0"
