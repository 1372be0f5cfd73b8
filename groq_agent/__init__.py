"""groq-agent: terminal coding assistant backed by Groq chat completions."""

__version__ = "0.3.0"
