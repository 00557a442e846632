"""Forward queued payments to a default or fallback processor behind circuit breakers and summarise them by gateway."""

__version__ = "0.1.0"