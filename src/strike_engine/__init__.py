"""Strike team game backend: session engine, mission catalogue and websocket transport."""

__version__ = "1.0.0"
