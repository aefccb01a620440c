"""Ministry portal back-office: content API, analytics and maintenance."""

__version__ = "2.0.0"
