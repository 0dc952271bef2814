"""ActivityPub federation service: WebFinger, actors, signed inbox and delivery."""

__version__ = "0.1.0"
