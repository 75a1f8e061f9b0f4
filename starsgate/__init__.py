"""starsgate: Telegram Stars paywall for the handmade description generator."""

__version__ = "0.1.0"
