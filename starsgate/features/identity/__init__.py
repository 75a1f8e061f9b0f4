"""Telegram Mini App identity verification."""
