"""Telegram Stars invoices and payment webhooks."""
