"""Entitlements: durable record of who has paid."""
