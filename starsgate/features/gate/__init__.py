"""Client-facing entitlement gate."""
