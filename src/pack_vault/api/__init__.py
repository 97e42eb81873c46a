"""HTTP API for pack_vault."""
