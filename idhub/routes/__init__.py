"""HTTP routes for the idhub service."""
