"""Accounts, credentials, and stateless sessions across identity providers."""
