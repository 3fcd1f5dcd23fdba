"""Services that hold the account, credential, and identity logic."""
