"""Static catalog of Key Vault policies exercised by the harness."""
