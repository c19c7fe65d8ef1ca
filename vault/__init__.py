"""
Vault API: photo ingestion, scoring and tiering service.
"""
