"""
Database models package.
All models are exported here for easy import.
"""
from vault.models.user import User, UserSettings
from vault.models.photo import Photo
from vault.models.connected_provider import ConnectedProvider
from vault.models.sync_job import SyncJob, SyncJobStatus

__all__ = ["User", "UserSettings", "Photo", "ConnectedProvider", "SyncJob", "SyncJobStatus"]
