"""
Pooled Storage Manager

Pools cloud-storage accounts (rclone remotes) into unified volumes built on
rclone's union backend and mounts them locally.
Responsibilities:
- Account registration, connectivity gating and quota tracking
- Storage pool CRUD and membership ordering
- Union composition (optionally chunked) and FUSE mounting
- Pool lifecycle state machine (stopped/starting/running/error)
- Per-account, per-pool and global usage statistics
"""

__version__ = "1.0.0"
