"""
Files Agent: per-domain file storage with data wallet provenance.

Files are persisted to local disk, S3 or IPFS; every file gets a data wallet
recording its origin, and mutations are gated by read/edit/admin permissions.
"""
