"""
Adapter layer for the Files Agent.

Contains the storage backend abstraction (local disk, S3, IPFS) and the
per-domain registry that hands a backend to the files service.
"""
