"""
Storage module for generated documents on S3-compatible object storage.
"""
from docmeter.storage.artifact_store import ArtifactStore

__all__ = ["ArtifactStore"]
