"""Uploaded test plan storage."""

from jmeter_runner.storage.file_store import DirectoryFileStore, FileStore

__all__ = ["DirectoryFileStore", "FileStore"]
