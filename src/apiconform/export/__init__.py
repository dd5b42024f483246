"""Export stage: archive download, extraction and the worker pool."""

from apiconform.export.extractor import ArchiveExtractor, write_docs_manifest
from apiconform.export.pool import ExportWorkerPool, failure_from_exception

__all__ = [
    "ArchiveExtractor",
    "ExportWorkerPool",
    "failure_from_exception",
    "write_docs_manifest",
]
