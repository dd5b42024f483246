"""Unpack export archives and locate the documents inside them."""

from __future__ import annotations

import logging
import shutil
import zipfile
from pathlib import Path
from typing import Any

import yaml

from apiconform.constants import DOCS_MANIFEST_NAME, DocumentRole
from apiconform.resilience.errors import ArchiveError, NoDocumentsError
from apiconform.schemas import CatalogEntry, DocumentRef

logger = logging.getLogger(__name__)


class ArchiveExtractor:
    """Extracts one archive per entry into ``<extract_dir>/<workspace>/``.

    ``document_paths`` maps a role to a glob relative to the archive
    root. The ``docs`` role names a directory instead of a file: its
    sub-directories are counted into a derived manifest document that
    is validated like any extracted one.
    """

    def __init__(
        self, extract_dir: Path, document_paths: dict[str, str]
    ) -> None:
        self._extract_dir = extract_dir
        self._document_paths = {
            DocumentRole(role): pattern
            for role, pattern in document_paths.items()
        }

    def target_dir(self, entry: CatalogEntry) -> Path:
        return self._extract_dir / entry.workspace_name

    def extract(
        self, archive_path: Path, entry: CatalogEntry
    ) -> list[DocumentRef]:
        """Unpack ``archive_path`` and resolve every configured role.

        Raises ``ArchiveError`` for corrupt or unsafe archives and
        ``NoDocumentsError`` when no configured document is present.
        """
        target = self.target_dir(entry)
        if target.exists():
            shutil.rmtree(target)
        target.mkdir(parents=True)

        _safe_extract(archive_path, target)
        root = _archive_root(target)

        documents: list[DocumentRef] = []
        for role, pattern in self._document_paths.items():
            if role == DocumentRole.DOCS:
                continue
            path = _first_match(root, pattern)
            if path is None:
                logger.debug(
                    "event=role_absent api_id=%s role=%s pattern=%s",
                    entry.id,
                    role,
                    pattern,
                )
                continue
            documents.append(DocumentRef(role=role, path=path))

        # A docs-only configuration always has its manifest to validate;
        # otherwise the docs directory counts only when it exists
        docs_pattern = self._document_paths.get(DocumentRole.DOCS)
        file_roles = [r for r in self._document_paths if r != DocumentRole.DOCS]
        has_docs = docs_pattern is not None and (
            not file_roles or (root / docs_pattern).is_dir()
        )
        if not documents and not has_docs:
            msg = (
                f"archive for {entry.label} contains none of: "
                f"{', '.join(self._document_paths.values())}"
            )
            raise NoDocumentsError(msg)

        if docs_pattern is not None:
            manifest = write_docs_manifest(root / docs_pattern, target)
            documents.append(
                DocumentRef(role=DocumentRole.DOCS, path=manifest, derived=True)
            )

        return documents

    def cleanup(self, entry: CatalogEntry) -> None:
        shutil.rmtree(self.target_dir(entry), ignore_errors=True)


def _safe_extract(archive_path: Path, target: Path) -> None:
    """Extract every member, refusing paths that escape ``target``."""
    resolved_target = target.resolve()
    try:
        with zipfile.ZipFile(archive_path) as zf:
            for member in zf.infolist():
                dest = (resolved_target / member.filename).resolve()
                if not dest.is_relative_to(resolved_target):
                    msg = f"unsafe member path in archive: {member.filename!r}"
                    raise ArchiveError(msg)
            zf.extractall(resolved_target)
    except zipfile.BadZipFile as exc:
        msg = f"not a valid zip archive: {archive_path.name}: {exc}"
        raise ArchiveError(msg) from exc
    except OSError as exc:
        msg = f"failed to extract {archive_path.name}: {exc}"
        raise ArchiveError(msg) from exc


def _archive_root(target: Path) -> Path:
    """Exports wrap their content in one ``<name>-<version>`` folder."""
    children = list(target.iterdir())
    if len(children) == 1 and children[0].is_dir():
        return children[0]
    return target


def _first_match(root: Path, pattern: str) -> Path | None:
    matches = sorted(p for p in root.glob(pattern) if p.is_file())
    return matches[0].resolve() if matches else None


def write_docs_manifest(docs_dir: Path, target: Path) -> Path:
    """Summarize a ``Docs/`` directory into a YAML manifest.

    Each sub-directory is one document; a missing directory yields
    ``documentCount: 0`` so rulesets can require documentation.
    """
    documents: list[dict[str, Any]] = []
    if docs_dir.is_dir():
        for child in sorted(docs_dir.iterdir()):
            if not child.is_dir():
                continue
            files = sorted(
                f.relative_to(child).as_posix()
                for f in child.rglob("*")
                if f.is_file()
            )
            documents.append({"name": child.name, "files": files})

    manifest: dict[str, Any] = {
        "documentCount": len(documents),
        "documents": documents,
    }
    path = target / DOCS_MANIFEST_NAME
    path.write_text(
        yaml.safe_dump(manifest, sort_keys=False), encoding="utf-8"
    )
    return path.resolve()
