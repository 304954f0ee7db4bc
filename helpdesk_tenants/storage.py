"""
JSON document storage for the helpdesk tenant pipeline.

Every stage reads its inputs at start and writes its outputs at the end
through ``JsonStore``:
- Raw ticket snapshot and requester cache
- Simplified tickets, company table and unified groups
- One document per tenant partition
"""

import json
import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from pydantic import ValidationError

from .config import StorageConfig
from .models import (
    CompanyRecord,
    RequesterRecord,
    SimplifiedTicket,
    UnifiedGroup,
    UpdateHistoryEntry,
)
from .text import sanitize_filename


logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Base exception for storage errors."""
    pass


class MissingInputError(StorageError):
    """A required input document does not exist."""
    pass


class InvalidInputError(StorageError):
    """A required input document is unreadable or has the wrong shape."""
    pass


class LockBusyError(StorageError):
    """Another sync run holds the lock."""
    pass


def read_json(path: Path) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def write_json(path: Path, data: Any) -> Path:
    """
    Write a JSON document atomically.

    The content goes to a temporary file in the target directory which
    then replaces the destination, so readers never see a partial file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        dir=path.parent, prefix=f".{path.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False, default=str)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise
    return path


class JsonStore:
    """
    File-backed store for pipeline documents.

    Required documents raise ``MissingInputError``/``InvalidInputError``;
    optional ones fall back to an empty default with a warning.
    """

    def __init__(self, config: StorageConfig):
        """
        Initialize the store.

        Args:
            config: Storage configuration with document locations.
        """
        self._config = config

    @property
    def config(self) -> StorageConfig:
        return self._config

    # ------------------------------------------------------------------
    # Generic readers
    # ------------------------------------------------------------------

    def _load_required_list(self, path: Path, label: str) -> list:
        if not path.exists():
            raise MissingInputError(f"{label} not found: {path}")
        try:
            data = read_json(path)
        except (OSError, ValueError) as e:
            raise InvalidInputError(f"Could not read {label} at {path}: {e}") from e
        if not isinstance(data, list):
            raise InvalidInputError(
                f"Invalid {label} at {path}: expected a list, got {type(data).__name__}"
            )
        return data

    def _load_optional(self, path: Path, label: str, expected: type) -> Any:
        if not path.exists():
            logger.debug(f"No {label} at {path}, starting empty")
            return expected()
        try:
            data = read_json(path)
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable {label} at {path}: {e}")
            return expected()
        if not isinstance(data, expected):
            logger.warning(
                f"Ignoring {label} at {path}: expected {expected.__name__}, "
                f"got {type(data).__name__}"
            )
            return expected()
        return data

    # ------------------------------------------------------------------
    # Raw snapshot
    # ------------------------------------------------------------------

    def load_raw_tickets(self) -> list[dict]:
        """Load the vendor ticket snapshot. Missing or non-list input is fatal."""
        return self._load_required_list(self._config.raw_tickets_path, "raw ticket snapshot")

    def load_raw_tickets_or_empty(self) -> list[dict]:
        """Load the snapshot for merging; a missing or corrupt one starts over."""
        return self._load_optional(self._config.raw_tickets_path, "raw ticket snapshot", list)

    def save_raw_tickets(self, tickets: list[dict]) -> Path:
        return write_json(self._config.raw_tickets_path, tickets)

    # ------------------------------------------------------------------
    # Requester cache
    # ------------------------------------------------------------------

    def load_requesters(self) -> dict[str, RequesterRecord]:
        data = self._load_optional(self._config.requesters_path, "requester cache", dict)
        cache = {}
        for requester_id, entry in data.items():
            if not isinstance(entry, dict):
                logger.warning(f"Skipping malformed requester cache entry {requester_id}")
                continue
            cache[str(requester_id)] = RequesterRecord(
                name=entry.get("name"),
                email=entry.get("email"),
            )
        return cache

    def save_requesters(self, cache: dict[str, RequesterRecord]) -> Path:
        data = {rid: record.model_dump() for rid, record in cache.items()}
        return write_json(self._config.requesters_path, data)

    # ------------------------------------------------------------------
    # Processed documents
    # ------------------------------------------------------------------

    def load_tickets(self) -> list[SimplifiedTicket]:
        """Load simplified tickets. Missing or malformed input is fatal."""
        data = self._load_required_list(self._config.tickets_path, "simplified tickets")
        try:
            return [SimplifiedTicket.model_validate(t) for t in data]
        except ValidationError as e:
            raise InvalidInputError(f"Invalid simplified tickets: {e}") from e

    def save_tickets(self, tickets: list[SimplifiedTicket]) -> Path:
        return write_json(
            self._config.tickets_path,
            [t.model_dump(mode="json") for t in tickets],
        )

    def load_companies(self, required: bool = True) -> list[CompanyRecord]:
        """
        Load the company table.

        Args:
            required: Raise when missing (unify) instead of returning an
                empty table (normalize merge, partition lookups).
        """
        path = self._config.companies_path
        if required:
            data = self._load_required_list(path, "company table")
        else:
            data = self._load_optional(path, "company table", list)

        companies = []
        for entry in data:
            try:
                companies.append(CompanyRecord.model_validate(entry))
            except ValidationError as e:
                if required:
                    raise InvalidInputError(f"Invalid company table entry: {e}") from e
                logger.warning(f"Skipping malformed company entry: {entry!r}")
        return companies

    def save_companies(self, companies: list[CompanyRecord]) -> Path:
        return write_json(
            self._config.companies_path,
            [c.model_dump() for c in companies],
        )

    def load_groups(self) -> dict[str, UnifiedGroup]:
        """Load unified groups; a missing or corrupt document yields no groups."""
        data = self._load_optional(self._config.groups_path, "unified groups", dict)
        groups = {}
        for name, entry in data.items():
            try:
                groups[name] = UnifiedGroup.model_validate(entry)
            except ValidationError:
                logger.warning(f"Skipping malformed unified group '{name}'")
        return groups

    def save_groups(self, groups: dict[str, UnifiedGroup]) -> Path:
        data = {name: group.model_dump() for name, group in groups.items()}
        return write_json(self._config.groups_path, data)

    # ------------------------------------------------------------------
    # Tenant partitions
    # ------------------------------------------------------------------

    def write_partitions(self, partitions: dict[str, list[SimplifiedTicket]]) -> list[Path]:
        """Write one document per tenant, replacing any previous content."""
        paths = []
        for file_key, tickets in partitions.items():
            path = self._config.tenants_dir / f"{file_key}.json"
            write_json(path, [t.model_dump(mode="json") for t in tickets])
            paths.append(path)
        return paths

    def list_tenants(self) -> list[str]:
        tenants_dir = self._config.tenants_dir
        if not tenants_dir.exists():
            return []
        return sorted(p.stem for p in tenants_dir.glob("*.json"))

    def load_tenant(self, file_key: str) -> list[SimplifiedTicket]:
        """
        Load one tenant document.

        Raises:
            InvalidInputError: If the key is not a sanitized file key.
            MissingInputError: If the tenant does not exist.
        """
        if file_key != sanitize_filename(file_key):
            raise InvalidInputError(f"Invalid tenant key: {file_key!r}")
        path = self._config.tenants_dir / f"{file_key}.json"
        data = self._load_required_list(path, f"tenant '{file_key}'")
        try:
            return [SimplifiedTicket.model_validate(t) for t in data]
        except ValidationError as e:
            raise InvalidInputError(f"Invalid tenant '{file_key}': {e}") from e

    # ------------------------------------------------------------------
    # Sync bookkeeping
    # ------------------------------------------------------------------

    def load_history(self) -> dict[str, UpdateHistoryEntry]:
        data = self._load_optional(self._config.history_path, "update history", dict)
        history = {}
        for label, entry in data.items():
            try:
                history[label] = UpdateHistoryEntry.model_validate(entry)
            except ValidationError:
                logger.warning(f"Skipping malformed history entry '{label}'")
        return history

    def save_history(self, history: dict[str, UpdateHistoryEntry]) -> Path:
        data = {label: entry.model_dump() for label, entry in history.items()}
        return write_json(self._config.history_path, data)

    def save_analysis(self, name: str, report: Any) -> Path:
        return write_json(
            self._config.analysis_dir / f"{name}.json",
            report.model_dump(mode="json"),
        )

    @contextmanager
    def lock(self) -> Iterator[Path]:
        """
        Hold the sync lock for the duration of the block.

        Raises:
            LockBusyError: If the lock file already exists.
        """
        path = self._config.lock_path
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError as e:
            raise LockBusyError(
                f"Another update is already running (lock file {path})"
            ) from e
        with os.fdopen(fd, "w") as f:
            f.write(str(os.getpid()))
        try:
            yield path
        finally:
            if path.exists():
                path.unlink()
