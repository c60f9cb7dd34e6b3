"""
Read/write access to the external client's ``mcpServers`` config file.

The document is owned by another application, so every mutation re-reads
the whole file, changes only the ``mcpServers`` entry it targets and
writes the whole document back. Unknown top-level keys survive. Writes go
through a temporary file that atomically replaces the target. There is no
cross-process locking; writers inside this process are serialized.
"""

import asyncio
import json
import shutil
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import aiofiles
import aiofiles.os
from returns.result import Failure, Result, Success
from structlog import get_logger

from ..core.error_handling import ConfigIOError
from ..core.result_pattern import AppError, config_io_error, config_validation_error, with_result
from .models import ConfigFileInfo, ExternalServerConfig, ValidationReport

logger = get_logger(__name__)

CONFIG_FILENAME = "claude_desktop_config.json"
SERVERS_KEY = "mcpServers"


def default_candidate_paths() -> List[Path]:
    """Conventional locations, most specific platform first."""
    home = Path.home()
    return [
        home / "Library" / "Application Support" / "Claude" / CONFIG_FILENAME,
        home / "AppData" / "Roaming" / "Claude" / CONFIG_FILENAME,
        home / ".config" / "Claude" / CONFIG_FILENAME,
        home / ".claude" / CONFIG_FILENAME,
        home / CONFIG_FILENAME,
    ]


def validate_document(document: Any) -> List[str]:
    """Every shape violation in ``document``; empty when valid."""
    if not isinstance(document, dict):
        return ["Config must be a JSON object"]
    servers = document.get(SERVERS_KEY)
    if servers is None:
        return [f"Missing '{SERVERS_KEY}' object"]
    if not isinstance(servers, dict):
        return [f"'{SERVERS_KEY}' must be an object"]

    errors: List[str] = []
    for name, entry in servers.items():
        errors.extend(entry_errors(name, entry))
    return errors


def entry_errors(name: str, entry: Any) -> List[str]:
    """Shape violations of a single ``mcpServers`` entry."""
    if not isinstance(entry, dict):
        return [f"Server '{name}': entry must be an object"]
    errors: List[str] = []
    if not isinstance(entry.get("command"), str):
        errors.append(f"Server '{name}': command is required and must be a string")
    args = entry.get("args")
    if args is not None and (
        not isinstance(args, list) or not all(isinstance(arg, str) for arg in args)
    ):
        errors.append(f"Server '{name}': args must be an array")
    env = entry.get("env")
    if env is not None and (
        not isinstance(env, dict) or not all(isinstance(v, str) for v in env.values())
    ):
        errors.append(f"Server '{name}': env must be an object")
    return errors


def parse_entry(name: str, entry: Any) -> Optional[ExternalServerConfig]:
    """Model of one entry; None (logged) when it is malformed."""
    errors = entry_errors(name, entry)
    if errors:
        logger.warning("Skipping malformed external config entry", name=name, errors=errors)
        return None
    return ExternalServerConfig(
        name=name,
        command=entry["command"],
        args=entry.get("args") or [],
        env=entry.get("env") or {},
    )


class ExternalConfigStore:
    """Direct-mode server entries in the external client's config file."""

    def __init__(
        self,
        config_path: Optional[str] = None,
        candidate_paths: Optional[Sequence[Path]] = None,
    ):
        self._explicit_path = Path(config_path).expanduser() if config_path else None
        self._candidates = list(candidate_paths) if candidate_paths else default_candidate_paths()
        self._resolved_path: Optional[Path] = None
        self._write_lock = asyncio.Lock()

    def get_config_path(self) -> Path:
        """Resolve the config path; the first existing candidate is cached."""
        if self._explicit_path is not None:
            return self._explicit_path
        if self._resolved_path is not None:
            return self._resolved_path

        for candidate in self._candidates:
            if candidate.exists():
                self._resolved_path = candidate
                logger.debug("Found external config", path=str(candidate))
                return candidate

        # Nothing exists yet; don't cache so a later-created file is found.
        return self._candidates[0]

    async def _load(self) -> Dict[str, Any]:
        path = self.get_config_path()
        if not await aiofiles.os.path.exists(path):
            return {SERVERS_KEY: {}}

        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                raw = await f.read()
        except OSError as e:
            raise ConfigIOError(f"Failed to read config: {e}", path=str(path)) from e

        if not raw.strip():
            return {SERVERS_KEY: {}}
        try:
            document = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ConfigIOError(f"Invalid JSON: {e}", path=str(path)) from e

        if not isinstance(document, dict):
            raise ConfigIOError("Config must be a JSON object", path=str(path))
        if document.get(SERVERS_KEY) is None:
            document[SERVERS_KEY] = {}
        elif not isinstance(document[SERVERS_KEY], dict):
            # Rewriting it would drop entries the owning client wrote.
            raise ConfigIOError(f"'{SERVERS_KEY}' must be an object", path=str(path))
        return document

    async def _dump(self, document: Dict[str, Any]) -> None:
        path = self.get_config_path()
        temp_file = path.with_name(f"{path.name}.tmp")
        try:
            await aiofiles.os.makedirs(path.parent, exist_ok=True)
            async with aiofiles.open(temp_file, "w", encoding="utf-8") as f:
                await f.write(json.dumps(document, indent=2))
            await aiofiles.os.replace(temp_file, path)
        except OSError as e:
            raise ConfigIOError(f"Failed to write config: {e}", path=str(path)) from e
        logger.debug("Wrote external config", path=str(path), servers=len(document.get(SERVERS_KEY, {})))

    @with_result()
    async def read(self) -> Dict[str, Any]:
        """Full document; ``{"mcpServers": {}}`` when the file is missing."""
        return await self._load()

    @with_result()
    async def write(self, document: Dict[str, Any]) -> Result[None, AppError]:
        """Overwrite the whole document; refuses documents with shape errors."""
        errors = validate_document(document)
        if errors:
            return Failure(config_validation_error("Refusing to write an invalid config", errors))
        async with self._write_lock:
            await self._dump(document)
        return Success(None)

    @with_result()
    async def add(
        self,
        name: str,
        command: str,
        args: Optional[List[str]] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> ExternalServerConfig:
        """Insert or replace ``mcpServers[name]``."""
        entry = ExternalServerConfig(name=name, command=command, args=args or [], env=env or {})
        async with self._write_lock:
            document = await self._load()
            document[SERVERS_KEY][name] = entry.to_entry()
            await self._dump(document)
        logger.info("Added server to external config", name=name, path=str(self.get_config_path()))
        return entry

    @with_result()
    async def update(
        self,
        name: str,
        command: Optional[str] = None,
        args: Optional[List[str]] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> bool:
        """Patch fields of an existing entry; False when it does not exist."""
        async with self._write_lock:
            document = await self._load()
            entry = document[SERVERS_KEY].get(name)
            if not isinstance(entry, dict):
                return False
            if command is not None:
                entry["command"] = command
            if args is not None:
                entry["args"] = list(args)
            if env is not None:
                if env:
                    entry["env"] = dict(env)
                else:
                    entry.pop("env", None)
            await self._dump(document)
        logger.info("Updated server in external config", name=name)
        return True

    @with_result()
    async def remove(self, name: str) -> bool:
        async with self._write_lock:
            document = await self._load()
            if name not in document[SERVERS_KEY]:
                return False
            del document[SERVERS_KEY][name]
            await self._dump(document)
        logger.info("Removed server from external config", name=name)
        return True

    @with_result()
    async def get(self, name: str) -> Optional[ExternalServerConfig]:
        """The entry, or None when it is missing or malformed."""
        document = await self._load()
        if name not in document[SERVERS_KEY]:
            return None
        return parse_entry(name, document[SERVERS_KEY][name])

    @with_result()
    async def has(self, name: str) -> bool:
        document = await self._load()
        return name in document[SERVERS_KEY]

    @with_result()
    async def list(self) -> List[ExternalServerConfig]:
        """All well-formed entries; malformed ones are skipped (see ``validate``)."""
        document = await self._load()
        servers: List[ExternalServerConfig] = []
        for name, entry in document[SERVERS_KEY].items():
            parsed = parse_entry(name, entry)
            if parsed is not None:
                servers.append(parsed)
        return servers

    async def validate(self) -> Result[ValidationReport, AppError]:
        """
        Check the document shape and report all violations at once.

        Unparseable JSON is reported as a violation rather than a failure;
        only an unreadable file is a ``CONFIG_IO`` failure.
        """
        path = self.get_config_path()
        if not await aiofiles.os.path.exists(path):
            return Success(ValidationReport(valid=True))
        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                raw = await f.read()
        except OSError as e:
            return Failure(config_io_error(f"Failed to read config: {e}", path=str(path)))

        try:
            document = json.loads(raw) if raw.strip() else {SERVERS_KEY: {}}
        except json.JSONDecodeError as e:
            return Success(ValidationReport(valid=False, errors=[f"Invalid JSON: {e}"]))

        errors = validate_document(document)
        return Success(ValidationReport(valid=not errors, errors=errors))

    @with_result()
    async def backup(self) -> Path:
        """Copy the current file next to itself with a timestamp suffix."""
        path = self.get_config_path()
        if not await aiofiles.os.path.exists(path):
            raise ConfigIOError("Config file does not exist", path=str(path))
        backup_path = path.with_name(f"{path.name}.backup-{datetime.now().strftime('%Y%m%d%H%M%S%f')}")
        try:
            await asyncio.to_thread(shutil.copy2, path, backup_path)
        except OSError as e:
            raise ConfigIOError(f"Failed to back up config: {e}", path=str(path)) from e
        logger.info("Backed up external config", path=str(path), backup=str(backup_path))
        return backup_path

    async def info(self) -> ConfigFileInfo:
        path = self.get_config_path()
        try:
            stat = await aiofiles.os.stat(path)
        except FileNotFoundError:
            return ConfigFileInfo(path=str(path), exists=False)
        return ConfigFileInfo(
            path=str(path),
            exists=True,
            size=stat.st_size,
            modified=datetime.fromtimestamp(stat.st_mtime),
        )
