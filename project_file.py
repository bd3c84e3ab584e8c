"""
Project file persistence.

A project is a JSON wrapper around the raw document text, which stays the
single source of truth; equations are always re-derived by parsing it.

    {
      "version": "1.0.0",
      "metadata": {"name": ..., "createdAt": ..., "updatedAt": ...,
                   "generator": "mathedit", "generatorVersion": "0.1.0"},
      "globalPreamble": "...",          (optional)
      "document": "E=mc^2\\n---\\nx^2"
    }
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union
import json
import logging
import time

from svg_metadata import GENERATOR_NAME, GENERATOR_VERSION


logger = logging.getLogger(__name__)

PROJECT_VERSION = "1.0.0"


# ═══════════════════════════════════════════════════════════════════════════════
# ERRORS
# ═══════════════════════════════════════════════════════════════════════════════


class ProjectFormatError(ValueError):
    """The project file is not valid project JSON"""


class UnsupportedProjectVersionError(ProjectFormatError):
    """The project file was written by an incompatible version"""


# ═══════════════════════════════════════════════════════════════════════════════
# DATA MODELS
# ═══════════════════════════════════════════════════════════════════════════════


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class ProjectMetadata:
    created_at: str
    updated_at: str
    generator: str = GENERATOR_NAME
    generator_version: str = GENERATOR_VERSION
    name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "generator": self.generator,
            "generatorVersion": self.generator_version,
        }
        if self.name is not None:
            data["name"] = self.name
        return data


@dataclass
class ProjectData:
    version: str
    metadata: ProjectMetadata
    document: str
    global_preamble: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)  # unknown top-level keys, written back as-is

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = dict(self.extra)
        data["version"] = self.version
        data["metadata"] = self.metadata.to_dict()
        if self.global_preamble is not None:
            data["globalPreamble"] = self.global_preamble
        data["document"] = self.document
        return data


def create_project_data(
    document: str,
    global_preamble: Optional[str] = None,
    name: Optional[str] = None,
) -> ProjectData:
    """New project stamped with the current time."""
    now = _utc_now()
    return ProjectData(
        version=PROJECT_VERSION,
        metadata=ProjectMetadata(created_at=now, updated_at=now, name=name),
        document=document,
        global_preamble=global_preamble,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# LOAD
# ═══════════════════════════════════════════════════════════════════════════════


def parse_project(text: str) -> ProjectData:
    """
    Parse and validate project JSON.

    Raises:
        ProjectFormatError: Invalid JSON, not an object, or no document text
        UnsupportedProjectVersionError: Missing or unknown version
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ProjectFormatError("Invalid project file: {err}".format(err=e)) from e

    if not isinstance(data, dict):
        raise ProjectFormatError("Invalid project file: top level is not an object")

    version = data.get("version")
    if version != PROJECT_VERSION:
        raise UnsupportedProjectVersionError("Unsupported project version: {v}".format(v=version))

    document = data.get("document")
    if not isinstance(document, str):
        raise ProjectFormatError("Invalid project file: missing document text")

    meta = data.get("metadata")
    if not isinstance(meta, dict):
        meta = {}

    now = _utc_now()
    preamble = data.get("globalPreamble")
    extra = {
        key: value
        for key, value in data.items()
        if key not in ("version", "metadata", "globalPreamble", "document")
    }

    return ProjectData(
        version=version,
        metadata=ProjectMetadata(
            created_at=str(meta.get("createdAt") or now),
            updated_at=str(meta.get("updatedAt") or now),
            generator=str(meta.get("generator") or GENERATOR_NAME),
            generator_version=str(meta.get("generatorVersion") or GENERATOR_VERSION),
            name=meta.get("name"),
        ),
        document=document,
        global_preamble=preamble if isinstance(preamble, str) else None,
        extra=extra,
    )


def load_project(file_path: Union[str, Path]) -> ProjectData:
    """Read and validate a project file."""
    path = Path(file_path)
    project = parse_project(path.read_text(encoding="utf-8"))
    logger.info("Opened project %s (%s)", path.name, project.metadata.name or "untitled")
    return project


# ═══════════════════════════════════════════════════════════════════════════════
# SAVE
# ═══════════════════════════════════════════════════════════════════════════════


def dump_project(project: ProjectData) -> str:
    return json.dumps(project.to_dict(), indent=2, sort_keys=True, ensure_ascii=False) + "\n"


def save_project(project: ProjectData, file_path: Union[str, Path]) -> Path:
    """
    Write a project file, refreshing ``updatedAt``.

    Returns:
        Actual Path where the project was saved (see safe_write_text)
    """
    output_path = Path(file_path)

    project.metadata.updated_at = _utc_now()
    return safe_write_text(output_path, dump_project(project))


def safe_write_text(output_path: Path, payload: str) -> Path:
    """
    Write text, handling permission errors gracefully.

    If the target file is locked (e.g. open in another program), saves with
    a timestamp suffix instead.

    Returns:
        Actual Path where the text was saved
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)

    try:
        output_path.write_text(payload, encoding="utf-8")
        logger.info("Saved: %s", output_path)
        return output_path

    except PermissionError:
        logger.warning(
            "%s is locked (possibly open in another program). Saving with timestamp suffix.",
            output_path.name,
        )
        timestamp = int(time.time())
        new_path = output_path.with_name(f"{output_path.stem}_{timestamp}{output_path.suffix}")
        new_path.write_text(payload, encoding="utf-8")
        logger.info("Saved: %s", new_path)
        return new_path
