"""Data models for Overleaf API responses."""

from dataclasses import dataclass, field
from typing import Any, Literal, Optional

EntityType = Literal["doc", "file", "folder"]

# Upload rejection reported when the target folder handle is wrong
FOLDER_NOT_FOUND = "folder_not_found"


@dataclass
class Project:
    """A project as listed on the dashboard."""

    id: str
    name: str
    last_updated: Optional[str] = None
    last_updated_by: Optional[Any] = None
    owner: Optional[dict[str, Any]] = None
    archived: bool = False
    trashed: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Project":
        """Create a Project from dashboard JSON (``id`` or ``_id``)."""
        return cls(
            id=data.get("id") or data.get("_id") or "",
            name=data.get("name", ""),
            last_updated=data.get("lastUpdated"),
            last_updated_by=data.get("lastUpdatedBy"),
            owner=data.get("owner"),
            archived=bool(data.get("archived", False)),
            trashed=bool(data.get("trashed", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "lastUpdated": self.last_updated,
            "lastUpdatedBy": self.last_updated_by,
            "owner": self.owner,
            "archived": self.archived,
            "trashed": self.trashed,
        }


@dataclass
class DocEntry:
    """An editable text document in the project tree."""

    id: str
    name: str


@dataclass
class FileRef:
    """A binary file in the project tree."""

    id: str
    name: str


@dataclass
class FolderEntry:
    """A folder in the project tree."""

    id: str
    name: str
    folders: list["FolderEntry"] = field(default_factory=list)
    docs: list[DocEntry] = field(default_factory=list)
    file_refs: list[FileRef] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FolderEntry":
        """Create a FolderEntry (recursively) from project metadata JSON."""
        return cls(
            id=data.get("_id", ""),
            name=data.get("name", ""),
            folders=[cls.from_dict(f) for f in data.get("folders") or []],
            docs=[
                DocEntry(id=d.get("_id", ""), name=d.get("name", ""))
                for d in data.get("docs") or []
            ],
            file_refs=[
                FileRef(id=f.get("_id", ""), name=f.get("name", ""))
                for f in data.get("fileRefs") or []
            ],
        )


@dataclass
class ProjectInfo:
    """Detailed project metadata embedded in the editor page."""

    id: str
    name: str
    root_doc_id: Optional[str] = None
    root_folder: list[FolderEntry] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProjectInfo":
        """Create ProjectInfo from the ``ol-project`` JSON payload."""
        return cls(
            id=data.get("_id") or data.get("id") or "",
            name=data.get("name", ""),
            root_doc_id=data.get("rootDoc_id"),
            root_folder=[
                FolderEntry.from_dict(f) for f in data.get("rootFolder") or []
            ],
        )

    @property
    def root_folder_id(self) -> Optional[str]:
        """Identifier of the first-level folder, if the payload has one."""
        if self.root_folder and self.root_folder[0].id:
            return self.root_folder[0].id
        return None


@dataclass
class Entity:
    """A remote file listed with its path."""

    path: str
    type: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Entity":
        return cls(path=data.get("path", ""), type=data.get("type", "file"))


@dataclass
class EntityRef:
    """An entity located in the project tree."""

    id: str
    type: EntityType
    name: str


@dataclass
class UploadResult:
    """Outcome of a single upload attempt.

    Remote rejections are reported through ``ok``/``reason`` instead of
    exceptions so callers can react to ``folder_not_found``.
    """

    ok: bool
    entity_id: Optional[str] = None
    entity_type: Optional[str] = None
    reason: Optional[str] = None

    @property
    def folder_not_found(self) -> bool:
        return not self.ok and self.reason == FOLDER_NOT_FOUND


@dataclass
class OutputFile:
    """A compile output file (pdf, log, bbl, ...)."""

    path: str
    type: str
    url: str


@dataclass
class CompileResult:
    """Result of a compile request."""

    status: str
    output_files: list[OutputFile] = field(default_factory=list)

    @property
    def pdf_url(self) -> Optional[str]:
        for output_file in self.output_files:
            if output_file.type == "pdf":
                return output_file.url
        return None
