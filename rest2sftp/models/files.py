# rest2sftp/models/files.py - Pydantic models for the gateway's wire formats

import stat
from datetime import datetime, timezone
from typing import List

from pydantic import BaseModel, ConfigDict, Field

LAST_MODIFIED_FORMAT = "%Y-%m-%d %H:%M:%S"


class RemoteEntry(BaseModel):
    """One entry (file or directory) of a remote directory listing."""
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., alias="Name", description="Name of the file or directory.")
    size: int = Field(..., alias="Size", ge=0, description="Size in bytes.")
    last_modified: str = Field(..., alias="lastModified", description="Modification time, 'YYYY-MM-DD HH:MM:SS'.")
    is_directory: bool = Field(..., alias="isDirectory")

    @classmethod
    def from_attributes(cls, attrs) -> "RemoteEntry":
        """Builds an entry from a paramiko SFTPAttributes object; lastModified is rendered in UTC."""
        mtime = attrs.st_mtime or 0
        return cls(
            name=attrs.filename,
            size=attrs.st_size or 0,
            last_modified=datetime.fromtimestamp(mtime, tz=timezone.utc).strftime(LAST_MODIFIED_FORMAT),
            is_directory=stat.S_ISDIR(attrs.st_mode or 0),
        )


class DirectoryListing(BaseModel):
    """Response model for listing a remote directory."""
    files: List[RemoteEntry] = Field(default_factory=list, description="Entries in remote order.")


class ErrorEnvelope(BaseModel):
    """Error body returned for failed operations."""
    model_config = ConfigDict(populate_by_name=True)

    status_code: int = Field(..., alias="statusCode")
    message: str
    kind: str | None = None
