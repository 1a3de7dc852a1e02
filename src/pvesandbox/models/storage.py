"""Storage models."""

from pydantic import BaseModel


class VolumeInfo(BaseModel):
    """A storage volume as seen by the backend."""

    volume_id: str
    storage: str
    path: str = ""
