"""Typed request models validated at the store boundary."""

from typing import Any, Optional, Type, TypeVar

import pydantic
from pydantic import BaseModel, Field, field_validator

from .errors import ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


class TrackCreate(BaseModel):
    file_path: str = Field(min_length=1)
    title: str = Field(min_length=1)
    artist: Optional[str] = None
    album: Optional[str] = None
    album_artist: Optional[str] = None
    track_number: Optional[int] = Field(default=None, ge=1)
    disc_number: Optional[int] = Field(default=None, ge=1)
    release_year: Optional[int] = None
    duration_seconds: Optional[int] = Field(default=None, ge=0)
    bitrate: Optional[int] = None
    sample_rate: Optional[int] = None
    codec: Optional[str] = None
    file_size_bytes: Optional[int] = Field(default=None, ge=0)
    date_added: int
    date_modified: Optional[int] = None
    is_compilation: bool = False
    artwork_path: Optional[str] = None

    model_config = {"extra": "ignore"}


class TrackUpdate(BaseModel):
    """Partial update for a track.

    Only the fields declared here are mutable; `track_id` and `file_path`
    are not among them. Unknown keys are dropped, and only keys the caller
    actually set are written.
    """

    title: Optional[str] = Field(default=None, min_length=1)
    artist: Optional[str] = None
    album: Optional[str] = None
    album_artist: Optional[str] = None
    track_number: Optional[int] = Field(default=None, ge=1)
    disc_number: Optional[int] = Field(default=None, ge=1)
    release_year: Optional[int] = None
    is_compilation: Optional[bool] = None
    artwork_path: Optional[str] = None

    model_config = {"extra": "ignore"}

    @field_validator("title")
    @classmethod
    def title_not_cleared(cls, value: Optional[str]) -> str:
        if value is None:
            raise ValueError("title cannot be cleared")
        return value


class PlaylistCreate(BaseModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    artwork_path: Optional[str] = None

    model_config = {"extra": "ignore"}


class PlaylistUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    artwork_path: Optional[str] = None

    model_config = {"extra": "ignore"}

    @field_validator("name")
    @classmethod
    def name_not_cleared(cls, value: Optional[str]) -> str:
        if value is None:
            raise ValueError("name cannot be cleared")
        return value


class AlbumData(BaseModel):
    album_title: str = Field(min_length=1)
    album_artist: Optional[str] = None
    release_year: Optional[int] = None
    artwork_path: Optional[str] = None
    is_compilation: bool = False

    model_config = {"extra": "ignore"}


def coerce(model: Type[ModelT], data: Any) -> ModelT:
    """Validate a dict (or pass through a model instance) as `model`.

    Raises:
        ValidationError: If required fields are missing or malformed
    """
    if isinstance(data, model):
        return data
    if isinstance(data, BaseModel):
        data = data.model_dump(exclude_unset=True)
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid {model.__name__}: {e}") from e


def set_fields(update: BaseModel) -> dict[str, Any]:
    """Fields the caller explicitly provided on a partial update."""
    return update.model_dump(exclude_unset=True)
