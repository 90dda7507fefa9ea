from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class PhotoIntent(BaseModel):
    """What the client says about a photo at upload time (the ``metadata`` form field)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    collection: str
    album: str
    description: str = ""
    type: str = ""
    collection_image: bool = Field(default=False, alias="collectionImage")
    album_image: bool = Field(default=False, alias="albumImage")
    is_deleted: bool = Field(default=False, alias="isDeleted")
    orientation: int = 0


class Photo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    src: str
    name: str
    width: int = 0
    height: int = 0
    album: str = ""
    collection: str = ""
    description: str = ""
    date_taken: Optional[datetime] = Field(default=None, alias="dateTaken")
    exif_data: str = Field(default="", alias="exifData")
    is_deleted: bool = Field(default=False, alias="isDeleted")
    orientation: int = 0
    album_image: bool = Field(default=False, alias="albumImage")
    collection_image: bool = Field(default=False, alias="collectionImage")
    people: List[str] = []


class EventData(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    url: str
    content_type: str = Field(default="", alias="contentType")
    content_length: int = Field(default=0, alias="contentLength")
    etag: str = Field(default="", alias="eTag")


class BlobEvent(BaseModel):
    """Event Grid ``Microsoft.Storage.BlobCreated`` payload as delivered by the queue."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = ""
    topic: str = ""
    subject: str = ""
    event_type: str = Field(default="", alias="eventType")
    event_time: str = Field(default="", alias="eventTime")
    data: EventData
