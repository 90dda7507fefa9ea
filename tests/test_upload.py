"""Upload pipeline: intent decoding, probing, tags and metadata"""

import io
import json

import pytest
from fastapi import UploadFile
from PIL import Image

from photo_api.core.errors import UnsupportedImageFormat, ValidationFailure
from photo_api.schemas.photo import PhotoIntent
from photo_api.services.upload import UploadPipeline, decode_intent, read_upload


@pytest.fixture
def pipeline(store, settings):
    return UploadPipeline(store, settings)


def test_decode_intent_accepts_object_and_single_item_list():
    raw = {"collection": "Trips", "album": "Alps", "collectionImage": True}
    assert decode_intent(json.dumps(raw)).collection_image is True
    assert decode_intent(json.dumps([raw])).album == "Alps"


@pytest.mark.parametrize("raw", ["not json", "[]", "42", json.dumps({"album": "Alps"})])
def test_decode_intent_rejects_bad_metadata(raw):
    with pytest.raises(ValidationFailure):
        decode_intent(raw)


async def test_read_upload_enforces_size_limit():
    small = UploadFile(file=io.BytesIO(b"x" * 10), filename="a.jpg")
    assert await read_upload(small, 10) == b"x" * 10
    big = UploadFile(file=io.BytesIO(b"x" * 11), filename="a.jpg")
    with pytest.raises(ValidationFailure):
        await read_upload(big, 10)


async def test_read_upload_rejects_empty_file():
    with pytest.raises(ValidationFailure):
        await read_upload(UploadFile(file=io.BytesIO(b""), filename="a.jpg"), 10)


def test_build_derives_path_tags_and_metadata(pipeline, image_factory):
    data = image_factory(320, 200, orientation=6, taken="2022:05:06 07:08:09")
    intent = PhotoIntent(collection="Trips", album="Alps 2022", description="Ridge!", albumImage=True)
    path, tags, metadata, content_type = pipeline.build("Ridge Walk (2).JPG", data, intent)

    assert path == "Trips/Alps 2022/Ridge-Walk-2.jpg"
    assert content_type == "image/jpeg"
    assert tags == {
        "name": "Trips/Alps 2022/Ridge-Walk-2.jpg",
        "collection": "Trips",
        "album": "Alps 2022",
        "description": "Ridge",
        "isDeleted": "false",
        "collectionImage": "false",
        "albumImage": "true",
        "orientation": "6",
    }
    assert metadata["width"] == "320"
    assert metadata["height"] == "200"
    assert metadata["size"] == str(len(data))
    assert json.loads(metadata["exifData"])["DateTime"] == "2022:05:06 07:08:09"


def test_build_keeps_client_orientation(pipeline, image_factory):
    intent = PhotoIntent(collection="c", album="a", orientation=3)
    _, tags, _, _ = pipeline.build("x.jpg", image_factory(10, 10, orientation=6), intent)
    assert tags["orientation"] == "3"


def test_build_rejects_unsupported_format(pipeline):
    buf = io.BytesIO()
    Image.new("RGB", (8, 8)).save(buf, format="BMP")
    with pytest.raises(UnsupportedImageFormat):
        pipeline.build("x.bmp", buf.getvalue(), PhotoIntent(collection="c", album="a"))


@pytest.mark.parametrize("collection,album", [("", "a"), ("undefined", "a"), ("c", "null")])
def test_build_requires_collection_and_album(pipeline, image_factory, collection, album):
    with pytest.raises(ValidationFailure):
        pipeline.build("x.jpg", image_factory(10, 10), PhotoIntent(collection=collection, album=album))


async def test_upload_writes_once_to_incoming_container(pipeline, image_factory, store, settings):
    data = image_factory(64, 48, fmt="PNG")
    photo = await pipeline.upload("shot.png", data, PhotoIntent(collection="c", album="a"))

    assert store.writes == 1
    info = await store.get_info(settings.UPLOADS_CONTAINER_NAME, "c/a/shot.png")
    assert info.content_type == "image/png"
    assert await store.download(settings.UPLOADS_CONTAINER_NAME, "c/a/shot.png") == data
    assert await store.list_blobs(settings.IMAGES_CONTAINER_NAME) == []

    assert photo.name == "c/a/shot.png"
    assert photo.src == "https://photos.blob.core.windows.net/images/c/a/shot.png"
    assert (photo.width, photo.height) == (64, 48)
