"""S3-compatible object storage for project images.

Image bytes never live in the database: each generated or reference image is
stored under an opaque key and the database row keeps only that key.  Keys are
scoped per project::

    projects/<project_id>/images/<image_id>.<ext>

:class:`ImageStore` talks to MinIO in development and to any S3-compatible
service in production through boto3.  The bucket is created lazily on first
use.  Every client failure is logged and re-raised as
:class:`~facet.core.errors.StorageError`, so callers only handle one error
type.

The module also holds the small byte-level helpers used around storage:
data-URL decoding for uploads, MIME/extension mapping, and re-encoding of
generated images into a project's preferred format with Pillow.
"""

from __future__ import annotations

import base64
import binascii
import io
import logging
import re

import boto3
from botocore.client import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from PIL import Image, UnidentifiedImageError

from facet.core.config import FacetConfig
from facet.core.errors import StorageError, ValidationError
from facet.core.tables import ImageFormat

logger = logging.getLogger(__name__)

_FORMAT_TO_MIME: dict[ImageFormat, str] = {
    ImageFormat.PNG: "image/png",
    ImageFormat.JPEG: "image/jpeg",
    ImageFormat.WEBP: "image/webp",
}

_EXTENSION_TO_MIME: dict[str, str] = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "webp": "image/webp",
    "gif": "image/gif",
}

_DATA_URL_RE = re.compile(r"^data:([A-Za-z0-9.+/-]+);base64,(.+)$", re.DOTALL)


# ---------------------------------------------------------------------------
# Byte-level helpers.
# ---------------------------------------------------------------------------


def image_format_to_mime(image_format: ImageFormat | str) -> str:
    """Return the MIME type for a project image format (PNG if unknown)."""
    try:
        return _FORMAT_TO_MIME[ImageFormat(image_format)]
    except ValueError:
        return "image/png"


def mime_to_extension(mime_type: str) -> str:
    """Return the file extension for *mime_type* (``image/jpeg`` -> ``jpeg``)."""
    _, _, subtype = mime_type.partition("/")
    return subtype or "png"


def guess_mime_from_key(key: str) -> str:
    """Return the content type implied by an object key's extension."""
    extension = key.rsplit(".", 1)[-1].lower() if "." in key else ""
    return _EXTENSION_TO_MIME.get(extension, "image/png")


def decode_data_url(value: str) -> tuple[bytes, str]:
    """Decode an uploaded image given as a data URL or bare base64.

    Args:
        value: ``data:<mime>;base64,<payload>`` or a plain base64 string
            (assumed to be PNG).

    Returns:
        Tuple of ``(image_bytes, mime_type)``.

    Raises:
        ValidationError: If the data URL is malformed or the payload is not
            valid base64.
    """
    if value.startswith("data:"):
        match = _DATA_URL_RE.match(value)
        if not match:
            raise ValidationError("Invalid base64 data URL")
        mime_type, payload = match.group(1), match.group(2)
    else:
        mime_type, payload = "image/png", value

    try:
        return base64.b64decode(payload, validate=True), mime_type
    except (binascii.Error, ValueError) as exc:
        raise ValidationError("Invalid base64 image data", details=exc) from exc


def convert_image(data: bytes, image_format: ImageFormat | str) -> tuple[bytes, str]:
    """Re-encode image bytes into *image_format*.

    The generative API usually answers with PNG whatever format the prompt
    asks for.  Converting here makes the stored bytes match the project's
    format and the MIME type recorded with them.  Bytes Pillow cannot read are
    returned unchanged with the requested MIME type.

    Args:
        data: Encoded image bytes.
        image_format: Target project format.

    Returns:
        Tuple of ``(encoded_bytes, mime_type)``.
    """
    fmt = ImageFormat(image_format)
    mime_type = image_format_to_mime(fmt)
    try:
        with Image.open(io.BytesIO(data)) as image:
            if image.format == fmt.value:
                return data, mime_type
            if fmt is ImageFormat.JPEG and image.mode not in ("RGB", "L"):
                image = image.convert("RGB")
            buffer = io.BytesIO()
            image.save(buffer, format=fmt.value)
            return buffer.getvalue(), mime_type
    except (UnidentifiedImageError, OSError) as exc:
        logger.warning(f"Could not re-encode image as {fmt.value}: {exc}")
        return data, mime_type


# ---------------------------------------------------------------------------
# Object store.
# ---------------------------------------------------------------------------


class ImageStore:
    """Put, fetch, delete and presign image objects in one bucket.

    Attributes:
        bucket: Name of the bucket holding all project images.
        url_expiry: Default presigned URL validity in seconds.
    """

    def __init__(self, config: FacetConfig, client=None) -> None:
        """Initialise the store.

        Args:
            config: Application configuration (endpoint, credentials, bucket).
            client: Optional pre-built boto3 S3 client, mainly for tests.
        """
        self.bucket = config.storage_bucket
        self.url_expiry = config.presigned_url_expiry
        self._region = config.storage_region
        self._client = client or boto3.client(
            "s3",
            endpoint_url=config.storage_endpoint,
            aws_access_key_id=config.storage_access_key,
            aws_secret_access_key=config.storage_secret_key,
            region_name=config.storage_region,
            config=BotoConfig(signature_version="s3v4", s3={"addressing_style": "path"}),
        )
        self._bucket_ready = False

    def ensure_bucket(self) -> None:
        """Create the bucket if it does not exist yet (checked once)."""
        if self._bucket_ready:
            return
        try:
            self._client.head_bucket(Bucket=self.bucket)
        except ClientError as exc:
            status = exc.response.get("Error", {}).get("Code")
            if status not in ("404", "NoSuchBucket", "NotFound"):
                logger.error(f"Failed to check bucket {self.bucket}: {exc}")
                raise StorageError("Failed to ensure bucket exists", details=exc) from exc
            try:
                params = {"Bucket": self.bucket}
                if self._region != "us-east-1":
                    params["CreateBucketConfiguration"] = {"LocationConstraint": self._region}
                self._client.create_bucket(**params)
                logger.info(f"Bucket {self.bucket} created")
            except (BotoCoreError, ClientError) as create_exc:
                logger.error(f"Failed to create bucket {self.bucket}: {create_exc}")
                raise StorageError("Failed to ensure bucket exists", details=create_exc) from create_exc
        except BotoCoreError as exc:
            logger.error(f"Failed to reach object store: {exc}")
            raise StorageError("Failed to ensure bucket exists", details=exc) from exc
        self._bucket_ready = True

    @staticmethod
    def build_key(image_id: str, project_id: str, mime_type: str) -> str:
        return f"projects/{project_id}/images/{image_id}.{mime_to_extension(mime_type)}"

    def put(self, data: bytes, image_id: str, project_id: str, mime_type: str = "image/png") -> str:
        """Upload image bytes and return the object key.

        Args:
            data: Encoded image bytes.
            image_id: Unique identifier for the image (becomes the file stem).
            project_id: Owning project, used to scope the key.
            mime_type: Content type stored with the object.

        Returns:
            The object key under which the bytes were stored.

        Raises:
            StorageError: If the upload fails.
        """
        self.ensure_bucket()
        key = self.build_key(image_id, project_id, mime_type)
        try:
            self._client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=mime_type)
        except (BotoCoreError, ClientError) as exc:
            logger.error(f"Failed to upload {key}: {exc}")
            raise StorageError("Failed to upload image", details=exc) from exc
        logger.info(f"Image uploaded: {key}")
        return key

    def get(self, key: str) -> bytes:
        """Return the bytes stored under *key*.

        Raises:
            StorageError: If the object is missing or cannot be read.
        """
        self.ensure_bucket()
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except (BotoCoreError, ClientError) as exc:
            logger.error(f"Failed to read {key}: {exc}")
            raise StorageError("Failed to get image", details=exc) from exc

    def delete(self, key: str) -> None:
        """Delete the object stored under *key*.

        Raises:
            StorageError: If the deletion fails.
        """
        self.ensure_bucket()
        try:
            self._client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            logger.error(f"Failed to delete {key}: {exc}")
            raise StorageError("Failed to delete image", details=exc) from exc
        logger.info(f"Image deleted: {key}")

    def presigned_url(self, key: str, expires_in: int | None = None) -> str:
        """Return a time-bounded retrieval URL for *key*.

        Args:
            key: Object key.
            expires_in: Validity in seconds; defaults to ``url_expiry``.

        Raises:
            StorageError: If the URL cannot be signed.
        """
        try:
            return self._client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=expires_in or self.url_expiry,
            )
        except (BotoCoreError, ClientError) as exc:
            logger.error(f"Failed to presign {key}: {exc}")
            raise StorageError("Failed to create image URL", details=exc) from exc
