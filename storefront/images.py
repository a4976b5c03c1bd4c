"""Product image storage.

``ImageStore`` is the contract the catalog routes depend on. Two adapters
exist: ``CloudinaryImageStore`` goes through the Cloudinary SDK and
``LocalImageStore`` keeps files in the local uploads folder, which is what
development setups without Cloudinary credentials use.
"""

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional
from urllib.parse import urljoin
from uuid import uuid4

import cloudinary.uploader
from cloudinary.exceptions import Error as CloudinaryError
from flask import current_app, request
from werkzeug.utils import secure_filename

from .errors import InvalidInput, UpstreamFailure

ALLOWED_IMAGE_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "webp"}


class ImageStoreError(Exception):
    pass


@dataclass(frozen=True)
class UploadedImage:
    public_id: str
    url: str

    def to_document(self) -> Dict[str, str]:
        return {"publicId": self.public_id, "url": self.url}


class ImageStore(ABC):
    @abstractmethod
    def upload(self, image_file, folder: str) -> UploadedImage:
        ...

    @abstractmethod
    def destroy(self, public_id: str) -> None:
        ...


class CloudinaryImageStore(ImageStore):
    def __init__(self, cloud_name: str, api_key: str, api_secret: str, timeout: float = 30):
        self.cloud_name = cloud_name
        self.api_key = api_key
        self.api_secret = api_secret
        self.timeout = timeout

    def _credentials(self) -> Dict[str, object]:
        # Credentials travel with each call; the SDK's global config is never set.
        return {
            "cloud_name": self.cloud_name,
            "api_key": self.api_key,
            "api_secret": self.api_secret,
            "timeout": self.timeout,
        }

    def upload(self, image_file, folder: str) -> UploadedImage:
        try:
            result = cloudinary.uploader.upload(
                getattr(image_file, "stream", image_file),
                folder=folder,
                resource_type="auto",
                **self._credentials(),
            )
        except CloudinaryError as exc:
            raise ImageStoreError(f"Cloudinary upload failed: {exc}") from exc

        public_id = result.get("public_id")
        url = result.get("secure_url") or result.get("url")
        if not public_id or not url:
            raise ImageStoreError("Cloudinary upload returned no public id.")
        return UploadedImage(public_id=public_id, url=url)

    def destroy(self, public_id: str) -> None:
        try:
            result = cloudinary.uploader.destroy(public_id, **self._credentials())
        except CloudinaryError as exc:
            raise ImageStoreError(f"Cloudinary destroy failed: {exc}") from exc
        if result.get("result") not in ("ok", "not found"):
            raise ImageStoreError(f"Cloudinary destroy returned {result.get('result')!r}.")


class LocalImageStore(ImageStore):
    def __init__(self, upload_folder: str):
        self.upload_folder = upload_folder
        os.makedirs(upload_folder, exist_ok=True)

    def upload(self, image_file, folder: str) -> UploadedImage:
        original_filename = secure_filename(getattr(image_file, "filename", "") or "")
        if not original_filename:
            raise InvalidInput("Please choose a valid file name.")

        extension = os.path.splitext(original_filename)[1].lower()
        if extension.lstrip(".") not in ALLOWED_IMAGE_EXTENSIONS:
            raise InvalidInput(
                "Unsupported image format. Upload PNG, JPG, JPEG, GIF, or WEBP files."
            )

        directory = os.path.join(self.upload_folder, secure_filename(folder))
        os.makedirs(directory, exist_ok=True)
        unique_filename = f"{uuid4().hex}{extension}"
        try:
            image_file.save(os.path.join(directory, unique_filename))
        except OSError as exc:
            raise ImageStoreError(f"Could not store {original_filename}: {exc}") from exc

        public_id = f"{secure_filename(folder)}/{unique_filename}"
        return UploadedImage(
            public_id=public_id,
            url=urljoin(request.host_url, f"uploads/{public_id}"),
        )

    def destroy(self, public_id: str) -> None:
        target = os.path.normpath(os.path.join(self.upload_folder, public_id))
        if not target.startswith(os.path.normpath(self.upload_folder) + os.sep):
            raise ImageStoreError(f"Refusing to delete outside the upload folder: {public_id}")
        try:
            os.remove(target)
        except FileNotFoundError:
            return
        except OSError as exc:
            raise ImageStoreError(f"Could not delete {public_id}: {exc}") from exc


def upload_images(store: ImageStore, image_files: List, folder: str = "products") -> List[UploadedImage]:
    """Upload files one at a time; if any fails, destroy the ones already stored."""
    uploaded: List[UploadedImage] = []
    try:
        for image_file in image_files:
            uploaded.append(store.upload(image_file, folder))
    except InvalidInput:
        discard_images(store, uploaded)
        raise
    except Exception as exc:
        current_app.logger.error(
            "Image upload failed after %s of %s files: %s",
            len(uploaded),
            len(image_files),
            exc,
        )
        discard_images(store, uploaded)
        raise UpstreamFailure("Error uploading image to image host") from exc
    return uploaded


def discard_images(store: ImageStore, images: Iterable[UploadedImage]) -> None:
    for image in images:
        try:
            store.destroy(image.public_id)
        except Exception as exc:
            current_app.logger.warning(
                "Unable to remove orphaned image %s: %s", image.public_id, exc
            )


def destroy_images(
    store: ImageStore,
    image_documents: Iterable[Dict],
    on_destroyed: Optional[Callable[[Dict], None]] = None,
) -> None:
    """Destroy every image, stopping at the first failure.

    ``on_destroyed`` runs after each successful destroy, so callers can drop
    the reference before a later failure leaves the owner half-deleted.
    """
    for image in image_documents or []:
        public_id = image.get("publicId")
        if not public_id:
            continue
        try:
            store.destroy(public_id)
        except Exception as exc:
            current_app.logger.error("Unable to delete image %s: %s", public_id, exc)
            raise UpstreamFailure("Error deleting images from image host") from exc
        if on_destroyed is not None:
            on_destroyed(image)


def build_image_store(settings, upload_folder: str) -> ImageStore:
    if settings.cloudinary_enabled:
        return CloudinaryImageStore(
            settings.cloudinary_cloud_name,
            settings.cloudinary_api_key,
            settings.cloudinary_api_secret,
        )
    return LocalImageStore(upload_folder)
