"""
cloudinary_client.py
Profile image storage on Cloudinary through its REST API.
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
import time

import requests

logger = logging.getLogger(__name__)

API_BASE = 'https://api.cloudinary.com/v1_1'
ALLOWED_IMAGE_EXTS = {'.jpg', '.jpeg', '.png', '.webp'}
REQUEST_TIMEOUT = 30


class CloudinaryError(RuntimeError):
    pass


def _credentials() -> tuple[str, str, str]:
    cloud = os.getenv('CLOUDINARY_CLOUD_NAME')
    key = os.getenv('CLOUDINARY_API_KEY')
    secret = os.getenv('CLOUDINARY_API_SECRET')
    if not (cloud and key and secret):
        raise CloudinaryError('Cloudinary configuration missing')
    return cloud, key, secret


def sign_params(params: dict, api_secret: str) -> str:
    """Signature over the alphabetically sorted params, as Cloudinary expects."""
    to_sign = '&'.join(f"{k}={params[k]}" for k in sorted(params) if params[k] not in (None, ''))
    return hashlib.sha1((to_sign + api_secret).encode('utf-8')).hexdigest()


def upload_image(file_obj, filename: str, folder: str | None = None) -> dict:
    ext = os.path.splitext(filename or '')[1].lower()
    if ext not in ALLOWED_IMAGE_EXTS:
        raise ValueError('Only JPG, JPEG, PNG, WEBP images are allowed')
    cloud, key, secret = _credentials()
    params = {'timestamp': int(time.time())}
    if folder:
        params['folder'] = folder
    payload = dict(params, api_key=key, signature=sign_params(params, secret))
    try:
        resp = requests.post(
            f"{API_BASE}/{cloud}/image/upload",
            data=payload,
            files={'file': (filename, file_obj)},
            timeout=REQUEST_TIMEOUT,
        )
    except requests.RequestException as exc:
        raise CloudinaryError(f"Failed to upload image to Cloudinary: {exc}") from exc
    if not resp.ok:
        raise CloudinaryError(f"Failed to upload image to Cloudinary ({resp.status_code})")
    data = resp.json()
    return {'secure_url': data.get('secure_url'), 'public_id': data.get('public_id')}


def delete_image(public_id: str) -> None:
    if not public_id:
        raise ValueError('Public ID is required')
    cloud, key, secret = _credentials()
    params = {'public_id': public_id, 'timestamp': int(time.time())}
    payload = dict(params, api_key=key, signature=sign_params(params, secret))
    try:
        resp = requests.post(f"{API_BASE}/{cloud}/image/destroy", data=payload, timeout=REQUEST_TIMEOUT)
    except requests.RequestException as exc:
        raise CloudinaryError(f"Failed to delete image from Cloudinary: {exc}") from exc
    result = resp.json().get('result') if resp.ok else None
    if result != 'ok':
        raise CloudinaryError(f"Failed to delete image from Cloudinary: {result or resp.status_code}")
    logger.info("Deleted Cloudinary image %s", public_id)


def transformed_url(url: str, transformations: str | None = None) -> str:
    if not url or not transformations or '/upload/' not in url:
        return url
    return url.replace('/upload/', f"/upload/{transformations}/", 1)


def thumbnail_url(url: str, width: int = 150, height: int = 150) -> str:
    return transformed_url(url, f"w_{width},h_{height},c_fill,q_auto,f_auto")


def profile_image_url(url: str, size: int = 200) -> str:
    return transformed_url(url, f"w_{size},h_{size},c_fill,g_face,q_auto,f_auto")


def extract_public_id(url: str) -> str | None:
    """https://res.cloudinary.com/<cloud>/image/upload/v123/folder/name.jpg -> folder/name"""
    if not url or '/upload/' not in url:
        return None
    parts = [p for p in url.split('/upload/', 1)[1].split('/') if p]
    # transformation segments (w_200,h_200,...) then the optional version
    while parts and re.match(r'^[a-z]{1,2}_', parts[0]):
        parts.pop(0)
    if parts and re.fullmatch(r'v\d+', parts[0]):
        parts.pop(0)
    if not parts:
        return None
    parts[-1] = os.path.splitext(parts[-1])[0]
    return '/'.join(parts)
