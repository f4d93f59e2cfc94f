"""
Signature uploads.

The physician's signature arrives as a base64 image (optionally a data URL,
"data:image/png;base64,...") and is written through Django's default_storage,
so the backend is whatever DEFAULT_FILE_STORAGE / STORAGES points at.
"""

import base64
import binascii
import logging
import re

from django.conf import settings
from django.core.files.base import ContentFile
from django.core.files.storage import default_storage
from django.utils import timezone

from .exceptions import ValidationError

logger = logging.getLogger(__name__)

_DATA_URL_RE = re.compile(r'^data:image/(?P<ext>png|jpe?g|gif|webp);base64,', re.IGNORECASE)


def decode_signature(signature_data):
    """Return (bytes, extension). Raises ValidationError on anything undecodable."""
    ext = 'png'
    payload = signature_data.strip()
    match = _DATA_URL_RE.match(payload)
    if match:
        ext = match.group('ext').lower().replace('jpeg', 'jpg')
        payload = payload[match.end():]
    try:
        content = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError(
            message='signatureData is not valid base64 image data',
            code='INVALID_SIGNATURE',
        )
    if not content:
        raise ValidationError(message='signatureData is empty', code='INVALID_SIGNATURE')
    return content, ext


def process_signature(order, signature, user_id):
    """
    Store a decoded signature for `order` and return the storage key.

    `signature` is the (bytes, extension) pair from decode_signature.
    """
    content, ext = signature
    stamp = timezone.now().strftime('%Y%m%d%H%M%S')
    name = f'{settings.SIGNATURE_UPLOAD_PREFIX}/order_{order.id}_user_{user_id}_{stamp}.{ext}'
    key = default_storage.save(name, ContentFile(content))
    logger.info("[Uploads] signature stored for order %s (%d bytes)", order.id, len(content))
    return key
