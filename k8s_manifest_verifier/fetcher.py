
from typing import List, Optional
import base64
import binascii
import gzip
import io
import logging
import subprocess
import tarfile

from .constants import MESSAGE_ANNOTATION_KEY
from .errors import FetchError, ManifestNotFoundError
from .mapnode import Node
from .resource import get_annotations

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60
MANIFEST_SUFFIXES = ('.yaml', '.yml', '.json')


def _join_documents(docs: List[bytes]) -> bytes:
    return b'\n---\n'.join(d.strip(b'\n') for d in docs if d.strip())


def yamls_from_tarball(blob: bytes) -> bytes:
    """Concatenate every manifest file in a (possibly compressed) tarball."""
    docs: List[bytes] = []
    with tarfile.open(fileobj=io.BytesIO(blob), mode='r:*') as tar:
        for member in tar.getmembers():
            if not member.isfile() or not member.name.lower().endswith(MANIFEST_SUFFIXES):
                continue
            f = tar.extractfile(member)
            if f is not None:
                docs.append(f.read())
    return _join_documents(docs)


def decode_message(message: bytes) -> bytes:
    """
    Message annotation payload -> manifest YAML. Accepts a gzipped tarball
    (what the signer writes), a plain tarball, plain gzip, or raw YAML.
    """
    try:
        return yamls_from_tarball(message)
    except tarfile.TarError:
        pass
    if message[:2] == b'\x1f\x8b':
        return gzip.decompress(message)
    return message


class ManifestFetcher:
    """Retrieve the signed manifest(s) for an object, from an image or its annotations."""

    def __init__(self, image_ref: str = '', timeout: float = DEFAULT_TIMEOUT):
        self.image_ref = image_ref
        self.timeout = timeout

    def fetch(self, obj_bytes: bytes) -> bytes:
        if self.image_ref:
            data = self._fetch_from_image()
        else:
            data = self._fetch_from_annotation(obj_bytes)
        if not data.strip():
            raise ManifestNotFoundError("signed artifact contains no manifest")
        return data

    def _fetch_from_annotation(self, obj_bytes: bytes) -> bytes:
        try:
            obj = Node.from_yaml_bytes(obj_bytes).value
        except ValueError as e:
            raise FetchError(f"object is not valid YAML: {e}") from e
        encoded: Optional[str] = get_annotations(obj if isinstance(obj, dict) else {}).get(MESSAGE_ANNOTATION_KEY)
        if not encoded:
            raise ManifestNotFoundError(f"annotation {MESSAGE_ANNOTATION_KEY} not found")
        try:
            message = base64.b64decode(encoded)
        except (binascii.Error, ValueError) as e:
            raise FetchError(f"annotation {MESSAGE_ANNOTATION_KEY} is not base64: {e}") from e
        try:
            return decode_message(message)
        except (OSError, EOFError) as e:
            raise FetchError(f"failed to decompress message annotation: {e}") from e

    def _fetch_from_image(self) -> bytes:
        cmd = ['crane', 'export', self.image_ref, '-']
        logger.debug("Running %s", ' '.join(cmd))
        try:
            result = subprocess.run(cmd, capture_output=True, timeout=self.timeout, check=False)
        except FileNotFoundError as e:
            raise FetchError("crane CLI not found; it is required to pull manifests from images") from e
        except subprocess.TimeoutExpired as e:
            raise FetchError(f"pulling {self.image_ref} timed out after {self.timeout} seconds") from e
        if result.returncode != 0:
            stderr = result.stderr.decode('utf-8', errors='replace').strip()
            raise FetchError(f"failed to pull {self.image_ref}: {stderr}")
        try:
            return yamls_from_tarball(result.stdout)
        except (tarfile.TarError, OSError, EOFError) as e:
            raise FetchError(f"image {self.image_ref} is not a manifest image: {e}") from e
