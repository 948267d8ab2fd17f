
from typing import Any, Dict, Optional, Tuple
import base64
import binascii
import json
import logging
import subprocess

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, padding, rsa
from cryptography.x509.oid import ExtensionOID, NameOID

from .constants import CERTIFICATE_ANNOTATION_KEY, MESSAGE_ANNOTATION_KEY, SIGNATURE_ANNOTATION_KEY
from .errors import SignatureError
from .mapnode import Node
from .resource import get_annotations

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60


def verify_signature(public_key: Any, signature: bytes, message: bytes) -> bool:
    """Check a cosign blob signature (SHA-256) with an EC, RSA or Ed25519 key."""
    try:
        if isinstance(public_key, ec.EllipticCurvePublicKey):
            public_key.verify(signature, message, ec.ECDSA(hashes.SHA256()))
            return True
        elif isinstance(public_key, rsa.RSAPublicKey):
            try:
                public_key.verify(signature, message, padding.PKCS1v15(), hashes.SHA256())
            except InvalidSignature:
                public_key.verify(signature, message,
                                  padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=padding.PSS.AUTO),
                                  hashes.SHA256())
            return True
        elif isinstance(public_key, ed25519.Ed25519PublicKey):
            public_key.verify(signature, message)
            return True
    except InvalidSignature:
        return False
    raise SignatureError(f"unsupported public key type {type(public_key).__name__}")


def signer_from_certificate(cert: x509.Certificate) -> str:
    """Email SAN, else URI SAN, else subject common name."""
    try:
        san = cert.extensions.get_extension_for_oid(ExtensionOID.SUBJECT_ALTERNATIVE_NAME).value
        emails = san.get_values_for_type(x509.RFC822Name)
        if emails:
            return emails[0]
        uris = san.get_values_for_type(x509.UniformResourceIdentifier)
        if uris:
            return uris[0]
    except x509.ExtensionNotFound:
        pass
    cns = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    return str(cns[0].value) if cns else ''


def _b64(annotations: Dict[str, str], key: str) -> bytes:
    value = annotations.get(key)
    if not value:
        raise SignatureError(f"annotation {key} not found")
    try:
        return base64.b64decode(value)
    except (binascii.Error, ValueError) as e:
        raise SignatureError(f"annotation {key} is not base64: {e}") from e


class SignatureVerifier:
    """
    Verify the signature attached to an object.

    With an image reference, the image signature is checked by ``cosign verify``.
    Otherwise the signature and message annotations are checked locally, with
    the public key at ``key_path`` or the key of the certificate annotation.
    ``verify()`` returns (valid, signer); signer is empty for key-based checks.
    """

    def __init__(self, obj_bytes: bytes, image_ref: str = '', key_path: Optional[str] = None,
                 timeout: float = DEFAULT_TIMEOUT):
        self.obj_bytes = obj_bytes
        self.image_ref = image_ref
        self.key_path = key_path
        self.timeout = timeout

    def verify(self) -> Tuple[bool, str]:
        if self.image_ref:
            return self._verify_image()
        return self._verify_annotations()

    def _load_key(self) -> Any:
        try:
            with open(self.key_path, 'rb') as f:
                pem = f.read()
        except OSError as e:
            raise SignatureError(f"failed to read key {self.key_path}: {e}") from e
        try:
            return serialization.load_pem_public_key(pem)
        except ValueError as e:
            raise SignatureError(f"{self.key_path} is not a PEM public key: {e}") from e

    def _verify_annotations(self) -> Tuple[bool, str]:
        try:
            obj = Node.from_yaml_bytes(self.obj_bytes).value
        except ValueError as e:
            raise SignatureError(f"object is not valid YAML: {e}") from e
        annotations = get_annotations(obj if isinstance(obj, dict) else {})
        signature = _b64(annotations, SIGNATURE_ANNOTATION_KEY)
        message = _b64(annotations, MESSAGE_ANNOTATION_KEY)

        if self.key_path:
            public_key, signer = self._load_key(), ''
        elif annotations.get(CERTIFICATE_ANNOTATION_KEY):
            pem = _b64(annotations, CERTIFICATE_ANNOTATION_KEY)
            try:
                cert = x509.load_pem_x509_certificate(pem)
            except ValueError as e:
                raise SignatureError(f"certificate annotation is not a PEM certificate: {e}") from e
            public_key, signer = cert.public_key(), signer_from_certificate(cert)
        else:
            raise SignatureError("no verification key given and no certificate annotation found")

        ok = verify_signature(public_key, signature, message)
        logger.debug("annotation signature valid=%s signer=%r", ok, signer)
        return ok, signer

    def _verify_image(self) -> Tuple[bool, str]:
        cmd = ['cosign', 'verify', '--output', 'json']
        if self.key_path:
            cmd += ['--key', self.key_path]
        else:
            cmd += ['--certificate-identity-regexp', '.*', '--certificate-oidc-issuer-regexp', '.*']
        cmd.append(self.image_ref)
        logger.debug("Running cosign verify: %s", ' '.join(cmd))
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout, check=False)
        except FileNotFoundError as e:
            raise SignatureError("cosign CLI not found; it is required to verify image signatures") from e
        except subprocess.TimeoutExpired as e:
            raise SignatureError(f"cosign verify timed out after {self.timeout} seconds") from e
        if result.returncode != 0:
            logger.info("cosign verify failed for %s: %s", self.image_ref, result.stderr.strip())
            return False, ''
        return True, '' if self.key_path else _subject_from_cosign_output(result.stdout)


def _subject_from_cosign_output(stdout: str) -> str:
    for line in stdout.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            payloads = json.loads(line)
        except ValueError:
            continue
        if isinstance(payloads, dict):
            payloads = [payloads]
        for p in payloads if isinstance(payloads, list) else []:
            subject = ((p or {}).get('optional') or {}).get('Subject')
            if subject:
                return str(subject)
    return ''
