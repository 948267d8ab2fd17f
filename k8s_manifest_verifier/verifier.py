from typing import Callable, List, Optional, Protocol, Tuple
import logging

import yaml

from .constants import IMAGE_REF_ANNOTATION_KEY
from .errors import STAGE_FETCH, STAGE_MATCH, STAGE_SIGNATURE, wrap_error
from .fetcher import ManifestFetcher
from .kubeutil import KubeDryRun
from .matcher import DryRunner, match_resource_with_manifest
from .option import VerifyResourceOption, load_known_k8s_ignore_fields
from .resource import Resource, describe, get_annotations
from .result import VerifyResourceResult
from .signature import SignatureVerifier

logger = logging.getLogger(__name__)


class Fetcher(Protocol):
    def fetch(self, obj_bytes: bytes) -> bytes: ...


class Verifier(Protocol):
    def verify(self) -> Tuple[bool, str]: ...


FetcherFactory = Callable[[str], Fetcher]
VerifierFactory = Callable[[bytes, str, Optional[str]], Verifier]


def resolve_image_ref(obj: Resource, option: VerifyResourceOption) -> str:
    if option.image_ref:
        return option.image_ref
    return get_annotations(obj).get(IMAGE_REF_ANNOTATION_KEY, '')


def resolve_ignore_fields(obj: Resource, option: VerifyResourceOption) -> List[str]:
    """Configured per-object ignore fields followed by the bundled known changes."""
    fields: List[str] = []
    ok, configured = option.ignore_fields.match(obj)
    if ok:
        fields.extend(configured)
    ok, known = load_known_k8s_ignore_fields().match(obj)
    if ok:
        fields.extend(known)
    return fields


def verify_resource(obj: Resource, option: Optional[VerifyResourceOption] = None, *,
                    fetcher_factory: FetcherFactory = ManifestFetcher,
                    verifier_factory: VerifierFactory = SignatureVerifier,
                    dryrun: Optional[DryRunner] = None) -> VerifyResourceResult:
    """
    Verify a live object against its signed manifest:
      - resolve the image reference (option, else the imageRef annotation),
      - evaluate skipObjects (out-of-scope objects are still fully verified),
      - fetch the signed manifest, run the matching cascade,
      - verify the signature and check the signer against the trusted list.
    Any stage failure raises VerificationError labelled with the stage; a
    mismatch is reported in the result, not raised.
    """
    option = option or VerifyResourceOption()
    if dryrun is None:
        dryrun = KubeDryRun()
    obj_bytes = yaml.safe_dump(obj, sort_keys=False).encode('utf-8')

    image_ref = resolve_image_ref(obj, option)
    in_scope = not option.skip_objects.match(obj)
    ignore_fields = resolve_ignore_fields(obj, option)
    logger.debug("verifying %s image=%r in_scope=%s ignore_fields=%d",
                 describe(obj), image_ref, in_scope, len(ignore_fields))

    try:
        manifest = fetcher_factory(image_ref).fetch(obj_bytes)
    except Exception as e:
        raise wrap_error(e, STAGE_FETCH, "YAML manifest not found for this resource") from e

    try:
        matched, diff = match_resource_with_manifest(
            obj, manifest, ignore_fields, option.check_dryrun_for_apply,
            dryrun=dryrun, mask_keys=option.mask_keys,
        )
    except Exception as e:
        raise wrap_error(e, STAGE_MATCH, "error occurred during matching manifest") from e

    try:
        sig_ok, signer = verifier_factory(obj_bytes, image_ref, option.key_path or None).verify()
    except Exception as e:
        raise wrap_error(e, STAGE_SIGNATURE, "error occurred during signature verification") from e

    verified = matched and sig_ok and option.signers.match(signer)
    logger.info("%s verified=%s (manifest matched=%s, signature valid=%s, signer=%r)",
                describe(obj), verified, matched, sig_ok, signer)
    return VerifyResourceResult(
        verified=verified,
        in_scope=in_scope,
        signer=signer,
        sig_ref=image_ref,
        diff=diff,
    )
