
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional, Tuple
import logging
import os
import threading

import yaml

from .binding import ObjectFieldBindingList, ObjectReferenceList, SignerList
from .constants import COMMON_RESOURCE_MASK_KEYS

logger = logging.getLogger(__name__)

KNOWN_CHANGES_PATH = os.path.join(os.path.dirname(__file__), 'resources', 'known-changes.yaml')


@dataclass(frozen=True)
class VerifyResourceOption:
    image_ref: str = ''
    key_path: str = ''
    skip_objects: ObjectReferenceList = field(default_factory=ObjectReferenceList)
    ignore_fields: ObjectFieldBindingList = field(default_factory=ObjectFieldBindingList)
    signers: SignerList = field(default_factory=SignerList)
    check_dryrun_for_apply: bool = False
    mask_keys: Tuple[str, ...] = COMMON_RESOURCE_MASK_KEYS

    @classmethod
    def from_dict(cls, d: Optional[Dict[str, Any]]) -> 'VerifyResourceOption':
        """Build from the camelCase config layout (file or HTTP body)."""
        d = d or {}
        mask_keys = d.get('maskKeys')
        return cls(
            image_ref=d.get('imageRef') or '',
            key_path=d.get('keyPath') or '',
            skip_objects=ObjectReferenceList.from_list(d.get('skipObjects')),
            ignore_fields=ObjectFieldBindingList.from_list(d.get('ignoreFields')),
            signers=SignerList(d.get('signers') or []),
            check_dryrun_for_apply=bool(d.get('checkDryRunForApply', False)),
            mask_keys=tuple(mask_keys) if mask_keys else COMMON_RESOURCE_MASK_KEYS,
        )

    def with_overrides(self, **changes: Any) -> 'VerifyResourceOption':
        """Copy with non-empty ``changes`` applied; empty values keep the current setting."""
        return replace(self, **{k: v for k, v in changes.items() if v})


def load_verify_option(path: str) -> VerifyResourceOption:
    with open(path, 'rb') as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: verify option must be a mapping")
    return VerifyResourceOption.from_dict(data)


# ---------------- Bundled known changes ----------------

_known_lock = threading.Lock()
_known_changes: Optional[ObjectFieldBindingList] = None


def parse_known_changes(data: bytes) -> ObjectFieldBindingList:
    """Parse the known-changes table; malformed input yields an empty table."""
    try:
        doc = yaml.safe_load(data) or {}
        if not isinstance(doc, dict):
            raise ValueError("top level is not a mapping")
        return ObjectFieldBindingList.from_list(doc.get('ignoreFields'))
    except (yaml.YAMLError, ValueError, TypeError, AttributeError, KeyError) as e:
        logger.warning("ignoring malformed known-changes table: %s", e)
        return ObjectFieldBindingList()


def load_known_k8s_ignore_fields() -> ObjectFieldBindingList:
    """
    Return the bundled table of fields Kubernetes itself changes. Loaded once
    per process on first use; read-only afterwards.
    """
    global _known_changes
    if _known_changes is not None:
        return _known_changes
    with _known_lock:
        if _known_changes is None:
            try:
                with open(KNOWN_CHANGES_PATH, 'rb') as f:
                    data = f.read()
            except OSError as e:
                logger.warning("known-changes table not readable: %s", e)
                data = b''
            _known_changes = parse_known_changes(data)
            logger.debug("loaded %d known-change bindings", len(_known_changes))
    return _known_changes
