# =============================================================================
# Shared fixtures: resource builders and collaborator fakes with call counters.
# =============================================================================

import copy
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest
import yaml

from k8s_manifest_verifier import option as option_module
from k8s_manifest_verifier.constants import (
    IMAGE_REF_ANNOTATION_KEY,
    MESSAGE_ANNOTATION_KEY,
    SIGNATURE_ANNOTATION_KEY,
)


def configmap(name="sample-cm", namespace="ns1", data=None, labels=None) -> Dict[str, Any]:
    obj = {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"name": name},
        "data": data if data is not None else {"key1": "val1", "key2": "val2"},
    }
    if namespace:
        obj["metadata"]["namespace"] = namespace
    if labels:
        obj["metadata"]["labels"] = dict(labels)
    return obj


def as_live(manifest: Dict[str, Any], namespace: Optional[str] = None, image_ref: str = "") -> Dict[str, Any]:
    """What the API server returns for an object created from ``manifest``."""
    obj = copy.deepcopy(manifest)
    meta = obj.setdefault("metadata", {})
    if namespace is not None:
        meta["namespace"] = namespace
    meta.update({
        "uid": "5b0b4a3e-2c2f-4a8e-9d57-8d1d0c6f6a10",
        "resourceVersion": "123456",
        "creationTimestamp": "2024-01-01T00:00:00Z",
        "managedFields": [{"manager": "kubectl", "operation": "Update"}],
    })
    annotations = meta.setdefault("annotations", {})
    annotations[MESSAGE_ANNOTATION_KEY] = "H4sIAAAAAAAA"
    annotations[SIGNATURE_ANNOTATION_KEY] = "MEUCIQ=="
    if image_ref:
        annotations[IMAGE_REF_ANNOTATION_KEY] = image_ref
    obj["status"] = {"phase": "Active"}
    return obj


def to_yaml(*docs: Dict[str, Any]) -> bytes:
    return yaml.safe_dump_all(list(docs), sort_keys=False).encode("utf-8")


class FakeDryRun:
    """Simulates the API server: renames like the real dry-run, then ``simulate``."""

    def __init__(self, simulate: Optional[Callable[[Dict[str, Any]], Dict[str, Any]]] = None,
                 patched: Optional[bytes] = None, error: Optional[Exception] = None):
        self.simulate = simulate
        self.patched = patched
        self.error = error
        self.create_calls: List[Tuple[bytes, str]] = []
        self.apply_calls: List[Tuple[bytes, str]] = []

    def dry_run_create(self, manifest_bytes: bytes, namespace: str) -> bytes:
        self.create_calls.append((manifest_bytes, namespace))
        if self.error is not None:
            raise self.error
        obj = yaml.safe_load(manifest_bytes)
        meta = obj.setdefault("metadata", {})
        meta["name"] = meta.get("name", "") + "-dryrun"
        if namespace:
            meta["namespace"] = namespace
        if self.simulate is not None:
            obj = self.simulate(obj)
        return yaml.safe_dump(obj, sort_keys=False).encode("utf-8")

    def get_apply_patch_bytes(self, manifest_bytes: bytes, namespace: str) -> Tuple[bytes, bytes]:
        self.apply_calls.append((manifest_bytes, namespace))
        return manifest_bytes, self.patched if self.patched is not None else manifest_bytes


class FakeFetcher:
    def __init__(self, manifest: bytes = b"", error: Optional[Exception] = None):
        self.manifest = manifest
        self.error = error
        self.image_refs: List[str] = []
        self.calls = 0

    def factory(self, image_ref: str) -> "FakeFetcher":
        self.image_refs.append(image_ref)
        return self

    def fetch(self, obj_bytes: bytes) -> bytes:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.manifest


class FakeVerifier:
    def __init__(self, valid: bool = True, signer: str = "signer@example.com", error: Optional[Exception] = None):
        self.valid = valid
        self.signer = signer
        self.error = error
        self.args: List[Tuple[bytes, str, Optional[str]]] = []

    def factory(self, obj_bytes: bytes, image_ref: str, key_path: Optional[str]) -> "FakeVerifier":
        self.args.append((obj_bytes, image_ref, key_path))
        return self

    def verify(self) -> Tuple[bool, str]:
        if self.error is not None:
            raise self.error
        return self.valid, self.signer


@pytest.fixture
def reset_known_changes(monkeypatch):
    monkeypatch.setattr(option_module, "_known_changes", None)
