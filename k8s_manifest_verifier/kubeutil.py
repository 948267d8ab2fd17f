
from typing import Any, Dict, Optional, Tuple
import json
import logging

import yaml
from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.dynamic import DynamicClient
from kubernetes.dynamic.exceptions import DynamicApiError, NotFoundError, ResourceNotFoundError
from urllib3.exceptions import HTTPError

from .errors import DryRunError
from .mapnode import Node

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30
FIELD_MANAGER = "k8s-manifest-verifier"
DRYRUN_NAME_SUFFIX = "-dryrun"

# set by the API server on every stored object; rejected on create
SERVER_POPULATED_METADATA = (
    "resourceVersion",
    "uid",
    "creationTimestamp",
    "managedFields",
    "generation",
    "selfLink",
)

_API_ERRORS = (ApiException, DynamicApiError, ResourceNotFoundError, HTTPError)
_CLIENT_ERRORS = _API_ERRORS + (config.ConfigException, OSError)


def _load(manifest_bytes: bytes) -> Dict[str, Any]:
    try:
        obj = Node.from_yaml_bytes(manifest_bytes).value
    except ValueError as e:
        raise DryRunError(f"manifest for dry-run is not valid YAML: {e}") from e
    if not isinstance(obj, dict) or not obj.get("kind") or not obj.get("apiVersion"):
        raise DryRunError("manifest for dry-run has no apiVersion/kind")
    return obj


def _dump(obj: Any) -> bytes:
    return yaml.safe_dump(obj, sort_keys=False).encode("utf-8")


class KubeDryRun:
    """
    Dry-run calls against the cluster's API server. Every resource request is
    bounded by ``timeout`` seconds, discovery uses the client defaults, and no
    request is retried. Nothing is persisted.

    The client connects on first use, so constructing one is free.
    """

    def __init__(self, kubeconfig: Optional[str] = None, context: Optional[str] = None,
                 timeout: float = DEFAULT_TIMEOUT):
        self.kubeconfig = kubeconfig
        self.context = context
        self.timeout = timeout
        self._dynamic: Optional[DynamicClient] = None

    def _configure(self) -> client.Configuration:
        if self.kubeconfig:
            config.load_kube_config(config_file=self.kubeconfig, context=self.context)
        else:
            # try incluster, fallback to default kubeconfig
            try:
                config.load_incluster_config()
            except config.ConfigException:
                config.load_kube_config(context=self.context)
        configuration = client.Configuration.get_default_copy()
        # fail fast instead of urllib3's default Retry(3)
        configuration.retries = 0
        return configuration

    @property
    def dynamic(self) -> DynamicClient:
        if self._dynamic is None:
            try:
                # DynamicClient runs API discovery on construction
                self._dynamic = DynamicClient(client.ApiClient(configuration=self._configure()))
            except _CLIENT_ERRORS as e:
                raise DryRunError(f"cannot connect to the cluster: {e}") from e
        return self._dynamic

    def _resource(self, api_version: str, kind: str):
        return self.dynamic.resources.get(api_version=api_version, kind=kind)

    def dry_run_create(self, manifest_bytes: bytes, namespace: str) -> bytes:
        """Simulate creating the manifest; empty ``namespace`` means cluster scope."""
        obj = _load(manifest_bytes)
        meta = obj.setdefault("metadata", {})
        for key in SERVER_POPULATED_METADATA:
            meta.pop(key, None)
        if meta.get("name"):
            meta["name"] = meta["name"] + DRYRUN_NAME_SUFFIX
        if namespace:
            meta["namespace"] = namespace
        else:
            meta.pop("namespace", None)
        logger.debug("dry-run create %s %s in namespace %r", obj["kind"], meta.get("name"), namespace)
        try:
            created = self._resource(obj["apiVersion"], obj["kind"]).create(
                body=obj,
                namespace=namespace or None,
                dry_run="All",
                _request_timeout=self.timeout,
            )
        except _API_ERRORS as e:
            raise DryRunError(f"dry-run create of {obj['kind']} {meta.get('name')} failed: {e}") from e
        return _dump(created.to_dict())

    def get_apply_patch_bytes(self, manifest_bytes: bytes, namespace: str) -> Tuple[bytes, bytes]:
        """
        Compute what applying the manifest to the live object would produce.

        Returns (original manifest as JSON, patched object as YAML). When there
        is no live object yet the patched object is the manifest itself.
        """
        obj = _load(manifest_bytes)
        meta = obj.setdefault("metadata", {})
        if namespace:
            meta["namespace"] = namespace
        name = meta.get("name")
        original = json.dumps(obj).encode("utf-8")
        try:
            res = self._resource(obj["apiVersion"], obj["kind"])
            try:
                res.get(name=name, namespace=namespace or None, _request_timeout=self.timeout)
            except NotFoundError:
                logger.debug("no live %s %s; apply is a create", obj["kind"], name)
                return original, _dump(obj)
            patched = res.server_side_apply(
                body=obj,
                name=name,
                namespace=namespace or None,
                field_manager=FIELD_MANAGER,
                force_conflicts=True,
                dry_run="All",
                _request_timeout=self.timeout,
            )
        except _API_ERRORS as e:
            raise DryRunError(f"dry-run apply of {obj['kind']} {name} failed: {e}") from e
        return original, _dump(patched.to_dict())

    def get_resource(self, api_version: str, kind: str, name: str, namespace: str = "") -> Dict[str, Any]:
        try:
            found = self._resource(api_version, kind).get(
                name=name, namespace=namespace or None, _request_timeout=self.timeout,
            )
        except _API_ERRORS as e:
            raise DryRunError(f"failed to get {kind} {name}: {e}") from e
        return found.to_dict()
