
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol, Sequence, Tuple
import logging

from .constants import COMMON_RESOURCE_MASK_KEYS, CRD_KIND
from .errors import ManifestNotFoundError, ParseError, VerificationError, wrap_error
from .mapnode import DiffResult, Node, find_single_yaml
from .resource import Resource, get_api_version, get_kind, get_name, get_namespace

logger = logging.getLogger(__name__)

DEFAULT_DRYRUN_NAMESPACE = "default"

# dry-run renames the object, e.g. `sample-configmap-dryrun`
DRYRUN_MASK_KEYS = ("metadata.name",)

# defaulted/case-normalized by the API server
CRD_NAMES_MASK_KEYS = (
    "spec.names.kind",
    "spec.names.listKind",
    "spec.names.singular",
    "spec.names.plural",
)

MatchOutcome = Tuple[bool, Optional[DiffResult]]


class DryRunner(Protocol):
    def dry_run_create(self, manifest_bytes: bytes, namespace: str) -> bytes: ...

    def get_apply_patch_bytes(self, manifest_bytes: bytes, namespace: str) -> Tuple[bytes, bytes]: ...


@dataclass(frozen=True)
class Comparison:
    """Everything a strategy needs to compare one object with one manifest."""
    obj_node: Node
    manifest_bytes: bytes
    cluster_scope: bool
    is_crd: bool
    mask_keys: Tuple[str, ...]
    dryrun: Optional[DryRunner]

    @property
    def dryrun_namespace(self) -> str:
        return "" if self.cluster_scope else DEFAULT_DRYRUN_NAMESPACE

    @property
    def dryrun_mask_keys(self) -> Tuple[str, ...]:
        mask = self.mask_keys + DRYRUN_MASK_KEYS
        if self.is_crd:
            mask += CRD_NAMES_MASK_KEYS
        return mask

    def runner(self) -> DryRunner:
        if self.dryrun is None:
            raise VerificationError("dry-run is not available")
        return self.dryrun


def _manifest_node(data: bytes, tree: str) -> Node:
    try:
        return Node.from_yaml_bytes(data)
    except ValueError as e:
        raise ParseError(f"failed to initialize {tree} node: {e}", tree=tree) from e


def _compare(obj_node: Node, other: Node, mask: Sequence[str]) -> MatchOutcome:
    diff = obj_node.mask(mask).diff(other.mask(mask))
    return diff is None, diff


def direct_match(c: Comparison) -> MatchOutcome:
    mnf_node = _manifest_node(c.manifest_bytes, "manifest")
    return _compare(c.obj_node, mnf_node, c.mask_keys)


def dryrun_create_match(c: Comparison) -> MatchOutcome:
    mnf_node = _manifest_node(c.manifest_bytes, "manifest")
    ns_masked = mnf_node.mask(["metadata.namespace"]).to_yaml()
    sim_bytes = c.runner().dry_run_create(ns_masked, c.dryrun_namespace)
    sim_node = _manifest_node(sim_bytes, "dry-run-generated object")
    return _compare(c.obj_node, sim_node, c.dryrun_mask_keys)


def dryrun_apply_match(c: Comparison) -> MatchOutcome:
    obj_namespace = c.obj_node.get_string("metadata.namespace")
    _, patched_bytes = c.runner().get_apply_patch_bytes(c.manifest_bytes, obj_namespace)
    patched_node = _manifest_node(patched_bytes, "patched object")
    ns_masked = patched_node.mask(["metadata.namespace"]).to_yaml()
    sim_bytes = c.runner().dry_run_create(ns_masked, c.dryrun_namespace)
    sim_node = _manifest_node(sim_bytes, "dry-run-generated object")
    return _compare(c.obj_node, sim_node, c.dryrun_mask_keys)


Strategy = Tuple[str, Callable[[Comparison], MatchOutcome]]


def strategies(check_dryrun_for_apply: bool) -> List[Strategy]:
    # TODO: add a dry-run patch strategy for objects reconciled by JSON/strategic-merge patches
    steps: List[Strategy] = [
        ("direct", direct_match),
        ("dryrun create", dryrun_create_match),
    ]
    if check_dryrun_for_apply:
        steps.append(("dryrun apply", dryrun_apply_match))
    return steps


def match_resource_with_manifest(obj: Resource, manifest_in_image: bytes, ignore_fields: Sequence[str],
                                 check_dryrun_for_apply: bool, dryrun: Optional[DryRunner] = None,
                                 mask_keys: Sequence[str] = COMMON_RESOURCE_MASK_KEYS) -> MatchOutcome:
    """
    Decide whether ``obj`` was produced from its manifest in ``manifest_in_image``.

    Strategies run from strictest to most permissive and the first one without
    a diff wins. If none does, the last diff minus ``ignore_fields`` decides.
    Returns (True, None) on match and (False, diff) otherwise; raises
    VerificationError only when a comparison could not be carried out.
    """
    api_version = get_api_version(obj)
    kind = get_kind(obj)
    name = get_name(obj)
    namespace = get_namespace(obj)
    logger.debug("matching %s %s %s/%s", api_version, kind, namespace, name)

    try:
        found = find_single_yaml(manifest_in_image, api_version, kind, name, namespace)
    except ValueError as e:
        raise ParseError(f"failed to read manifests in image: {e}", tree="manifest") from e
    if found is None:
        raise ManifestNotFoundError("failed to find the corresponding manifest YAML file in image")

    obj_node = Node.from_object(obj)

    comparison = Comparison(
        obj_node=obj_node,
        manifest_bytes=found,
        cluster_scope=namespace == "",
        is_crd=kind == CRD_KIND,
        mask_keys=tuple(mask_keys),
        dryrun=dryrun,
    )

    diff: Optional[DiffResult] = None
    for label, strategy in strategies(check_dryrun_for_apply):
        try:
            matched, diff = strategy(comparison)
        except VerificationError as e:
            raise wrap_error(e, "", f"error occurred during {label} match") from e
        logger.debug("%s match for %s/%s: %s", label, namespace, name, matched)
        if matched:
            return True, None

    if diff is not None and ignore_fields:
        removed, diff = diff.filter(ignore_fields)
        logger.debug("ignore fields removed %d diff entries", removed)
    if diff is None:
        return True, None
    return False, diff
