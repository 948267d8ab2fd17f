# =============================================================================
# mapnode: path handling, masking, diffing, filtering, document lookup
# =============================================================================

import json
import logging

import pytest

from k8s_manifest_verifier.constants import COMMON_RESOURCE_MASK_KEYS
from k8s_manifest_verifier.mapnode import (
    DiffItem,
    DiffResult,
    Node,
    find_single_yaml,
    join_path,
    path_covered,
    split_path,
)

from conftest import as_live, configmap, to_yaml


TREES = [
    configmap(),
    as_live(configmap()),
    {"spec": {"containers": [{"name": "a", "ports": [{"containerPort": 80}]}, {"name": "b"}]}},
    {},
]

MASKS = [
    [],
    list(COMMON_RESOURCE_MASK_KEYS),
    ["spec.containers.*.ports", "metadata.name"],
]


class TestPaths:

    def test_split_plain(self):
        assert split_path("metadata.labels.app") == ["metadata", "labels", "app"]

    def test_split_quoted_segment_keeps_dots(self):
        assert split_path('metadata.annotations."example.com/key"') == \
            ["metadata", "annotations", "example.com/key"]

    def test_join_quotes_dotted_segments(self):
        assert join_path(["metadata", "annotations", "a.b/c"]) == 'metadata.annotations."a.b/c"'

    def test_join_then_split_is_identity(self):
        segs = ["metadata", "annotations", "kubectl.kubernetes.io/last-applied-configuration"]
        assert split_path(join_path(segs)) == segs

    def test_path_covered_prefix_and_wildcard(self):
        assert path_covered("spec.containers.0.image", "spec.containers.*.image")
        assert path_covered("spec.containers.0.image", "spec.containers")
        assert not path_covered("spec.containers", "spec.containers.*.image")
        assert not path_covered("spec.replicas", "spec.template")


class TestMask:

    def test_mask_removes_nested_key(self):
        masked = Node.from_object(configmap(labels={"a": "1"})).mask(["metadata.labels.a"])
        assert masked.value["metadata"]["labels"] == {}

    def test_mask_does_not_touch_original(self):
        node = Node.from_object(configmap())
        node.mask(["data"])
        assert "data" in node.value

    def test_mask_wildcard_over_list(self):
        node = Node.from_object(TREES[2]).mask(["spec.containers.*.ports"])
        assert all("ports" not in c for c in node.value["spec"]["containers"])

    def test_mask_quoted_annotation(self):
        obj = configmap()
        obj["metadata"]["annotations"] = {"example.com/key": "x", "other": "y"}
        node = Node.from_object(obj).mask(['metadata.annotations."example.com/key"'])
        assert node.value["metadata"]["annotations"] == {"other": "y"}

    def test_mask_missing_path_is_noop(self):
        node = Node.from_object(configmap()).mask(["spec.nothing.here"])
        assert node.value == configmap()

    @pytest.mark.parametrize("tree", TREES)
    @pytest.mark.parametrize("mask", MASKS)
    def test_masked_tree_has_no_diff_with_itself(self, tree, mask):
        masked = Node.from_object(tree).mask(mask)
        assert masked.diff(Node.from_object(tree).mask(mask)) is None
        assert masked.mask(mask).diff(masked) is None


class TestDiff:

    @pytest.mark.parametrize("tree", TREES)
    def test_reflexive(self, tree):
        assert Node.from_object(tree).diff(Node.from_object(tree)) is None

    def test_added_label_reported_at_leaf(self):
        live = Node.from_object(configmap(labels={"injected": "yes"}))
        diff = live.diff(Node.from_object(configmap()))
        assert diff.keys() == ["metadata.labels.injected"]
        assert diff.items[0] == DiffItem("metadata.labels.injected", "yes", None)

    def test_changed_value(self):
        diff = Node.from_object(configmap(data={"k": "a"})).diff(Node.from_object(configmap(data={"k": "b"})))
        assert diff.items == (DiffItem("data.k", "a", "b"),)

    def test_null_equals_absent(self):
        assert Node({"a": None}).diff(Node({})) is None

    def test_empty_map_equals_absent(self):
        assert Node({"metadata": {"annotations": {}}}).diff(Node({"metadata": {}})) is None

    def test_bool_and_int_differ(self):
        assert Node({"a": True}).diff(Node({"a": 1})) is not None

    def test_list_length_difference(self):
        diff = Node({"l": [1, 2, 3]}).diff(Node({"l": [1, 2]}))
        assert diff.keys() == ["l.2"]

    def test_dotted_key_is_quoted_in_diff(self):
        diff = Node({"a": {"x.y": 1}}).diff(Node({"a": {}}))
        assert diff.keys() == ['a."x.y"']


class TestDiffResult:

    def _diff(self):
        return DiffResult.of([
            DiffItem("metadata.labels.injected", "yes", None),
            DiffItem("spec.replicas", 3, 1),
        ])

    def test_of_empty_is_none(self):
        assert DiffResult.of([]) is None

    def test_size(self):
        assert self._diff().size() == 2

    def test_filter_partial(self):
        removed, rest = self._diff().filter(["spec.replicas"])
        assert removed == 1
        assert rest.keys() == ["metadata.labels.injected"]

    def test_filter_superset_yields_none(self):
        removed, rest = self._diff().filter(["metadata.labels", "spec", "status"])
        assert removed == 2
        assert rest is None

    def test_filter_nothing(self):
        removed, rest = self._diff().filter([])
        assert removed == 0
        assert rest == self._diff()

    def test_json_round_trip(self):
        d = self._diff()
        assert DiffResult.from_dict(json.loads(json.dumps(d.to_dict()))) == d

    def test_from_empty_dict_is_none(self):
        assert DiffResult.from_dict({"items": []}) is None
        assert DiffResult.from_dict(None) is None


class TestNode:

    def test_get_string(self):
        node = Node.from_object(configmap(namespace="prod"))
        assert node.get_string("metadata.namespace") == "prod"
        assert node.get_string("metadata.missing") == ""
        assert node.get_string("metadata") == ""

    def test_get_list_index(self):
        assert Node.from_object(TREES[2]).get("spec.containers.1.name") == "b"

    def test_from_yaml_invalid(self):
        with pytest.raises(ValueError):
            Node.from_yaml_bytes(b"a: [1, 2")

    def test_yaml_keeps_timestamps_as_strings(self):
        node = Node.from_yaml_bytes(b"metadata:\n  creationTimestamp: 2024-01-01T00:00:00Z\n")
        assert node.get("metadata.creationTimestamp") == "2024-01-01T00:00:00Z"

    def test_to_yaml_parses_back(self):
        node = Node.from_object(configmap())
        assert Node.from_yaml_bytes(node.to_yaml()).diff(node) is None


class TestFindSingleYaml:

    def test_picks_matching_document(self):
        data = to_yaml(configmap(name="other"), configmap(name="sample-cm", data={"k": "v"}))
        found = Node.from_yaml_bytes(find_single_yaml(data, "v1", "ConfigMap", "sample-cm", "ns1"))
        assert found.get("data.k") == "v"

    def test_document_without_namespace_matches_any(self):
        data = to_yaml(configmap(namespace=""))
        assert find_single_yaml(data, "v1", "ConfigMap", "sample-cm", "anything") is not None

    def test_namespace_mismatch(self):
        data = to_yaml(configmap(namespace="ns1"))
        assert find_single_yaml(data, "v1", "ConfigMap", "sample-cm", "ns2") is None

    def test_kind_mismatch(self):
        data = to_yaml(configmap())
        assert find_single_yaml(data, "v1", "Secret", "sample-cm", "ns1") is None

    def test_list_items_are_searched(self):
        data = to_yaml({"apiVersion": "v1", "kind": "List", "items": [configmap()]})
        assert find_single_yaml(data, "v1", "ConfigMap", "sample-cm", "ns1") is not None

    def test_first_of_several_matches_wins(self, caplog):
        data = to_yaml(configmap(data={"n": "1"}), configmap(data={"n": "2"}))
        with caplog.at_level(logging.WARNING):
            found = Node.from_yaml_bytes(find_single_yaml(data, "v1", "ConfigMap", "sample-cm", "ns1"))
        assert found.get("data.n") == "1"
        assert "2 manifests match" in caplog.text

    def test_invalid_yaml_raises(self):
        with pytest.raises(ValueError):
            find_single_yaml(b"a: [", "v1", "ConfigMap", "x", "")
