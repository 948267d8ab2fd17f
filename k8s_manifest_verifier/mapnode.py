
from dataclasses import dataclass
from fnmatch import fnmatchcase
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple
import copy
import json
import logging

import yaml

logger = logging.getLogger(__name__)


class _Loader(yaml.SafeLoader):
    """SafeLoader that keeps timestamps as strings, like the API server does."""


_Loader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag != "tag:yaml.org,2002:timestamp"]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


# ---------------- Paths ----------------

def split_path(path: str) -> List[str]:
    """
    Split a dotted path into segments. Double quotes protect dots inside a
    segment: 'metadata.annotations."example.com/key"' has three segments.
    """
    segs: List[str] = []
    buf: List[str] = []
    quoted = False
    for ch in path:
        if ch == '"':
            quoted = not quoted
        elif ch == '.' and not quoted:
            segs.append(''.join(buf))
            buf = []
        else:
            buf.append(ch)
    segs.append(''.join(buf))
    return segs


def join_path(segs: Sequence[str]) -> str:
    return '.'.join('"%s"' % s if '.' in s else s for s in segs)


def _segment_matches(pattern: str, key: str) -> bool:
    return pattern == '*' or pattern == key or fnmatchcase(key, pattern)


def path_covered(path: str, pattern: str) -> bool:
    """True when ``path`` equals ``pattern`` or lies beneath it."""
    segs = split_path(path)
    psegs = split_path(pattern)
    if len(psegs) > len(segs):
        return False
    return all(_segment_matches(p, s) for p, s in zip(psegs, segs))


# ---------------- Diff ----------------

@dataclass(frozen=True)
class DiffItem:
    key: str
    before: Any = None
    after: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {'key': self.key, 'values': {'before': self.before, 'after': self.after}}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'DiffItem':
        values = d.get('values') or {}
        return cls(key=d['key'], before=values.get('before'), after=values.get('after'))


@dataclass(frozen=True)
class DiffResult:
    """
    A non-empty set of path-level differences between two trees.

    An empty difference is never represented by a DiffResult: every producer
    goes through ``DiffResult.of`` which returns None for no items, so callers
    test ``diff is None`` instead of checking sizes.
    """
    items: Tuple[DiffItem, ...]

    @classmethod
    def of(cls, items: Iterable[DiffItem]) -> Optional['DiffResult']:
        items = tuple(items)
        if not items:
            return None
        return cls(items=items)

    def size(self) -> int:
        return len(self.items)

    def keys(self) -> List[str]:
        return [i.key for i in self.items]

    def filter(self, paths: Iterable[str]) -> Tuple[int, Optional['DiffResult']]:
        """Drop items under any of ``paths``; returns (removed count, remainder)."""
        paths = list(paths)
        kept = [i for i in self.items if not any(path_covered(i.key, p) for p in paths)]
        return len(self.items) - len(kept), DiffResult.of(kept)

    def to_dict(self) -> Dict[str, Any]:
        return {'items': [i.to_dict() for i in self.items]}

    @classmethod
    def from_dict(cls, d: Optional[Dict[str, Any]]) -> Optional['DiffResult']:
        if not d:
            return None
        return cls.of(DiffItem.from_dict(i) for i in d.get('items') or [])

    def __str__(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)


def _scalar_equal(a: Any, b: Any) -> bool:
    if isinstance(a, bool) or isinstance(b, bool):
        return type(a) is type(b) and a == b
    return a == b


def _diff(a: Any, b: Any, path: List[str], out: List[DiffItem]) -> None:
    # null and absent are the same thing for the API server
    if a is None and b is None:
        return
    if isinstance(a, (dict, type(None))) and isinstance(b, (dict, type(None))):
        da = a or {}
        db = b or {}
        keys = list(da.keys()) + [k for k in db.keys() if k not in da]
        for key in keys:
            _diff(da.get(key), db.get(key), path + [str(key)], out)
        return
    if isinstance(a, (list, type(None))) and isinstance(b, (list, type(None))):
        la = a or []
        lb = b or []
        for i in range(max(len(la), len(lb))):
            _diff(la[i] if i < len(la) else None, lb[i] if i < len(lb) else None, path + [str(i)], out)
        return
    if not _scalar_equal(a, b):
        out.append(DiffItem(key=join_path(path), before=a, after=b))


# ---------------- Node ----------------

def _remove(value: Any, segs: List[str]) -> None:
    head, rest = segs[0], segs[1:]
    if isinstance(value, dict):
        for key in list(value.keys()):
            if _segment_matches(head, str(key)):
                if rest:
                    _remove(value[key], rest)
                else:
                    del value[key]
    elif isinstance(value, list):
        idx = [i for i in range(len(value)) if _segment_matches(head, str(i))]
        if rest:
            for i in idx:
                _remove(value[i], rest)
        else:
            for i in reversed(idx):
                del value[i]


class Node:
    """A parsed JSON/YAML tree supporting masking, diffing and path lookup."""

    def __init__(self, value: Any):
        self.value = value

    @classmethod
    def from_object(cls, obj: Any) -> 'Node':
        return cls(copy.deepcopy(obj))

    @classmethod
    def from_yaml_bytes(cls, data: bytes) -> 'Node':
        try:
            return cls(yaml.load(data, Loader=_Loader))
        except yaml.YAMLError as e:
            raise ValueError(f"invalid YAML: {e}") from e

    def mask(self, paths: Iterable[str]) -> 'Node':
        value = copy.deepcopy(self.value)
        for p in paths:
            _remove(value, split_path(p))
        return Node(value)

    def diff(self, other: 'Node') -> Optional[DiffResult]:
        out: List[DiffItem] = []
        _diff(self.value, other.value, [], out)
        return DiffResult.of(out)

    def get(self, path: str) -> Any:
        cur = self.value
        for seg in split_path(path):
            if isinstance(cur, dict):
                cur = cur.get(seg)
            elif isinstance(cur, list) and seg.isdigit() and int(seg) < len(cur):
                cur = cur[int(seg)]
            else:
                return None
        return cur

    def get_string(self, path: str) -> str:
        v = self.get(path)
        if v is None or isinstance(v, (dict, list)):
            return ''
        return str(v)

    def to_yaml(self) -> bytes:
        return yaml.safe_dump(self.value, sort_keys=False).encode('utf-8')


# ---------------- Multi-document lookup ----------------

def load_documents(data: bytes) -> List[Any]:
    try:
        return [d for d in yaml.load_all(data, Loader=_Loader) if d is not None]
    except yaml.YAMLError as e:
        raise ValueError(f"invalid YAML: {e}") from e


def _expand(docs: Iterable[Any]) -> Iterator[Dict[str, Any]]:
    for doc in docs:
        if not isinstance(doc, dict):
            continue
        if doc.get('kind') == 'List' and isinstance(doc.get('items'), list):
            yield from _expand(doc['items'])
        else:
            yield doc


def find_single_yaml(data: bytes, api_version: str, kind: str, name: str, namespace: str) -> Optional[bytes]:
    """
    Return the first document in ``data`` with the given identity, as YAML.
    A document without a namespace matches any namespace.
    """
    matches = []
    for doc in _expand(load_documents(data)):
        meta = doc.get('metadata') or {}
        if doc.get('apiVersion') != api_version or doc.get('kind') != kind:
            continue
        if meta.get('name') != name:
            continue
        doc_ns = meta.get('namespace') or ''
        if doc_ns and namespace and doc_ns != namespace:
            continue
        matches.append(doc)
    if not matches:
        return None
    if len(matches) > 1:
        logger.warning("%d manifests match %s %s/%s; using the first one", len(matches), kind, namespace, name)
    return yaml.safe_dump(matches[0], sort_keys=False).encode('utf-8')
