
from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .resource import Resource, get_api_version, get_kind, get_name, get_namespace, split_api_version


def match_pattern(pattern: str, value: str) -> bool:
    """Empty pattern matches anything; otherwise shell-style wildcards."""
    if not pattern:
        return True
    return fnmatchcase(value, pattern)


@dataclass(frozen=True)
class ObjectReference:
    group: str = ''
    version: str = ''
    kind: str = ''
    name: str = ''
    namespace: str = ''

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'ObjectReference':
        group, version = d.get('group', ''), d.get('version', '')
        if d.get('apiVersion'):
            group, version = split_api_version(d['apiVersion'])
        return cls(
            group=group or '',
            version=version or '',
            kind=d.get('kind') or '',
            name=d.get('name') or '',
            namespace=d.get('namespace') or '',
        )

    def match(self, obj: Resource) -> bool:
        group, version = split_api_version(get_api_version(obj))
        return (match_pattern(self.group, group)
                and match_pattern(self.version, version)
                and match_pattern(self.kind, get_kind(obj))
                and match_pattern(self.name, get_name(obj))
                and match_pattern(self.namespace, get_namespace(obj)))


class ObjectReferenceList(List[ObjectReference]):
    """Resources selected by reference, e.g. the ``skipObjects`` setting."""

    @classmethod
    def from_list(cls, items: Optional[Iterable[Dict[str, Any]]]) -> 'ObjectReferenceList':
        return cls(ObjectReference.from_dict(i) for i in items or [])

    def match(self, obj: Resource) -> bool:
        return any(ref.match(obj) for ref in self)


@dataclass(frozen=True)
class ObjectFieldBinding:
    fields: Tuple[str, ...] = ()
    objects: ObjectReferenceList = field(default_factory=ObjectReferenceList)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'ObjectFieldBinding':
        return cls(
            fields=tuple(d.get('fields') or ()),
            objects=ObjectReferenceList.from_list(d.get('objects')),
        )

    def match(self, obj: Resource) -> bool:
        return self.objects.match(obj)


class ObjectFieldBindingList(List[ObjectFieldBinding]):
    """Per-object extra ignore fields (``ignoreFields``)."""

    @classmethod
    def from_list(cls, items: Optional[Iterable[Dict[str, Any]]]) -> 'ObjectFieldBindingList':
        return cls(ObjectFieldBinding.from_dict(i) for i in items or [])

    def match(self, obj: Resource) -> Tuple[bool, List[str]]:
        fields: List[str] = []
        matched = False
        for binding in self:
            if binding.match(obj):
                matched = True
                fields.extend(binding.fields)
        return matched, fields


class SignerList(List[str]):
    """Trusted signer identities. An empty list trusts any signer."""

    def match(self, signer: str) -> bool:
        if not self:
            return True
        return any(match_pattern(p, signer) for p in self if p)
