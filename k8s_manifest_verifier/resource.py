
from typing import Any, Dict, Tuple

Resource = Dict[str, Any]


def _metadata(obj: Resource) -> Dict[str, Any]:
    return obj.get('metadata') or {}


def get_api_version(obj: Resource) -> str:
    return obj.get('apiVersion') or ''


def get_kind(obj: Resource) -> str:
    return obj.get('kind') or ''


def get_name(obj: Resource) -> str:
    return _metadata(obj).get('name') or ''


def get_namespace(obj: Resource) -> str:
    return _metadata(obj).get('namespace') or ''


def get_annotations(obj: Resource) -> Dict[str, str]:
    return _metadata(obj).get('annotations') or {}


def split_api_version(api_version: str) -> Tuple[str, str]:
    """'apps/v1' -> ('apps', 'v1'); core 'v1' -> ('', 'v1')."""
    if '/' in api_version:
        group, version = api_version.split('/', 1)
        return group, version
    return '', api_version


def describe(obj: Resource) -> str:
    ns = get_namespace(obj)
    name = get_name(obj)
    return f"{get_kind(obj)} {ns + '/' if ns else ''}{name}"
