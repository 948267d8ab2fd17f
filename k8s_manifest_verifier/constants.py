
from typing import Tuple

ANNOTATION_PREFIX = "cosign.sigstore.dev"

IMAGE_REF_ANNOTATION_KEY = ANNOTATION_PREFIX + "/imageRef"
SIGNATURE_ANNOTATION_KEY = ANNOTATION_PREFIX + "/signature"
CERTIFICATE_ANNOTATION_KEY = ANNOTATION_PREFIX + "/certificate"
MESSAGE_ANNOTATION_KEY = ANNOTATION_PREFIX + "/message"
BUNDLE_ANNOTATION_KEY = ANNOTATION_PREFIX + "/bundle"

CRD_KIND = "CustomResourceDefinition"

# Fields every live object carries that a signed manifest never does.
COMMON_RESOURCE_MASK_KEYS: Tuple[str, ...] = (
    'metadata.annotations."%s"' % IMAGE_REF_ANNOTATION_KEY,
    'metadata.annotations."%s"' % SIGNATURE_ANNOTATION_KEY,
    'metadata.annotations."%s"' % CERTIFICATE_ANNOTATION_KEY,
    'metadata.annotations."%s"' % MESSAGE_ANNOTATION_KEY,
    'metadata.annotations."%s"' % BUNDLE_ANNOTATION_KEY,
    "metadata.annotations.namespace",
    'metadata.annotations."kubectl.kubernetes.io/last-applied-configuration"',
    "metadata.managedFields",
    "metadata.creationTimestamp",
    "metadata.generation",
    'metadata.annotations."deprecated.daemonset.template.generation"',
    "metadata.namespace",
    "metadata.resourceVersion",
    "metadata.selfLink",
    "metadata.uid",
    "status",
)
