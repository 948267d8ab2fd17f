
from dataclasses import dataclass
from typing import Any, Dict, Optional
import json

from .mapnode import DiffResult


@dataclass(frozen=True)
class VerifyResourceResult:
    verified: bool
    in_scope: bool
    signer: str = ""
    sig_ref: str = ""
    diff: Optional[DiffResult] = None  # None when the manifest matched

    def to_dict(self) -> Dict[str, Any]:
        return {
            'verified': self.verified,
            'inScope': self.in_scope,
            'signer': self.signer,
            'sigRef': self.sig_ref,
            'diff': self.diff.to_dict() if self.diff is not None else None,
        }

    def __str__(self) -> str:
        return json.dumps(self.to_dict())
