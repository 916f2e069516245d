from __future__ import annotations

import hashlib
import json
import re

from chorus.core.providers.base import GenerationRequest


def _normalize(text: str | None) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def fingerprint(request: GenerationRequest) -> str:
    key_data = {
        "context": _normalize(request.context),
        "persona_id": str(request.persona_id),
        "prompt": _normalize(request.prompt),
    }
    encoded = json.dumps(key_data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()
