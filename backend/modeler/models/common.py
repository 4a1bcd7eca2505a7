from __future__ import annotations

import uuid
from datetime import datetime, timezone


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_model_id() -> str:
    return str(uuid.uuid4())
