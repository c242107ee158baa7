from __future__ import annotations

import uuid

from fastapi import Header


def get_request_id(x_request_id: str | None = Header(None)) -> str:
    if x_request_id and x_request_id.strip():
        return x_request_id.strip()
    return uuid.uuid4().hex
