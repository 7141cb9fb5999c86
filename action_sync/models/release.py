"""
Release Models — Pydantic views over the GitHub release API payloads.

The cache stores the raw release JSON untouched apart from
``target_commitish``; these models pick out the fields the engines act on.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

# May name a branch (usually main) that the destination does not have yet.
STRIPPED_RELEASE_FIELDS = ("target_commitish",)

# Fields sent when creating or editing a release on the destination.
WRITABLE_RELEASE_FIELDS = ("tag_name", "name", "body", "draft", "prerelease")


class ReleaseAsset(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    name: str
    size: int = 0
    url: Optional[str] = None
    browser_download_url: Optional[str] = None
    content_type: Optional[str] = None


class Release(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    tag_name: str
    name: Optional[str] = None
    body: Optional[str] = None
    draft: bool = False
    prerelease: bool = False
    upload_url: Optional[str] = None
    assets: List[ReleaseAsset] = []


def strip_release_metadata(data: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of ``data`` without the fields that must not reach the destination."""
    return {k: v for k, v in data.items() if k not in STRIPPED_RELEASE_FIELDS}


def release_request_body(data: Dict[str, Any]) -> Dict[str, Any]:
    """The create/edit payload for a cached release description."""
    body = {}
    for key in WRITABLE_RELEASE_FIELDS:
        if data.get(key) is not None:
            body[key] = data[key]
    return body
