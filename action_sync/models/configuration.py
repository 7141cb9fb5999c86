"""
Action Configuration — The defaults file shipped inside the Action.

Each release branch of the Action carries ``src/defaults.json``, which names
the CodeQL bundle release that branch needs. Only ``bundleVersion`` matters
here; any other field is ignored so upstream additions never break parsing.
"""

from __future__ import annotations

import json

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import SyncError

DEFAULT_CONFIGURATION_PATH = "src/defaults.json"

ERROR_BUNDLE_VERSION_NOT_SET = (
    'The property "bundleVersion" was not set in the Action default configuration.'
)


class ActionConfiguration(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    bundle_version: str = Field(default="", alias="bundleVersion")


def parse(contents: str) -> ActionConfiguration:
    """Parse the defaults file, requiring a non-empty ``bundleVersion``."""
    try:
        data = json.loads(contents)
    except ValueError as e:
        raise SyncError("Error decoding Action default configuration.", cause=e)
    if not isinstance(data, dict):
        raise SyncError(
            "Error decoding Action default configuration: expected a JSON object."
        )

    try:
        configuration = ActionConfiguration.model_validate(data)
    except ValidationError as e:
        raise SyncError("Error decoding Action default configuration.", cause=e)

    if not configuration.bundle_version:
        raise SyncError(ERROR_BUNDLE_VERSION_NOT_SET)
    return configuration
