"""
Tests for parsing the Action's src/defaults.json.
"""

import pytest

from action_sync.errors import SyncError
from action_sync.models.configuration import ERROR_BUNDLE_VERSION_NOT_SET, parse


class TestParse:

    def test_valid(self):
        configuration = parse('{"bundleVersion": "codeql-bundle-20200101"}')
        assert configuration.bundle_version == "codeql-bundle-20200101"

    def test_unknown_fields_ignored(self):
        configuration = parse(
            '{"bundleVersion": "codeql-bundle-20200101", "cliVersion": "2.0.0", "nested": {"a": 1}}'
        )
        assert configuration.bundle_version == "codeql-bundle-20200101"

    def test_missing_bundle_version(self):
        with pytest.raises(SyncError) as exc_info:
            parse('{"cliVersion": "2.0.0"}')
        assert str(exc_info.value) == ERROR_BUNDLE_VERSION_NOT_SET

    def test_empty_bundle_version(self):
        with pytest.raises(SyncError) as exc_info:
            parse('{"bundleVersion": ""}')
        assert str(exc_info.value) == ERROR_BUNDLE_VERSION_NOT_SET

    def test_malformed_json(self):
        with pytest.raises(SyncError) as exc_info:
            parse("{bundleVersion: ")
        assert "Error decoding Action default configuration." in str(exc_info.value)

    def test_not_an_object(self):
        with pytest.raises(SyncError):
            parse('["codeql-bundle-20200101"]')

    def test_non_string_bundle_version(self):
        with pytest.raises(SyncError):
            parse('{"bundleVersion": 5}')
