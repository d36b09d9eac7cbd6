# tests/test_module.py
"""Tests for update-module documents."""

import json
import tempfile
from pathlib import Path

import pytest

from utilreg.module import UpdateModule

DOCUMENT = {
    "name": "Dungeon Crawler",
    "attributes": ["hp", "level", "xp"],
    "collections": [
        {"chain_id": 1, "address": "0xC1", "attributes": [0, 1]},
        {"chain_id": 137, "address": "0xc2", "attributes": [2]},
    ],
}


@pytest.fixture
def module():
    return UpdateModule.from_dict(DOCUMENT)


class TestUpdateModule:
    """Test UpdateModule class."""

    def test_valid_document(self, module):
        assert module.validate() == []
        assert module.collections[0].address == "0xc1"

    def test_attributes_for(self, module):
        assert module.attributes_for(1, "0xc1") == ["hp", "level"]
        assert module.attributes_for(137, "0xC2") == ["xp"]
        assert module.attributes_for(1, "0xc2") is None

    def test_out_of_range_index(self):
        doc = dict(DOCUMENT, collections=[{"chain_id": 1, "address": "0xc1", "attributes": [3]}])
        errors = UpdateModule.from_dict(doc).validate()
        assert len(errors) == 1
        assert "attribute 3" in errors[0]

    def test_duplicate_attributes_and_collections(self):
        doc = {
            "name": "x",
            "attributes": ["hp", "hp"],
            "collections": [
                {"chain_id": 1, "address": "0xc1"},
                {"chain_id": 1, "address": "0xC1"},
            ],
        }
        errors = UpdateModule.from_dict(doc).validate()
        assert len(errors) == 2

    def test_missing_name(self):
        assert UpdateModule.from_dict({"attributes": []}).validate() == ["Module name is empty"]

    def test_content_hash_is_stable(self, module):
        reparsed = UpdateModule.from_json(module.to_json())
        assert reparsed.content_hash == module.content_hash
        assert len(module.content_hash) == 64

    def test_from_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "module.json"
            path.write_text(json.dumps(DOCUMENT))
            assert UpdateModule.from_file(path).name == "Dungeon Crawler"
