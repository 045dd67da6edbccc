"""Tests for shared types."""

from pathlib import Path

from kone.types import MANIFEST_FILENAME, LayerRole, SourceUnit


class TestSourceUnit:
    """Tests for SourceUnit dataclass."""

    def test_paths(self):
        """Should locate the directory and its package.json."""
        unit = SourceUnit("/src", "app1")

        assert unit.directory == Path("/src/app1")
        assert unit.manifest_path == Path("/src/app1") / MANIFEST_FILENAME

    def test_key_normalized(self):
        """Should normalize the joined path."""
        assert SourceUnit("/src/", "./app1/").key == "/src/app1"
        assert SourceUnit("/src", "/abs/app").key == "/abs/app"


class TestLayerRole:
    """Tests for LayerRole enum."""

    def test_values(self):
        """Should name the two layer roles."""
        assert LayerRole.APPLICATION.value == "application"
        assert LayerRole.DATA.value == "data"
