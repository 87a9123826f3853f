"""Tests for the table-backed bill of materials."""

import pytest

from fleetdag.kernel.exceptions import ConfigurationError, ResourceNotFoundError
from fleetdag.kernel.ports.bom import BOMResolver, ComponentVersion
from fleetdag.stdlib.bom.static_bom import StaticBOM

TABLE = {
    "etcd": {
        "v1.28.2": {"version": "v3.5.10", "checksum": "sha256:abc"},
        "v1.28": {"version": "v3.5.9"},
        "*": "v3.5.12",
    },
    "pause": {"1.27": "3.9"},
}


@pytest.fixture
def bom() -> StaticBOM:
    return StaticBOM(TABLE)


class TestStaticBOM:
    def test_is_a_resolver(self, bom: StaticBOM) -> None:
        assert isinstance(bom, BOMResolver)

    def test_exact_version_wins(self, bom: StaticBOM) -> None:
        assert bom.resolve("etcd", "v1.28.2") == ComponentVersion(
            "etcd", "v3.5.10", checksum="sha256:abc"
        )

    def test_minor_series_then_wildcard(self, bom: StaticBOM) -> None:
        assert bom.resolve("etcd", "1.28.7").version == "v3.5.9"
        assert bom.resolve("etcd", "v1.30.0").version == "v3.5.12"

    def test_patterns_without_v_prefix(self, bom: StaticBOM) -> None:
        assert bom.resolve("pause", "v1.27.3").version == "3.9"

    def test_unknown_component(self, bom: StaticBOM) -> None:
        with pytest.raises(ResourceNotFoundError, match="coredns"):
            bom.resolve("coredns", "v1.28.2")

    def test_no_matching_pattern(self, bom: StaticBOM) -> None:
        with pytest.raises(ResourceNotFoundError, match="v1.29.0"):
            bom.resolve("pause", "v1.29.0")

    def test_entry_without_version(self) -> None:
        with pytest.raises(ConfigurationError, match="etcd/v1.28"):
            StaticBOM({"etcd": {"v1.28": {"checksum": "sha256:abc"}}})

    def test_components(self, bom: StaticBOM) -> None:
        assert bom.components() == ["etcd", "pause"]

    def test_from_yaml(self, tmp_path) -> None:
        path = tmp_path / "bom.yaml"
        path.write_text(
            "etcd:\n"
            "  v1.28: {version: v3.5.9, url: 'https://example.invalid/etcd.tgz'}\n"
            "containerd:\n"
            "  '*': {version: 1.7.13}\n"
        )

        bom = StaticBOM.from_yaml(path)

        assert bom.resolve("etcd", "v1.28.1").url == "https://example.invalid/etcd.tgz"
        assert bom.resolve("containerd", "v1.30.0").version == "1.7.13"

    def test_from_yaml_rejects_non_mapping(self, tmp_path) -> None:
        path = tmp_path / "bom.yaml"
        path.write_text("- etcd\n")
        with pytest.raises(ConfigurationError):
            StaticBOM.from_yaml(path)
