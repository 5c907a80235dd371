"""Tests for image resolution."""

import pytest

from conftest import CATALOG

from azure_lb_deployer.deployment.images import resolve_latest_image
from azure_lb_deployer.exceptions import ResolutionError
from azure_lb_deployer.models import ImageReference


def _img(family, date, name, publisher="MicrosoftWindowsServer"):
    return ImageReference(family=family, publisher=publisher, published_date=date, image_name=name)


class TestResolveLatestImage:
    def test_picks_latest_in_family(self):
        image = resolve_latest_image(CATALOG, "*Windows Server 2022*")
        assert image.image_name == "win2022-jun"

    def test_family_match_is_case_insensitive(self):
        image = resolve_latest_image(CATALOG, "*windows server 2019*")
        assert image.image_name == "win2019-jan"

    def test_latest_across_families(self):
        image = resolve_latest_image(CATALOG, "*Windows Server*")
        assert image.image_name == "win2022-jun"

    def test_publisher_restriction(self):
        image = resolve_latest_image(CATALOG, "*", only_from_publisher="Microsoft*")
        assert image.publisher.startswith("Microsoft")
        assert image.image_name == "win2022-jun"

    def test_publisher_excludes_everything(self):
        with pytest.raises(ResolutionError, match="Microsoft"):
            resolve_latest_image(CATALOG, "*Ubuntu*", only_from_publisher="Microsoft*")

    def test_no_family_match(self):
        with pytest.raises(ResolutionError, match="CentOS"):
            resolve_latest_image(CATALOG, "*CentOS*")

    def test_empty_catalog(self):
        with pytest.raises(ResolutionError):
            resolve_latest_image([], "*")

    def test_deterministic(self):
        first = resolve_latest_image(CATALOG, "*Windows*", "Microsoft*")
        for _ in range(5):
            assert resolve_latest_image(CATALOG, "*Windows*", "Microsoft*") == first

    def test_tie_keeps_first(self):
        images = [
            _img("WindowsServer 2022-datacenter", "2024.1.1", "first"),
            _img("WindowsServer 2022-datacenter", "2024.1.1", "second"),
        ]
        assert resolve_latest_image(images, "*2022*").image_name == "first"

    def test_tie_across_families_keeps_first_family(self):
        images = [
            _img("WindowsServer 2022-datacenter", "2024.1.1", "dc"),
            _img("WindowsServer 2022-datacenter-core", "2024.1.1", "core"),
        ]
        assert resolve_latest_image(images, "*2022*").image_name == "dc"

    def test_dotted_versions_compare_numerically(self):
        images = [
            _img("0001-com-ubuntu-server-jammy 22_04-lts", "22.04.202309090", "sep", publisher="Canonical"),
            _img("0001-com-ubuntu-server-jammy 22_04-lts", "22.04.202310250", "oct", publisher="Canonical"),
            _img("0001-com-ubuntu-server-jammy 22_04-lts", "22.04.20231011", "short", publisher="Canonical"),
        ]
        assert resolve_latest_image(images, "*ubuntu*").image_name == "oct"

    def test_question_mark_wildcard(self):
        image = resolve_latest_image(CATALOG, "Windows Server 20?9 Datacenter")
        assert image.image_name == "win2019-jan"
