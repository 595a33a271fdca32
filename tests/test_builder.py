"""Tests for configuration builders."""

from __future__ import annotations

import pytest

from horizon_deploy.builder import ConfigBuilder, LayersBuilder, purpose_container
from horizon_deploy.defaults import DEFAULT_LAYER_IMAGE, default_flatpaks, default_packages
from horizon_deploy.errors import ConfigValidationError
from horizon_deploy.models import CompiledConfig, DesktopEnvironment, LayerPurpose, PackageAction


class TestLayersBuilder:
    """Tests for LayersBuilder."""

    def test_purpose_defaults(self) -> None:
        """Test a layer without a container gets its purpose's packages."""
        layers = LayersBuilder().system_layer("games", LayerPurpose.GAMING).build()

        container = layers.system[0].container
        assert container.image == DEFAULT_LAYER_IMAGE
        assert container.packages == default_packages(LayerPurpose.GAMING)
        assert "steam" in container.packages

    def test_default_flatpaks_deduplicated(self) -> None:
        """Test purpose flatpaks are added once even when purposes overlap."""
        layers = (
            LayersBuilder()
            .flatpak("org.wireshark.Wireshark", branch="beta")
            .system_layer("sec", LayerPurpose.SECURITY, with_default_flatpaks=True)
            .system_layer("net", LayerPurpose.NETWORKING, with_default_flatpaks=True)
            .build()
        )

        ids = [f.id for f in layers.user.flatpaks]
        assert ids.count("org.wireshark.Wireshark") == 1
        assert layers.user.flatpaks[0].branch == "beta"
        assert set(default_flatpaks(LayerPurpose.NETWORKING)) <= set(ids)

    def test_base_extends_defaults(self) -> None:
        """Test base packages and services add to the default set."""
        layers = LayersBuilder().base(packages=["btrfs-progs"], tag="testing").build()

        assert layers.base.packages[-1] == "btrfs-progs"
        assert "ostree" in layers.base.packages
        assert layers.base.tag == "testing"

    def test_user_layer_and_order(self) -> None:
        """Test user applications, order and mounts are carried into the config."""
        layers = (
            LayersBuilder()
            .system_layer("a")
            .system_layer("b")
            .app_image("tool", "https://example.com/tool", checksum="sha256:00")
            .snap("code", classic=True)
            .user_options(user_scope=False)
            .order("b", "a")
            .global_mount("/home:/home")
            .shared_volume("cache")
            .build()
        )

        assert layers.layer_order == ("b", "a")
        assert layers.user.app_images[0].checksum == "sha256:00"
        assert layers.user.snaps[0].classic is True
        assert layers.user.user_scope is False
        assert layers.user.auto_updates is True
        assert layers.global_mounts == ("/home:/home",)
        assert layers.shared_volumes == ("cache",)

    def test_purpose_container_overrides(self) -> None:
        """Test container fields can override the purpose defaults."""
        container = purpose_container(LayerPurpose.OFFICE, packages=("abiword",), tag="base")

        assert container.packages == ("abiword",)
        assert container.tag == "base"


class TestConfigBuilder:
    """Tests for ConfigBuilder."""

    def test_build_full(self, full_config: CompiledConfig) -> None:
        """Test the shared fixture builds every section."""
        assert full_config.system.hostname == "workstation"
        assert [p.action for p in full_config.packages] == [
            PackageAction.INSTALL,
            PackageAction.INSTALL,
            PackageAction.REMOVE,
        ]
        assert full_config.desktop.auto_login is True
        assert full_config.automation.workflows[0].actions == ("run-backup",)
        assert [layer.name for layer in full_config.layers.system] == ["dev", "media"]

    def test_build_validates(self) -> None:
        """Test build raises with every validation error."""
        builder = ConfigBuilder().system(hostname="bad host").install("vim").remove("vim")

        with pytest.raises(ConfigValidationError) as exc_info:
            builder.build()

        assert len(exc_info.value.errors) == 2

    def test_freeze_skips_validation(self) -> None:
        """Test freeze returns invalid configurations as-is."""
        config = ConfigBuilder().system(hostname="bad host").freeze()

        assert config.system.hostname == "bad host"

    def test_desktop_without_auto_login(self) -> None:
        """Test auto-login stays off unless a user is named."""
        config = ConfigBuilder().desktop(DesktopEnvironment.GNOME).build()

        assert config.desktop.auto_login is False

    def test_service_options(self) -> None:
        """Test service options produce a service config."""
        config = (
            ConfigBuilder()
            .service("web", environment={"PORT": "80"}, restart_on_failure=False)
            .service("sshd")
            .build()
        )

        assert config.services[0].config.environment == {"PORT": "80"}
        assert config.services[0].config.restart_on_failure is False
        assert config.services[1].config is None

    def test_ostree_repository(self) -> None:
        """Test OSTree repositories carry their branches."""
        config = ConfigBuilder().ostree_repository("horizon", "https://ostree.example", ["stable"]).build()

        assert config.repositories[0].is_ostree
        assert config.repositories[0].branches == ("stable",)

    def test_workflows_accumulate(self) -> None:
        """Test each workflow call appends to the automation config."""
        config = ConfigBuilder().workflow("a", "x").workflow("b", "y", enabled=False).build()

        assert [w.name for w in config.automation.workflows] == ["a", "b"]
        assert config.automation.workflows[1].enabled is False
