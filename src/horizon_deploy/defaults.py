"""Default package and flatpak sets per layer purpose."""

from __future__ import annotations

from types import MappingProxyType

from horizon_deploy.models import LayerPurpose

DEFAULT_LAYER_IMAGE = "docker.io/archlinux/archlinux"

DEFAULT_LAYER_PACKAGES = MappingProxyType({
    LayerPurpose.DEVELOPMENT: (
        "git", "curl", "wget", "vim", "base-devel",
        "gcc", "make", "cmake", "python", "nodejs", "rust", "go",
    ),
    LayerPurpose.GAMING: (
        "steam", "lutris", "wine", "gamemode", "mangohud",
        "vulkan-tools", "mesa-utils",
    ),
    LayerPurpose.MULTIMEDIA: (
        "ffmpeg", "imagemagick", "gimp", "audacity", "blender",
        "inkscape", "krita", "obs-studio", "vlc",
    ),
    LayerPurpose.OFFICE: (
        "libreoffice-fresh", "thunderbird", "firefox", "chromium",
        "texlive-basic", "pandoc", "zathura",
    ),
    LayerPurpose.SECURITY: (
        "nmap", "wireshark-cli", "john", "hashcat", "aircrack-ng", "sqlmap",
    ),
    LayerPurpose.NETWORKING: (
        "iperf3", "traceroute", "tcpdump", "net-tools", "bind", "curl", "wget",
    ),
    LayerPurpose.CUSTOM: (),
    LayerPurpose.CORE: (),
})

DEFAULT_LAYER_FLATPAKS = MappingProxyType({
    LayerPurpose.DEVELOPMENT: (
        "com.visualstudio.code",
        "org.gnome.Builder",
        "io.github.shiftey.Desktop",
    ),
    LayerPurpose.GAMING: (
        "com.valvesoftware.Steam",
        "net.lutris.Lutris",
        "com.discordapp.Discord",
    ),
    LayerPurpose.MULTIMEDIA: (
        "org.gimp.GIMP",
        "org.audacityteam.Audacity",
        "org.blender.Blender",
        "org.inkscape.Inkscape",
    ),
    LayerPurpose.OFFICE: (
        "org.libreoffice.LibreOffice",
        "org.mozilla.firefox",
        "org.mozilla.Thunderbird",
    ),
    LayerPurpose.SECURITY: (
        "org.wireshark.Wireshark",
        "com.github.jeromerobert.pdfarranger",
    ),
    LayerPurpose.NETWORKING: (
        "org.wireshark.Wireshark",
        "com.github.phase1geo.minder",
    ),
    LayerPurpose.CUSTOM: (),
    LayerPurpose.CORE: (),
})


def default_packages(purpose: LayerPurpose) -> tuple[str, ...]:
    """Get the default container packages for a layer purpose."""
    return DEFAULT_LAYER_PACKAGES[purpose]


def default_flatpaks(purpose: LayerPurpose) -> tuple[str, ...]:
    """Get the default flatpak application IDs for a layer purpose."""
    return DEFAULT_LAYER_FLATPAKS[purpose]
