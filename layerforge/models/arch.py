"""Target architectures and their OCI platform mapping."""

from __future__ import annotations

from enum import Enum


class Architecture(str, Enum):
    """A target architecture, named the way APK repositories name it.

    ``str(arch)`` is the canonical form: it is what SBOM file names use and
    what every architecture-ordered output sorts by.
    """

    X86_64 = "x86_64"
    AARCH64 = "aarch64"
    ARMV7 = "armv7"
    ARMHF = "armhf"
    PPC64LE = "ppc64le"
    S390X = "s390x"
    X86 = "x86"
    RISCV64 = "riscv64"
    LOONGARCH64 = "loongarch64"

    def __str__(self) -> str:
        return self.value

    def to_apk(self) -> str:
        """The APK repository name for this architecture."""
        return self.value

    @property
    def oci_architecture(self) -> str:
        return _OCI_PLATFORMS[self][0]

    @property
    def oci_variant(self) -> str:
        return _OCI_PLATFORMS[self][1]

    def to_oci_platform(self) -> dict[str, str]:
        """Platform object for an image config or index descriptor."""
        platform = {"architecture": self.oci_architecture, "os": "linux"}
        if self.oci_variant:
            platform["variant"] = self.oci_variant
        return platform

    @classmethod
    def parse(cls, name: str) -> Architecture:
        """Parse an APK name (``aarch64``) or an OCI name (``arm64``)."""
        value = name.strip().lower()
        for arch in cls:
            if value == arch.value:
                return arch
        for arch, (oci_arch, variant) in _OCI_PLATFORMS.items():
            oci_name = f"{oci_arch}/{variant}" if variant else oci_arch
            if value in (oci_name, f"linux/{oci_name}"):
                return arch
        raise ValueError(f"unsupported architecture: {name!r}")


# APK architecture -> (OCI architecture, OCI variant)
_OCI_PLATFORMS: dict[Architecture, tuple[str, str]] = {
    Architecture.X86_64: ("amd64", ""),
    Architecture.AARCH64: ("arm64", ""),
    Architecture.ARMV7: ("arm", "v7"),
    Architecture.ARMHF: ("arm", "v6"),
    Architecture.PPC64LE: ("ppc64le", ""),
    Architecture.S390X: ("s390x", ""),
    Architecture.X86: ("386", ""),
    Architecture.RISCV64: ("riscv64", ""),
    Architecture.LOONGARCH64: ("loong64", ""),
}


def sorted_architectures(archs) -> list[Architecture]:
    """Order architectures by their canonical string form."""
    return sorted(archs, key=str)
