"""
Build configuration
"""
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Build settings (env prefix BUILDER_MATRIX_, or a .env file)"""

    # Toolchain
    MODULE_NAME: str = "intel"
    MODULE_VERSION: str = "2025.2.0"
    ACTIVATE_MODULE: bool = True

    # Matrix
    ARCH_TARGET: str = "portable"
    COMPONENTS: str = "all"
    SOURCE_ROOT: Path = Path(".")
    REGISTRY_FILE: Optional[Path] = None
    BUILD_METHOD: str = "direct"  # direct | cmake
    EXTRA_CXXFLAGS: str = ""
    JOBS: Optional[int] = None

    # Output
    OUTPUT_DIR: Path = Path("bin_intel")
    WRITE_SUMMARY: bool = True

    # Verification
    LINKAGE_TOOL: str = "elf"  # elf | ldd
    SMOKE_TIMEOUT: int = 30  # seconds, per probe

    model_config = SettingsConfigDict(
        env_prefix="BUILDER_MATRIX_",
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    @property
    def module_spec(self) -> str:
        """Module to load, e.g. intel/2025.2.0"""
        return f"{self.MODULE_NAME}/{self.MODULE_VERSION}"

    @property
    def component_selection(self) -> list[str]:
        """COMPONENTS split on commas"""
        return [c.strip() for c in self.COMPONENTS.split(",") if c.strip()]
