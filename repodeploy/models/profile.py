"""Build profile models."""

from enum import Enum
from pathlib import Path
from typing import Literal

from pydantic import BaseModel


class ProfileKind(str, Enum):
    """Detected build classification of a source tree."""

    STATIC = "static"
    BUILDABLE = "buildable"
    UNKNOWN = "unknown"


class ProjectProfile(BaseModel):
    """How to turn an extracted tree into static output."""

    kind: ProfileKind
    root: Path

    # Only set for buildable profiles
    package_manager: Literal["npm", "yarn", "pnpm"] | None = None
    install_command: list[str] | None = None
    build_command: list[str] | None = None
    output_dir: str | None = None

    reason: str = ""

    @property
    def is_supported(self) -> bool:
        return self.kind != ProfileKind.UNKNOWN
