"""Project Type Detector.

Classifies an extracted source tree into a build profile by looking at a
fixed, ordered list of marker files at the tree root. First match wins.
"""

import json
from pathlib import Path
from typing import Any, Callable

from repodeploy.models.profile import ProfileKind, ProjectProfile
from repodeploy.utils.logging import get_logger

logger = get_logger(__name__)

BUILD_SCRIPTS = ("build", "build:prod")

# Framework dependency -> default output directory
OUTPUT_HINTS: tuple[tuple[str, str], ...] = (
    ("vite", "dist"),
    ("@angular/cli", "dist"),
    ("react-scripts", "build"),
    ("next", "out"),
    ("gatsby", "public"),
    ("@11ty/eleventy", "_site"),
)

Rule = Callable[[Path], ProjectProfile | None]


def _read_package_json(root: Path) -> dict[str, Any] | None:
    path = root / "package.json"
    if not path.is_file():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.warning("detector.invalid_package_json", error=str(e))
        return None
    return data if isinstance(data, dict) else None


def _package_manager(root: Path) -> str:
    if (root / "pnpm-lock.yaml").exists():
        return "pnpm"
    if (root / "yarn.lock").exists():
        return "yarn"
    return "npm"


def _install_command(manager: str, root: Path) -> list[str]:
    if manager == "pnpm":
        return ["pnpm", "install", "--frozen-lockfile"]
    if manager == "yarn":
        return ["yarn", "install", "--frozen-lockfile"]
    if (root / "package-lock.json").exists():
        return ["npm", "ci"]
    return ["npm", "install"]


def _output_hint(package: dict[str, Any]) -> str | None:
    deps: dict[str, Any] = {}
    for key in ("dependencies", "devDependencies"):
        if isinstance(package.get(key), dict):
            deps.update(package[key])
    for dependency, output_dir in OUTPUT_HINTS:
        if dependency in deps:
            return output_dir
    return None


def detect_node_project(root: Path) -> ProjectProfile | None:
    """package.json with a build script -> buildable."""
    package = _read_package_json(root)
    if package is None:
        return None

    scripts = package.get("scripts") if isinstance(package.get("scripts"), dict) else {}
    script = next((s for s in BUILD_SCRIPTS if scripts.get(s)), None)
    if script is None:
        return None

    manager = _package_manager(root)
    return ProjectProfile(
        kind=ProfileKind.BUILDABLE,
        root=root,
        package_manager=manager,
        install_command=_install_command(manager, root),
        build_command=[manager, "run", script],
        output_dir=_output_hint(package),
        reason=f"package.json defines a '{script}' script",
    )


def detect_static_site(root: Path) -> ProjectProfile | None:
    """index.html at the root -> static."""
    if (root / "index.html").is_file():
        return ProjectProfile(
            kind=ProfileKind.STATIC,
            root=root,
            reason="index.html at repository root",
        )
    return None


DEFAULT_RULES: tuple[Rule, ...] = (
    detect_node_project,
    detect_static_site,
)


class ProjectTypeDetector:
    """Applies detection rules in priority order."""

    def __init__(self, rules: tuple[Rule, ...] = DEFAULT_RULES):
        self.rules = rules

    def detect(self, root: Path) -> ProjectProfile:
        for rule in self.rules:
            profile = rule(root)
            if profile is not None:
                logger.info(
                    "detector.profile_detected",
                    kind=profile.kind.value,
                    reason=profile.reason,
                    output_dir=profile.output_dir,
                )
                return profile

        logger.info("detector.no_profile", root=str(root))
        return ProjectProfile(
            kind=ProfileKind.UNKNOWN,
            root=root,
            reason="no package.json build script or index.html found",
        )
