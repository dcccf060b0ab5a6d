"""Project build manifests (buildstudio.config.yaml).

A manifest lists the builds of a project, each with a target platform and a
command, plus an optional packaging descriptor:

    builds:
      - name: linux
        platform: linux
        command: make all
      - name: windows
        platform: windows
        command: gcc -o app.exe src/main.c
    package:
      type: appimage
      name: myapp
      version: 1.2.0
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError

from buildstudio.build import BuildEngine, BuildObserver
from buildstudio.core.errors import ManifestError
from buildstudio.core.models import BuildOutcome

MANIFEST_FILENAME = "buildstudio.config.yaml"


class BuildStep(BaseModel):
    name: str
    platform: str
    command: str
    language: str | None = None
    container: str | None = None


class PackageDescriptor(BaseModel):
    """Packaging metadata; carried through but not acted on."""

    type: str | None = None
    name: str | None = None
    version: str | None = None
    dependencies: list[str] | None = None


class BuildManifest(BaseModel):
    builds: list[BuildStep] = Field(default_factory=list)
    package: PackageDescriptor | None = None


def find_manifest(project_dir: str | Path) -> Path:
    return Path(project_dir) / MANIFEST_FILENAME


def load_manifest(path: str | Path) -> BuildManifest:
    """Read and validate a YAML build manifest.

    Raises:
        ManifestError: If the file is missing, is not valid YAML, or does not
            match the manifest schema.
    """
    manifest_path = Path(path)
    try:
        with open(manifest_path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ManifestError(f"Manifest not found: {manifest_path}") from e
    except (OSError, yaml.YAMLError) as e:
        raise ManifestError(f"Failed to read manifest {manifest_path}: {e}") from e

    try:
        return BuildManifest.model_validate(data or {})
    except ValidationError as e:
        raise ManifestError(f"Invalid manifest {manifest_path}: {e}") from e


async def run_manifest(
    engine: BuildEngine,
    manifest: BuildManifest,
    project_dir: str | Path,
    observer_factory: Callable[[BuildStep], BuildObserver] | None = None,
) -> list[tuple[BuildStep, BuildOutcome]]:
    """Run every build step in order, continuing past failed steps."""
    results: list[tuple[BuildStep, BuildOutcome]] = []
    for step in manifest.builds:
        observer = observer_factory(step) if observer_factory else None
        outcome = await engine.run(step.command, project_dir, step.platform, observer=observer)
        results.append((step, outcome))
    return results
