"""Build-tool sub-project detection.

Walks a working tree for Maven, Gradle and npm build files. Each directory
holding one becomes a sub-project: an entity descriptor for the graph and a
containment candidate for the hierarchy resolver, so files under
``services/api`` attach to that sub-project rather than to the repository.
"""

import os
import re
import xml.etree.ElementTree as ET  # nosec B405 - parses local build files only
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import orjson
from loguru import logger

from ..config.defaults import (
    DEFAULT_IGNORE_PATTERNS,
    GRADLE_BUILD_FILES,
    JVM_SOURCE_DIRS,
    JVM_TEST_DIRS,
    MAVEN_BUILD_FILE,
    NPM_BUILD_FILE,
    NPM_SOURCE_DIRS,
    NPM_TEST_DIRS,
)
from .descriptors import Descriptor, EntityDescriptor, RelationshipDescriptor
from .git import RepositoryMetadata
from .identity import IdentifierResolver, escape_segment
from .models import ContainmentCandidate, EntityKind, RelationshipType

ROOT_SUBPROJECT_NAME = "root"

_GRADLE_PROPERTY = r"""^\s*{name}\s*=?\s*['"]([^'"]+)['"]"""
_GRADLE_DEPENDENCY = re.compile(
    r"""^\s*(?:implementation|api|compile|compileOnly|runtimeOnly|"""
    r"""testImplementation|testCompile)\s*\(?\s*['"]([^'"]+)['"]""",
    re.MULTILINE,
)


@dataclass
class SubProject:
    """A directory with its own build file."""

    name: str
    path: str  # relative POSIX path, "" for the repository root
    build_type: str  # maven, gradle or npm
    build_file: str
    version: str | None = None
    description: str | None = None
    dependencies: list[str] = field(default_factory=list)
    source_directories: list[str] = field(default_factory=list)
    test_directories: list[str] = field(default_factory=list)

    @property
    def local_name(self) -> str:
        return escape_segment(self.path) if self.path else ROOT_SUBPROJECT_NAME

    def properties(self) -> dict[str, Any]:
        props: dict[str, Any] = {
            "name": self.name,
            "path": self.path,
            "type": self.build_type,
            "buildFile": self.build_file,
            "dependencies": self.dependencies,
            "sourceDirectories": self.source_directories,
            "testDirectories": self.test_directories,
        }
        if self.version:
            props["version"] = self.version
        if self.description:
            props["description"] = self.description
        return props

    def to_descriptor(self, repository_name: str) -> EntityDescriptor:
        return EntityDescriptor(
            kind=EntityKind.SUBPROJECT,
            container_path=(escape_segment(repository_name),),
            local_name=self.local_name,
            properties=self.properties(),
        )

    def to_candidate(self, container_id: str) -> ContainmentCandidate:
        return ContainmentCandidate(container_id=container_id, path=self.path)


def _strip_namespace(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _child_text(element: ET.Element, name: str) -> str | None:
    for child in element:
        if _strip_namespace(child.tag) == name:
            text = (child.text or "").strip()
            return text or None
    return None


def _child(element: ET.Element, name: str) -> ET.Element | None:
    for child in element:
        if _strip_namespace(child.tag) == name:
            return child
    return None


def parse_maven(pom_file: Path, project: SubProject) -> None:
    root = ET.parse(pom_file).getroot()  # nosec B314
    version = _child_text(root, "version")
    if version is None and (parent := _child(root, "parent")) is not None:
        version = _child_text(parent, "version")
    project.version = version
    project.description = _child_text(root, "description")

    deps = _child(root, "dependencies")
    for dep in deps if deps is not None else ():
        group = _child_text(dep, "groupId")
        artifact = _child_text(dep, "artifactId")
        if group and artifact:
            dep_version = _child_text(dep, "version")
            project.dependencies.append(
                f"{group}:{artifact}" + (f":{dep_version}" if dep_version else "")
            )


def parse_gradle(build_file: Path, project: SubProject) -> None:
    content = build_file.read_text(encoding="utf-8", errors="replace")
    for attr in ("version", "description"):
        match = re.search(_GRADLE_PROPERTY.format(name=attr), content, re.MULTILINE)
        if match:
            setattr(project, attr, match.group(1))
    project.dependencies = _GRADLE_DEPENDENCY.findall(content)


def parse_npm(package_file: Path, project: SubProject) -> None:
    data = orjson.loads(package_file.read_bytes())
    if not isinstance(data, dict):
        raise ValueError("package.json is not an object")
    project.version = data.get("version")
    project.description = data.get("description") or None
    deps = data.get("dependencies") or {}
    project.dependencies = [f"{k}:{v}" for k, v in sorted(deps.items())]


class SubProjectDetector:
    """Finds sub-projects under a repository root.

    Example:
        >>> detector = SubProjectDetector(Path("/path/to/repo"))
        >>> for sub in detector.detect():
        ...     print(sub.path, sub.build_type)
    """

    def __init__(
        self,
        root: Path,
        ignore_patterns: list[str] | None = None,
        identifier: IdentifierResolver | None = None,
    ):
        self.root = Path(root).resolve()
        self.ignore_patterns = set(ignore_patterns or DEFAULT_IGNORE_PATTERNS)
        self.identifier = identifier or IdentifierResolver()

    def detect(self) -> list[SubProject]:
        """Walk the tree and return sub-projects sorted by path.

        A directory with several build files yields one sub-project; Maven
        wins over Gradle, Gradle over npm.
        """
        if not self.root.is_dir():
            logger.warning(f"Not a directory, no sub-projects: {self.root}")
            return []

        projects: list[SubProject] = []
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames[:] = sorted(d for d in dirnames if d not in self.ignore_patterns)
            project = self._detect_dir(Path(dirpath), set(filenames))
            if project is not None:
                projects.append(project)
                logger.debug(
                    f"Detected {project.build_type} project {project.name} "
                    f"at {project.path or '.'}"
                )

        logger.info(f"Detected {len(projects)} sub-projects in {self.root}")
        return sorted(projects, key=lambda p: p.path)

    def _detect_dir(self, directory: Path, filenames: set[str]) -> SubProject | None:
        if MAVEN_BUILD_FILE in filenames:
            build_type, build_file, parser = "maven", MAVEN_BUILD_FILE, parse_maven
            sources, tests = JVM_SOURCE_DIRS, JVM_TEST_DIRS
        elif gradle := next((f for f in GRADLE_BUILD_FILES if f in filenames), None):
            build_type, build_file, parser = "gradle", gradle, parse_gradle
            sources, tests = JVM_SOURCE_DIRS, JVM_TEST_DIRS
        elif NPM_BUILD_FILE in filenames:
            build_type, build_file, parser = "npm", NPM_BUILD_FILE, parse_npm
            sources, tests = NPM_SOURCE_DIRS, NPM_TEST_DIRS
        else:
            return None

        rel = directory.relative_to(self.root).as_posix()
        rel = "" if rel == "." else rel
        project = SubProject(
            name=directory.name if rel else ROOT_SUBPROJECT_NAME,
            path=rel,
            build_type=build_type,
            build_file=build_file,
            source_directories=[d for d in sources if (directory / d).is_dir()],
            test_directories=[d for d in tests if (directory / d).is_dir()],
        )
        try:
            parser(directory / build_file, project)
        except (OSError, ValueError, ET.ParseError, orjson.JSONDecodeError) as e:
            logger.warning(
                f"Failed to parse {build_type} metadata at {rel or '.'}: {e}"
            )
        return project

    def candidates(
        self, projects: list[SubProject], repository_name: str
    ) -> list[ContainmentCandidate]:
        """Containment candidates for the detected sub-projects."""
        return [
            p.to_candidate(
                self.identifier.resolve(
                    EntityKind.SUBPROJECT,
                    (escape_segment(repository_name),),
                    p.local_name,
                )
            )
            for p in projects
        ]

    def descriptors(
        self, projects: list[SubProject], repository: RepositoryMetadata
    ) -> list[Descriptor]:
        """Repository and sub-project entities plus repository CONTAINS edges."""
        repo_descriptor = repository.to_descriptor()
        repo_id = self.identifier.resolve(
            repo_descriptor.kind,
            repo_descriptor.container_path,
            repo_descriptor.local_name,
            repo_descriptor.disambiguator,
        )
        out: list[Descriptor] = [repo_descriptor]
        for project, candidate in zip(
            projects, self.candidates(projects, repository.name)
        ):
            out.append(project.to_descriptor(repository.name))
            out.append(
                RelationshipDescriptor(
                    from_id=repo_id,
                    to_id=candidate.container_id,
                    type=RelationshipType.CONTAINS,
                )
            )
        return out
