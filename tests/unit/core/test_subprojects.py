"""Tests for build-tool sub-project detection."""

from code_graph_sync.core.descriptors import EntityDescriptor, RelationshipDescriptor
from code_graph_sync.core.git import RepositoryMetadata
from code_graph_sync.core.hierarchy import HierarchyResolver
from code_graph_sync.core.subprojects import SubProjectDetector

POM = """<?xml version="1.0"?>
<project xmlns="http://maven.apache.org/POM/4.0.0">
  <parent><version>2.1.0</version></parent>
  <artifactId>api</artifactId>
  <description>Public API</description>
  <dependencies>
    <dependency>
      <groupId>org.slf4j</groupId>
      <artifactId>slf4j-api</artifactId>
      <version>2.0.9</version>
    </dependency>
    <dependency>
      <groupId>com.example</groupId>
      <artifactId>core</artifactId>
    </dependency>
  </dependencies>
</project>
"""

GRADLE = """
version = '1.4.0'
description "Worker service"

dependencies {
    implementation 'com.google.guava:guava:32.1.0-jre'
    testImplementation("junit:junit:4.13.2")
}
"""


def write(path, content):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)


def build_tree(root):
    write(root / "pom.xml", "<project><version>1.0</version></project>")
    write(root / "services" / "api" / "pom.xml", POM)
    (root / "services" / "api" / "src" / "main" / "java").mkdir(parents=True)
    (root / "services" / "api" / "src" / "test" / "java").mkdir(parents=True)
    write(root / "services" / "worker" / "build.gradle", GRADLE)
    write(
        root / "web" / "package.json",
        '{"version": "0.2.0", "dependencies": {"react": "^18.0.0", "axios": "1.6"}}',
    )
    (root / "web" / "src").mkdir()
    # Ignored directories are never walked
    write(root / "web" / "node_modules" / "left-pad" / "package.json", "{}")


class TestDetect:
    def test_finds_all_build_types(self, temp_project_dir):
        build_tree(temp_project_dir)

        projects = SubProjectDetector(temp_project_dir).detect()

        assert [(p.path, p.build_type) for p in projects] == [
            ("", "maven"),
            ("services/api", "maven"),
            ("services/worker", "gradle"),
            ("web", "npm"),
        ]
        assert projects[0].name == "root"
        assert projects[0].local_name == "root"

    def test_maven_metadata(self, temp_project_dir):
        build_tree(temp_project_dir)
        api = SubProjectDetector(temp_project_dir).detect()[1]

        assert api.version == "2.1.0"
        assert api.description == "Public API"
        assert api.dependencies == ["org.slf4j:slf4j-api:2.0.9", "com.example:core"]
        assert api.source_directories == ["src/main/java"]
        assert api.test_directories == ["src/test/java"]

    def test_gradle_metadata(self, temp_project_dir):
        build_tree(temp_project_dir)
        worker = SubProjectDetector(temp_project_dir).detect()[2]

        assert worker.version == "1.4.0"
        assert worker.description == "Worker service"
        assert worker.dependencies == [
            "com.google.guava:guava:32.1.0-jre",
            "junit:junit:4.13.2",
        ]

    def test_npm_metadata(self, temp_project_dir):
        build_tree(temp_project_dir)
        web = SubProjectDetector(temp_project_dir).detect()[3]

        assert web.version == "0.2.0"
        assert web.dependencies == ["axios:1.6", "react:^18.0.0"]
        assert web.source_directories == ["src"]

    def test_maven_wins_over_npm(self, temp_project_dir):
        write(temp_project_dir / "pom.xml", "<project/>")
        write(temp_project_dir / "package.json", "{}")

        projects = SubProjectDetector(temp_project_dir).detect()

        assert len(projects) == 1
        assert projects[0].build_type == "maven"

    def test_unparseable_build_file_still_detected(self, temp_project_dir):
        write(temp_project_dir / "package.json", "{not json")

        projects = SubProjectDetector(temp_project_dir).detect()

        assert len(projects) == 1
        assert projects[0].version is None

    def test_missing_root(self, tmp_path):
        assert SubProjectDetector(tmp_path / "nope").detect() == []


class TestGraphOutput:
    def test_candidates_route_files_to_deepest_project(self, temp_project_dir):
        build_tree(temp_project_dir)
        detector = SubProjectDetector(temp_project_dir)
        candidates = detector.candidates(detector.detect(), "shop")

        resolver = HierarchyResolver()
        assert (
            resolver.select_container(
                candidates, "services/api/src/main/java/Foo.java"
            )
            == "subproject:shop:services/api"
        )
        assert (
            resolver.select_container(candidates, "tools/build.sh")
            == "subproject:shop:root"
        )

    def test_descriptors(self, temp_project_dir):
        build_tree(temp_project_dir)
        detector = SubProjectDetector(temp_project_dir)
        repository = RepositoryMetadata(name="shop", path="/src/shop")

        out = detector.descriptors(detector.detect(), repository)

        entities = [d for d in out if isinstance(d, EntityDescriptor)]
        edges = [d for d in out if isinstance(d, RelationshipDescriptor)]
        assert len(entities) == 5
        assert len(edges) == 4
        repo_id = edges[0].from_id
        assert repo_id.startswith("repo:shop:")
        assert {e.from_id for e in edges} == {repo_id}
        assert edges[-1].to_id == "subproject:shop:web"
        assert entities[-1].properties["type"] == "npm"

    def test_directory_with_colon_is_escaped(self, temp_project_dir):
        service = temp_project_dir / "svc:v2"
        service.mkdir()
        (service / "package.json").write_text('{"version": "1.0.0"}')
        detector = SubProjectDetector(temp_project_dir)

        candidates = detector.candidates(detector.detect(), "shop")

        assert [c.container_id for c in candidates] == ["subproject:shop:svc\\:v2"]
        assert candidates[0].path == "svc:v2"
