"""Default configurations for code-graph-sync."""

from pathlib import Path

# Per-project state directory (graph database, audit trails, config)
STATE_DIR_NAME = ".code-graph-sync"
DEFAULT_DB_DIR_NAME = "graph"
DEFAULT_AUDIT_DIR_NAME = "audit"
DEFAULT_CONFIG_FILE_NAME = "config.yaml"
DEFAULT_THRESHOLDS_FILE_NAME = "thresholds.yaml"

# Graph store call budget
DEFAULT_STORE_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BASE_DELAY = 0.1  # seconds, doubled per attempt
DEFAULT_RETRY_MAX_DELAY = 5.0

# Synthetic container used when nothing encloses a file
DEFAULT_ROOT_CONTAINER_ID = "subproject:root"

# Kind whose members the cross-entity pass aggregates over
DEFAULT_COARSE_CONTAINER_KIND = "SubProject"

# Property keys that never count as a change (they move on every parse)
INSIGNIFICANT_PROPERTY_KEYS = frozenset(
    {
        "createdAt",
        "updatedAt",
        "lastModified",
        "lastUpdated",
        "detectedAt",
        "indexedAt",
        "parsedAt",
    }
)

# Build files that mark a sub-project root
MAVEN_BUILD_FILE = "pom.xml"
GRADLE_BUILD_FILES = ("build.gradle", "build.gradle.kts")
NPM_BUILD_FILE = "package.json"

JVM_SOURCE_DIRS = ("src/main/java", "src/main/kotlin", "src/main/groovy")
JVM_TEST_DIRS = ("src/test/java", "src/test/kotlin", "src/test/groovy")
NPM_SOURCE_DIRS = ("src", "lib")
NPM_TEST_DIRS = ("test", "tests", "__tests__")

# Directories to ignore when walking a working tree
DEFAULT_IGNORE_PATTERNS = [
    # Version control
    ".git",
    ".hg",
    ".svn",
    # Python caches and environments
    "__pycache__",
    ".mypy_cache",
    ".pytest_cache",
    ".ruff_cache",
    ".tox",
    ".venv",
    "venv",
    # JavaScript/Node.js
    ".npm",
    ".yarn",
    "bower_components",
    "node_modules",
    # Build outputs
    "build",
    "dist",
    "target",
    "out",
    ".gradle",
    # IDEs and editors
    ".idea",
    ".vscode",
    # Our own state
    STATE_DIR_NAME,
]


def get_state_dir(project_root: Path) -> Path:
    return project_root / STATE_DIR_NAME


def get_default_db_path(project_root: Path) -> Path:
    return get_state_dir(project_root) / DEFAULT_DB_DIR_NAME


def get_default_audit_dir(project_root: Path) -> Path:
    return get_state_dir(project_root) / DEFAULT_AUDIT_DIR_NAME


def get_default_config_path(project_root: Path) -> Path:
    return get_state_dir(project_root) / DEFAULT_CONFIG_FILE_NAME


def get_default_thresholds_path(project_root: Path) -> Path:
    return get_state_dir(project_root) / DEFAULT_THRESHOLDS_FILE_NAME
