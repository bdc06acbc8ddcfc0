"""Configuration dataclasses and YAML/JSON loading for test files."""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Optional, Tuple

import yaml

from .errors import TestFileError

if TYPE_CHECKING:
    from .blocks import BlockRegistry


# File name of folder-level hook definitions
HOOKS_FILENAMES = (
    "_hooks.testblocks.json",
    "_hooks.testblocks.yaml",
    "_hooks.testblocks.yml",
)


@dataclass
class Step:
    """One executable node of an authored test.

    ``params`` maps a parameter name to a literal value or to a nested
    value-producing ``Step``. ``children`` maps a statement socket name
    (e.g. ``DO``, ``ELSE``) to its ordered step list.
    """

    id: str
    type: str
    params: Dict[str, Any] = field(default_factory=dict)
    children: Dict[str, List[Step]] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional[Step]:
        """Build a step from its flat dictionary form; type-less input yields None."""
        from .extraction import new_step_id

        if not isinstance(data, dict) or not data.get("type"):
            return None

        params: Dict[str, Any] = {}
        for name, value in (data.get("params") or {}).items():
            if _looks_like_step(value):
                nested = cls.from_dict(value)
                if nested is not None:
                    params[name] = nested
            else:
                params[name] = value

        children: Dict[str, List[Step]] = {}
        raw_children = data.get("children") or {}
        if isinstance(raw_children, list):
            # Legacy form: an unnamed child list runs as the DO statement
            raw_children = {"DO": raw_children}
        for name, chain in raw_children.items():
            parsed = [cls.from_dict(c) for c in chain or []]
            children[name] = [c for c in parsed if c is not None]

        return cls(
            id=str(data.get("id") or new_step_id()),
            type=str(data["type"]),
            params=params,
            children=children,
        )

    def walk(self) -> Iterator[Step]:
        """Yield this step and every nested parameter step and child step."""
        yield self
        for value in self.params.values():
            if isinstance(value, Step):
                yield from value.walk()
        for chain in self.children.values():
            for child in chain:
                yield from child.walk()


def _looks_like_step(value: Any) -> bool:
    return isinstance(value, dict) and "type" in value and "id" in value


@dataclass(frozen=True)
class DataSet:
    """One named row of values driving one data-driven iteration."""

    values: Dict[str, Any]
    name: Optional[str] = None


@dataclass
class ProcedureParam:
    """A declared procedure parameter."""

    name: str
    type: str = "any"
    default: Any = None
    description: str = ""


@dataclass
class Procedure:
    """A named, parameterized, reusable step list."""

    name: str
    steps: List[Step] = field(default_factory=list)
    params: List[ProcedureParam] = field(default_factory=list)
    description: str = ""
    return_type: Optional[str] = None

    def get_param(self, name: str) -> Optional[ProcedureParam]:
        for param in self.params:
            if param.name == name:
                return param
        return None


@dataclass
class TestCase:
    """A single test within a test file."""

    __test__ = False

    id: str
    name: str
    steps: List[Step] = field(default_factory=list)
    description: str = ""
    before_each: List[Step] = field(default_factory=list)
    after_each: List[Step] = field(default_factory=list)
    data: Optional[List[DataSet]] = None
    data_file: Optional[str] = None
    disabled: bool = False
    soft_assertions: bool = False
    tags: List[str] = field(default_factory=list)


@dataclass
class FolderHooks:
    """Lifecycle hooks attached to a directory rather than a suite."""

    version: str = "1.0.0"
    before_all: List[Step] = field(default_factory=list)
    after_all: List[Step] = field(default_factory=list)
    before_each: List[Step] = field(default_factory=list)
    after_each: List[Step] = field(default_factory=list)
    source_path: Optional[Path] = None


@dataclass
class TestFile:
    """A test suite: shared variables, hooks, procedures and test cases."""

    __test__ = False

    name: str
    tests: List[TestCase] = field(default_factory=list)
    version: str = "1.0.0"
    description: str = ""
    variables: Dict[str, Any] = field(default_factory=dict)
    before_all: List[Step] = field(default_factory=list)
    after_all: List[Step] = field(default_factory=list)
    before_each: List[Step] = field(default_factory=list)
    after_each: List[Step] = field(default_factory=list)
    procedures: Dict[str, Procedure] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)
    source_path: Optional[Path] = None

    def iter_hook_lists(self) -> Iterator[List[Step]]:
        """Yield every step list of the file: suite hooks and per-test lists."""
        yield self.before_all
        yield self.after_all
        yield self.before_each
        yield self.after_each
        for test in self.tests:
            yield test.steps
            yield test.before_each
            yield test.after_each


@dataclass
class ExecutorOptions:
    """Run-wide options shared by every test file executed by one executor."""

    headless: bool = True
    timeout_ms: int = 30000
    base_url: Optional[str] = None
    variables: Dict[str, Any] = field(default_factory=dict)
    test_id_attribute: str = "data-testid"
    viewport: Tuple[int, int] = (1920, 1080)
    locale: Optional[str] = None
    debug: bool = False


@dataclass
class ProjectConfig:
    """Project-level settings loaded from a globals file."""

    variables: Dict[str, Any] = field(default_factory=dict)
    procedures: Dict[str, Procedure] = field(default_factory=dict)
    test_id_attribute: Optional[str] = None
    base_url: Optional[str] = None
    timeout_ms: Optional[int] = None
    source_path: Optional[Path] = None

    def to_options(self, **overrides: Any) -> ExecutorOptions:
        """Build executor options from this project's settings."""
        options = ExecutorOptions(variables=resolve_variable_defaults(self.variables))
        if self.test_id_attribute:
            options.test_id_attribute = self.test_id_attribute
        if self.base_url:
            options.base_url = self.base_url
        if self.timeout_ms:
            options.timeout_ms = self.timeout_ms
        return replace(options, **overrides)


# =============================================================================
# Parsing
# =============================================================================


def _get(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    """Return the first present key (camelCase or snake_case spelling)."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def resolve_variable_defaults(variables: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Resolve ``{type, default, description}`` definitions to their defaults.

    Plain values are kept as-is. A definition without a default resolves to None.
    """
    if not variables:
        return {}

    resolved: Dict[str, Any] = {}
    for name, value in variables.items():
        if isinstance(value, dict) and "default" in value:
            resolved[name] = value["default"]
        elif isinstance(value, dict) and value and set(value) <= {"type", "description"}:
            resolved[name] = None
        else:
            resolved[name] = value
    return resolved


def _parse_steps(raw: Any, registry: Optional["BlockRegistry"]) -> List[Step]:
    from .extraction import extract_steps

    return extract_steps(raw, registry)


def _parse_data(raw: Any) -> Optional[List[DataSet]]:
    if not raw:
        return None
    data_sets: List[DataSet] = []
    for idx, item in enumerate(raw):
        if isinstance(item, dict) and isinstance(item.get("values"), dict):
            data_sets.append(DataSet(values=dict(item["values"]), name=item.get("name")))
        elif isinstance(item, dict):
            data_sets.append(DataSet(values=dict(item), name=f"Item {idx + 1}"))
    return data_sets


def parse_procedure(
    name: str,
    data: Dict[str, Any],
    registry: Optional["BlockRegistry"] = None,
) -> Procedure:
    """Parse a procedure definition dictionary."""
    params: List[ProcedureParam] = []
    for raw_param in data.get("params") or []:
        if isinstance(raw_param, str):
            params.append(ProcedureParam(name=raw_param))
            continue
        params.append(
            ProcedureParam(
                name=raw_param["name"],
                type=raw_param.get("type", "any"),
                default=raw_param.get("default"),
                description=raw_param.get("description", ""),
            )
        )

    return Procedure(
        name=data.get("name", name),
        description=data.get("description", ""),
        params=params,
        return_type=_get(data, "returnType", "return_type"),
        steps=_parse_steps(data.get("steps"), registry),
    )


def parse_procedures(
    raw: Optional[Dict[str, Any]],
    registry: Optional["BlockRegistry"] = None,
) -> Dict[str, Procedure]:
    if not raw:
        return {}
    return {name: parse_procedure(name, data, registry) for name, data in raw.items()}


def parse_test_case(
    data: Dict[str, Any],
    index: int = 0,
    registry: Optional["BlockRegistry"] = None,
) -> TestCase:
    """Parse a test case dictionary into a TestCase dataclass."""
    return TestCase(
        id=str(data.get("id") or f"test-{index + 1}"),
        name=data.get("name", f"Test {index + 1}"),
        description=data.get("description", ""),
        steps=_parse_steps(data.get("steps"), registry),
        before_each=_parse_steps(_get(data, "beforeEach", "before_each"), registry),
        after_each=_parse_steps(_get(data, "afterEach", "after_each"), registry),
        data=_parse_data(data.get("data")),
        data_file=_get(data, "dataFile", "data_file"),
        disabled=bool(data.get("disabled", False)),
        soft_assertions=bool(_get(data, "softAssertions", "soft_assertions", default=False)),
        tags=list(data.get("tags") or []),
    )


def parse_test_file(
    data: Dict[str, Any],
    registry: Optional["BlockRegistry"] = None,
    source_path: Optional[Path] = None,
) -> TestFile:
    """Parse a test file dictionary into a TestFile dataclass."""
    tests = [
        parse_test_case(test_data, idx, registry)
        for idx, test_data in enumerate(data.get("tests") or [])
    ]

    return TestFile(
        name=data.get("name", source_path.stem if source_path else "Test File"),
        version=str(data.get("version", "1.0.0")),
        description=data.get("description", ""),
        variables=resolve_variable_defaults(data.get("variables")),
        tests=tests,
        before_all=_parse_steps(_get(data, "beforeAll", "before_all"), registry),
        after_all=_parse_steps(_get(data, "afterAll", "after_all"), registry),
        before_each=_parse_steps(_get(data, "beforeEach", "before_each"), registry),
        after_each=_parse_steps(_get(data, "afterEach", "after_each"), registry),
        procedures=parse_procedures(data.get("procedures"), registry),
        metadata=dict(data.get("metadata") or {}),
        source_path=source_path,
    )


def parse_folder_hooks(
    data: Dict[str, Any],
    registry: Optional["BlockRegistry"] = None,
    source_path: Optional[Path] = None,
) -> FolderHooks:
    return FolderHooks(
        version=str(data.get("version", "1.0.0")),
        before_all=_parse_steps(_get(data, "beforeAll", "before_all"), registry),
        after_all=_parse_steps(_get(data, "afterAll", "after_all"), registry),
        before_each=_parse_steps(_get(data, "beforeEach", "before_each"), registry),
        after_each=_parse_steps(_get(data, "afterEach", "after_each"), registry),
        source_path=source_path,
    )


# =============================================================================
# Loading
# =============================================================================


def read_document(path: Path) -> Any:
    """Read a JSON or YAML document from disk.

    Raises:
        TestFileError: If the file is missing or cannot be parsed
    """
    if not path.exists():
        raise TestFileError(str(path), "Test file not found")

    try:
        with open(path, "r") as f:
            if path.suffix.lower() == ".json":
                return json.load(f)
            return yaml.safe_load(f)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise TestFileError(str(path), f"Invalid test file ({e})") from e


def load_test_file(path: Path, registry: Optional["BlockRegistry"] = None) -> TestFile:
    """Load and parse a test file.

    Raises:
        TestFileError: If the file is missing, unparsable, or not a dictionary
    """
    data = read_document(path)
    if not isinstance(data, dict):
        raise TestFileError(str(path), "Test file must contain a dictionary")
    return parse_test_file(data, registry, source_path=path)


def load_folder_hooks(
    test_file_path: Path,
    stop_dir: Optional[Path] = None,
    registry: Optional["BlockRegistry"] = None,
) -> List[FolderHooks]:
    """Collect folder hooks from the test file's directory up to ``stop_dir``.

    Returns:
        Hooks ordered from the outermost folder to the innermost
    """
    current = test_file_path.resolve().parent
    stop = stop_dir.resolve() if stop_dir else None
    collected: List[FolderHooks] = []

    while True:
        for filename in HOOKS_FILENAMES:
            hooks_path = current / filename
            if hooks_path.is_file():
                data = read_document(hooks_path)
                if isinstance(data, dict):
                    collected.append(parse_folder_hooks(data, registry, hooks_path))
                break

        if stop is not None and current == stop:
            break
        if current.parent == current:
            break
        current = current.parent

    collected.reverse()
    return collected


def merge_folder_hooks(test_file: TestFile, folder_hooks: List[FolderHooks]) -> TestFile:
    """Merge folder hooks (outermost first) into a test file's suite hooks.

    Setup hooks run outer -> inner -> suite; teardown hooks run
    suite -> inner -> outer so teardown nests strictly inside setup.
    """
    if not folder_hooks:
        return test_file

    before_all: List[Step] = []
    before_each: List[Step] = []
    for hooks in folder_hooks:
        before_all.extend(hooks.before_all)
        before_each.extend(hooks.before_each)

    after_all: List[Step] = []
    after_each: List[Step] = []
    for hooks in reversed(folder_hooks):
        after_all.extend(hooks.after_all)
        after_each.extend(hooks.after_each)

    return replace(
        test_file,
        before_all=before_all + test_file.before_all,
        before_each=before_each + test_file.before_each,
        after_all=test_file.after_all + after_all,
        after_each=test_file.after_each + after_each,
    )


def load_project_config(path: Path, registry: Optional["BlockRegistry"] = None) -> ProjectConfig:
    """Load project-level variables, procedures and options from a globals file."""
    data = read_document(path)
    if not isinstance(data, dict):
        raise TestFileError(str(path), "Project config must contain a dictionary")

    return ProjectConfig(
        variables=dict(data.get("variables") or {}),
        procedures=parse_procedures(data.get("procedures"), registry),
        test_id_attribute=_get(data, "testIdAttribute", "test_id_attribute"),
        base_url=_get(data, "baseUrl", "base_url"),
        timeout_ms=_get(data, "timeout", "timeout_ms"),
        source_path=path,
    )
