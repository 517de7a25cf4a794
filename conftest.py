"""File for tests."""

from collections.abc import Iterator
from pathlib import Path
from typing import Any

import pytest
import yaml

from isa import program_bytes
from processor import ControlUnit, Datapath


def pytest_configure(config: Any) -> None:
    """Configure the tests."""
    config.addinivalue_line(
        "markers",
        "golden_test(pattern): parameterize test with YAML files matching pattern",
    )


def _iter_marker_patterns(node: Any) -> Iterator[str]:
    """Yield pattern strings from golden_test markers on `node`."""
    for m in node.iter_markers(name="golden_test"):
        yield m.args[0] if m.args else "golden/*.yaml"


def pytest_generate_tests(metafunc: Any) -> None:
    """Generate tests (parametrization) from YAML golden files."""
    if "golden" not in metafunc.fixturenames:
        return

    patterns: list[str] = list(_iter_marker_patterns(metafunc.definition)) or ["golden/*.yaml"]
    root = Path(metafunc.config.rootpath)

    files: list[Path] = []
    for pat in patterns:
        files.extend(sorted(root.glob(pat)))

    params: list[dict[str, Any]] = []
    ids: list[str] = []
    for p in files:
        with p.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        data.setdefault("__path__", str(p))
        params.append(data)
        ids.append(p.stem)

    metafunc.parametrize("golden", params, ids=ids)


class StubRng:
    """Randomness source returning a fixed byte, for RND tests."""

    def __init__(self, value: int) -> None:
        self.value = value

    def getrandbits(self, k: int) -> int:
        return self.value & ((1 << k) - 1)


@pytest.fixture
def machine() -> Any:
    """Build a fresh (Datapath, ControlUnit) pair, optionally loaded with words."""

    def _build(words: list[int] | None = None, rng: Any = None) -> tuple[Datapath, ControlUnit]:
        dp = Datapath()
        if words:
            dp.load(program_bytes(words))
        return dp, ControlUnit(dp, rng=rng, seed=0)

    return _build
