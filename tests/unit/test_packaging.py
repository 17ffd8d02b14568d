# pylint: disable=missing-module-docstring,missing-function-docstring
from pathlib import Path


PYPROJECT = Path(__file__).resolve().parents[2] / "pyproject.toml"


def test_project_metadata_declares_no_readme():
    lines = [line.strip() for line in PYPROJECT.read_text(encoding="utf-8").splitlines()]

    readme = [line for line in lines if line.startswith("readme")]

    assert readme == []
