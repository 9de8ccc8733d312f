"""Unit tests for package import order

Each module must import cleanly as the first import of a fresh interpreter,
whatever order the rest of the package loads in.
"""

import subprocess
import sys
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[2]

MODULES = [
    "relaytive.input",
    "relaytive.input.extractor",
    "relaytive.analysis",
    "relaytive.analysis.vectors",
    "relaytive.analysis.transcriber",
    "relaytive.analysis.segmentation",
    "relaytive.models",
    "relaytive.models.patterns",
    "relaytive.patterns.discovery",
    "relaytive.patterns.scheduler",
    "relaytive.fusion.classifier",
    "relaytive.main",
]


class TestFreshImports:
    """Test suite for first-import behaviour"""

    @pytest.mark.parametrize("module", MODULES)
    def test_module_imports_first(self, module):
        result = subprocess.run(
            [sys.executable, "-c", f"import {module}"],
            cwd=ROOT,
            capture_output=True,
            text=True,
            timeout=120,
        )
        assert result.returncode == 0, result.stderr
