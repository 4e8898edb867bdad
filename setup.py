#!/usr/bin/env python3
# =============================================================================
#  asm-stackframe — setup.py  (legacy compatibility shim)
#
#  All authoritative metadata (name, version, dependencies, extras, the
#  console script) lives in pyproject.toml.  This file exists so that:
#
#    1.  `pip install -e .` works on older pip / setuptools that pre-date
#        PEP 660 editable installs.
#    2.  `python setup.py sdist bdist_wheel` still works for CI scripts
#        that haven't migrated to `python -m build`.
#
#  For new tooling, prefer:
#      pip install -e ".[dev]"
#      python -m build
#      python -m pytest
# =============================================================================

from __future__ import annotations

from setuptools import setup

# ---------------------------------------------------------------------------
#  Only options that pyproject.toml's [project] table cannot express go
#  here; anything else passed to setup() would be ignored with a warning.
# ---------------------------------------------------------------------------
setup(
    zip_safe=False,
)
