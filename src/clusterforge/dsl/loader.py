"""Dynamic suite file loading via importlib."""

from __future__ import annotations

import importlib.util
import sys
from pathlib import Path

from clusterforge._internal.errors import SuiteError
from clusterforge.dsl.definition import ClusterTestDefinition


def load_suite(file_path: str | Path) -> list[ClusterTestDefinition]:
    """Load the cluster tests defined in a Python file.

    Dynamically imports the file using ``importlib`` and scans the module
    globals for ``ClusterTestDefinition`` instances (created by the
    ``@cluster_test`` decorator), in definition order.

    Args:
        file_path: Path to the Python suite file.

    Returns:
        Every ``ClusterTestDefinition`` found in the module.

    Raises:
        SuiteError: If the file does not exist, cannot be imported,
            or defines no ``@cluster_test`` function.
    """
    path = Path(file_path)

    if not path.exists():
        msg = f"Suite file not found: {path}"
        raise SuiteError(msg)

    if path.suffix != ".py":
        msg = f"Suite file must be a .py file, got: {path}"
        raise SuiteError(msg)

    module_name = f"clusterforge_suite_{path.stem}"

    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        msg = f"Could not create module spec for: {path}"
        raise SuiteError(msg)

    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module

    try:
        spec.loader.exec_module(module)
    except Exception as exc:
        sys.modules.pop(module_name, None)
        msg = f"Failed to import suite file {path}: {exc}"
        raise SuiteError(msg) from exc

    definitions = [
        obj for obj in vars(module).values() if isinstance(obj, ClusterTestDefinition)
    ]

    if not definitions:
        sys.modules.pop(module_name, None)
        msg = (
            f"No @cluster_test function found in {path}. "
            f"Ensure at least one async function is decorated with @cluster_test."
        )
        raise SuiteError(msg)

    return definitions
