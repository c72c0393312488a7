"""
Step loading for the CLI.

Step sets are referenced as "module:attribute", where the attribute is
either a list of Step objects or a zero-argument factory returning one.
The module part may also be a path to a .py file:

    chainorch run Core --steps deploy.steps:STEPS
    chainorch run Core --steps ./deploy/steps.py:build_steps
"""

import importlib
import importlib.util
import logging
import sys
from pathlib import Path
from types import ModuleType

from chainorch.schemas import Step

logger = logging.getLogger(__name__)


class StepLoadError(Exception):
    """A step set reference could not be loaded."""
    pass


def _import_module(module_path: str) -> ModuleType:
    if module_path.endswith(".py"):
        path = Path(module_path).expanduser().resolve()
        if not path.exists():
            raise StepLoadError(f"Step file not found: {path}")
        spec = importlib.util.spec_from_file_location(path.stem, path)
        if spec is None or spec.loader is None:
            raise StepLoadError(f"Cannot load step file: {path}")
        module = importlib.util.module_from_spec(spec)
        # Step files may import siblings
        sys.path.insert(0, str(path.parent))
        try:
            spec.loader.exec_module(module)
        finally:
            sys.path.remove(str(path.parent))
        return module

    try:
        return importlib.import_module(module_path)
    except ImportError as e:
        raise StepLoadError(f"Cannot import step module '{module_path}': {e}") from e


def load_steps(reference: str) -> list[Step]:
    """
    Load a step set by "module:attribute" reference.

    Args:
        reference: e.g. "deploy.steps:STEPS" or "deploy/steps.py:build_steps"

    Returns:
        The steps, in declaration order

    Raises:
        StepLoadError: If the reference is malformed, cannot be imported, or
            does not yield a list of Step objects
    """
    if ":" not in reference:
        raise StepLoadError(f"Step reference must be 'module:attribute', got: {reference}")

    module_path, attr = reference.rsplit(":", 1)
    module = _import_module(module_path)

    try:
        value = getattr(module, attr)
    except AttributeError as e:
        raise StepLoadError(f"'{attr}' not found in '{module_path}'") from e

    if callable(value) and not isinstance(value, (list, tuple)):
        value = value()

    if not isinstance(value, (list, tuple)):
        raise StepLoadError(f"{reference} must be a list of steps, got {type(value).__name__}")

    bad = [item for item in value if not isinstance(item, Step)]
    if bad:
        raise StepLoadError(f"{reference} contains non-Step entries: {bad[:3]}")

    logger.debug(f"Loaded {len(value)} step(s) from {reference}")
    return list(value)
