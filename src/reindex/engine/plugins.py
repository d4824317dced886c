from __future__ import annotations

import importlib
from typing import Any, Callable

from reindex.domain.errors import PluginError


def load_callable(path: str) -> Callable[..., Any]:
    """
    Resolves "package.module:attribute" (attribute may be dotted) to a callable.

    Used to plug the external lister and indexing task into the CLI, the same
    way an ASGI server is pointed at "package.module:app".
    """
    module_name, sep, attr_path = path.partition(":")
    if not sep or not module_name or not attr_path:
        raise PluginError(
            f"Expected 'module:attribute', got: {path!r}",
            details={"path": path},
        )

    try:
        obj: Any = importlib.import_module(module_name)
    except ImportError as e:
        raise PluginError(f"Cannot import module {module_name!r}: {e}", details={"path": path}) from e

    for part in attr_path.split("."):
        try:
            obj = getattr(obj, part)
        except AttributeError as e:
            raise PluginError(f"{path!r} has no attribute {part!r}", details={"path": path}) from e

    if not callable(obj):
        raise PluginError(f"{path!r} is not callable", details={"path": path})
    return obj
