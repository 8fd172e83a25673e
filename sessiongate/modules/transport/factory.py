"""
Transport factory.

The wire protocol lives outside this service; deployments point
TRANSPORT_FACTORY at the callable that builds their Transport.
"""

import importlib
import logging
from typing import Any, Callable

from .interfaces import Transport

logger = logging.getLogger(__name__)


def _resolve(path: str) -> Callable[..., Any]:
    """Resolve 'package.module:attr' or 'package.module.attr'."""
    if ":" in path:
        module_path, attr = path.split(":", 1)
    elif "." in path:
        module_path, attr = path.rsplit(".", 1)
    else:
        raise ValueError(f"Invalid transport factory path: {path!r}")

    try:
        module = importlib.import_module(module_path)
    except ImportError as e:
        raise ValueError(f"Could not import transport module {module_path!r}: {e}") from e

    try:
        return getattr(module, attr)
    except AttributeError as e:
        raise ValueError(f"Module {module_path!r} has no attribute {attr!r}") from e


def load_transport(path: str, **options: Any) -> Transport:
    """
    Build the configured transport.

    Args:
        path: Dotted path to a class or zero-config callable returning a Transport
        options: Keyword arguments forwarded to the factory

    Returns:
        Transport instance

    Raises:
        ValueError: If the path is empty, cannot be imported or builds something
            without a connect() coroutine
    """
    if not path:
        raise ValueError("TRANSPORT_FACTORY is not configured")

    factory = _resolve(path)
    transport = factory(**options)

    if not callable(getattr(transport, "connect", None)):
        raise ValueError(f"{path!r} did not produce a transport with a connect() method")

    logger.info(f"Loaded transport {type(transport).__name__} from {path}")
    return transport
