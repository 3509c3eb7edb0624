"""In-process cache of rendered page documents, keyed by request path.

Writers that change what a page shows call ``revalidate_path`` so the next
read renders from the database again. A render that was in flight when its
path was revalidated is returned to its caller but never stored.
"""
import logging
import threading
from collections import OrderedDict
from typing import Any, Callable

logger = logging.getLogger(__name__)

MAX_PAGES = 512

_pages: "OrderedDict[str, Any]" = OrderedDict()
# Only paths with a render in flight have an entry in these two maps.
_generations: dict[str, int] = {}
_rendering: dict[str, int] = {}
_lock = threading.Lock()


def get_or_render(path: str, render: Callable[[], Any]) -> Any:
    with _lock:
        if path in _pages:
            _pages.move_to_end(path)
            return _pages[path]
        generation = _generations.get(path, 0)
        _rendering[path] = _rendering.get(path, 0) + 1

    try:
        document = render()
    finally:
        with _lock:
            fresh = _generations.get(path, 0) == generation
            _rendering[path] -= 1
            if not _rendering[path]:
                del _rendering[path]
                _generations.pop(path, None)

    if document is not None and fresh:
        with _lock:
            _pages[path] = document
            _pages.move_to_end(path)
            while len(_pages) > MAX_PAGES:
                _pages.popitem(last=False)
    return document


def revalidate_path(path: str) -> None:
    with _lock:
        dropped = _pages.pop(path, None) is not None
        if path in _rendering:
            _generations[path] = _generations.get(path, 0) + 1
    logger.debug("Revalidated %s (cached=%s)", path, dropped)


def clear() -> None:
    with _lock:
        _pages.clear()
        _generations.clear()
        _rendering.clear()
