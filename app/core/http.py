from contextlib import contextmanager
from typing import Iterator, Optional

import httpx

from app.config import settings


@contextmanager
def http_client(injected: Optional[httpx.Client] = None) -> Iterator[httpx.Client]:
    """Yield the injected client as is, or a per-call client that is closed on exit."""
    if injected is not None:
        yield injected
        return
    with httpx.Client(timeout=settings.http_timeout) as client:
        yield client
