from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from ..context import RunContext
from ..errors import ProviderError, RunCancelled
from ..http_client import HttpClient
from ..models import RawPosting


class BaseProvider(ABC):
    """
    Abstract source provider: fetches openings from ONE configured endpoint.

    Contract:
      - fetch_openings(ctx) returns ALL postings the source currently lists
        (dedupe happens in the engine against the store).
      - Any transport/status/decoding problem is raised as ProviderError.
      - Honor ctx: no request once the run is cancelled or out of time.
      - Do NOT touch the store or mutate global state.
    """

    # Concrete subclasses MUST set this to the config type tag, e.g. "greenhouse", "lever"
    kind: str = ""

    def __init__(self, name: str, base_url: str, *, client: HttpClient | None = None) -> None:
        self._name = name
        self.base_url = base_url
        self._client = client or HttpClient()

    def name(self) -> str:
        return self._name

    def fetch_openings(self, ctx: RunContext | None = None) -> list[RawPosting]:
        """
        GET the endpoint and map the payload. Wraps every failure in ProviderError
        except cancellation, which the engine handles itself.
        """
        try:
            payload = self._client.get_json(self.base_url, ctx=ctx)
            return self.parse(payload)
        except (ProviderError, RunCancelled):
            raise
        except Exception as e:
            raise ProviderError(self._name, f"{self.kind}: {e}") from e

    @abstractmethod
    def parse(self, payload: Any) -> list[RawPosting]:
        """Map a decoded JSON payload to RawPostings (raise ValueError on a wrong shape)."""
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self._name!r}, base_url={self.base_url!r})"
