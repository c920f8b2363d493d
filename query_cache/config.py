"""
Per-query configuration.

A query's effective options are the process settings, overlaid with the
cache's defaults, overlaid with the options passed when the query is built.
"""

import operator
from typing import Any, Callable, Mapping, Optional, Tuple, List, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .keys import serialize_query_key
from .shared.config import QueryCacheSettings
from .shared.errors import ConfigurationError
from .shared.retry import RetryConfig, default_retry_delay, make_retry_delay


def _identity(args: Tuple[Any, ...]) -> Tuple[Any, ...]:
    return args


class QueryConfig(BaseModel):
    """Resolved options for one query."""

    model_config = ConfigDict(arbitrary_types_allowed=True, extra="forbid")

    enabled: bool = True
    retry: Union[bool, int, Callable[[int, BaseException], bool]] = 3
    retry_delay: Union[float, Callable[[int], float]] = Field(default=default_retry_delay)
    stale_time: float = Field(default=0.0, ge=0)
    cache_time: float = Field(default=300.0, ge=0)
    refetch_interval: Optional[float] = None
    refetch_interval_in_background: bool = False
    refetch_on_mount: bool = True
    initial_data: Any = None
    is_data_equal: Callable[[Any, Any], bool] = Field(default=operator.eq)
    on_success: Optional[Callable[[Any], Any]] = None
    on_error: Optional[Callable[[BaseException], Any]] = None
    on_settled: Optional[Callable[[Any, Optional[BaseException]], Any]] = None
    query_key_serializer: Callable[[Any], Tuple[str, List[Any]]] = Field(default=serialize_query_key)
    query_fn_params_filter: Callable[[Tuple[Any, ...]], Tuple[Any, ...]] = Field(default=_identity)

    @classmethod
    def from_settings(cls, settings: QueryCacheSettings) -> "QueryConfig":
        """Build process-wide defaults from settings."""
        retry_config = RetryConfig(
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
            jitter=settings.retry_jitter,
            backoff_strategy=settings.retry_backoff,
        )
        return cls(
            stale_time=settings.stale_time,
            cache_time=settings.cache_time,
            retry=settings.retry,
            retry_delay=make_retry_delay(retry_config),
            refetch_on_mount=settings.refetch_on_mount,
            refetch_interval_in_background=settings.refetch_interval_in_background,
        )

    def merge(self, overrides: Optional[Mapping[str, Any]] = None) -> "QueryConfig":
        """Return a new config with ``overrides`` applied and validated."""
        if not overrides:
            return self
        if isinstance(overrides, QueryConfig):
            overrides = {name: getattr(overrides, name) for name in overrides.model_fields_set}
        try:
            return QueryConfig(**{**dict(self), **dict(overrides)})
        except ValidationError as exc:
            raise ConfigurationError(
                details={"errors": [
                    {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
                    for error in exc.errors()
                ]}
            ) from exc
