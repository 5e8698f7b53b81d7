"""Engine settings."""

from __future__ import annotations

from pydantic import BaseModel, Field

from row_mapper.core.enums import AutoMappingBehavior, LocalCacheScope


class Settings(BaseModel):
    """Behavioral switches shared by every statement of a Configuration."""

    auto_mapping_behavior: AutoMappingBehavior = AutoMappingBehavior.PARTIAL
    map_underscore_to_camel_case: bool = False
    call_setters_on_nulls: bool = False
    return_instance_for_empty_row: bool = False
    lazy_loading_enabled: bool = False
    substitution_pattern: str | None = None
    local_cache_scope: LocalCacheScope = LocalCacheScope.SESSION
    cache_enabled: bool = True
    default_fetch_size: int | None = Field(default=None, gt=0)
    default_timeout: int | None = Field(default=None, gt=0)
    shrink_whitespace: bool = False
    max_include_depth: int = Field(default=16, ge=1)

    model_config = {"frozen": True}
