"""
Provider parameter schemas and validation.

Each provider declares which request parameters it accepts, their defaults,
valid ranges and wire names. Model-pattern overrides adjust the schema for
model variants (reasoning models, models with mutually exclusive params).

A param whose default is None is only sent when the model sets it.
"""

from __future__ import annotations

import copy
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from colloquy.llm.models import ConfiguredModel

logger = logging.getLogger(__name__)


@dataclass
class ParamSpec:
    """How one request parameter is validated and sent."""

    range: tuple[float, float] | None = None
    default: Any = None
    api_name: str | None = None


@dataclass
class ExclusiveGroup:
    """Params of which at most one (or at least one) may be set."""

    params: tuple[str, ...]
    at_most_one: bool = False
    require_one: bool = False


@dataclass
class ParamSchema:
    params: dict[str, ParamSpec] = field(default_factory=dict)
    exclusive_groups: list[ExclusiveGroup] = field(default_factory=list)


@dataclass
class ModelOverride:
    """Schema changes applied to every model whose name matches ``pattern``."""

    pattern: str
    unsupported: tuple[str, ...] = ()
    params: dict[str, ParamSpec] = field(default_factory=dict)
    exclusive_groups: tuple[ExclusiveGroup, ...] = ()


@dataclass
class ValidationReport:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


_SAMPLING = {
    "temperature": ParamSpec(range=(0, 2)),
    "top_p": ParamSpec(range=(0, 1)),
}

PROVIDER_SCHEMAS: dict[str, ParamSchema] = {
    "openai": ParamSchema(params={**_SAMPLING, "max_tokens": ParamSpec(default=4096)}),
    "anthropic": ParamSchema(params={**_SAMPLING, "max_tokens": ParamSpec(default=4096)}),
    "googleai": ParamSchema(
        params={
            "temperature": ParamSpec(range=(0, 2), api_name="temperature"),
            "top_p": ParamSpec(range=(0, 1), api_name="topP"),
            "top_k": ParamSpec(api_name="topK", default=100),
            "max_tokens": ParamSpec(api_name="maxOutputTokens", default=8192),
        }
    ),
    "ollama": ParamSchema(
        params={**_SAMPLING, "min_p": ParamSpec(), "max_tokens": ParamSpec(default=4096)}
    ),
    "copilot": ParamSchema(params={**_SAMPLING, "max_tokens": ParamSpec(default=4096)}),
}

# Schema used for providers without their own entry, by wire family
FAMILY_SCHEMAS = {
    "chat_completions": "openai",
    "messages": "anthropic",
    "contents": "googleai",
}

# All matching overrides apply, in order
MODEL_OVERRIDES: list[ModelOverride] = [
    ModelOverride(
        pattern=r"^o[13]",
        unsupported=("temperature", "top_p", "max_tokens"),
        params={"reasoning_effort": ParamSpec(default="minimal")},
    ),
    ModelOverride(
        pattern=r"^gpt-4o-search-preview$",
        unsupported=("temperature", "top_p", "max_tokens"),
    ),
    ModelOverride(
        pattern=r"^gpt-5",
        unsupported=("temperature", "top_p"),
        params={
            "max_tokens": ParamSpec(api_name="max_completion_tokens", default=4096),
            "reasoning_effort": ParamSpec(default="minimal"),
        },
    ),
    ModelOverride(
        pattern=r"^claude-sonnet-4-6",
        exclusive_groups=(ExclusiveGroup(params=("temperature", "top_p"), at_most_one=True),),
    ),
]


def get_schema(provider: str, model_name: str, family: str | None = None) -> ParamSchema:
    """
    Return the parameter schema for a provider and model.

    Args:
        provider: Provider name
        model_name: Model name matched against the override patterns
        family: Wire family used when the provider has no schema of its own
    """
    base = PROVIDER_SCHEMAS.get(provider)
    if base is None and family is not None:
        base = PROVIDER_SCHEMAS.get(FAMILY_SCHEMAS.get(family, ""))
    schema = copy.deepcopy(base) if base is not None else ParamSchema()

    for override in MODEL_OVERRIDES:
        if not model_name or not re.search(override.pattern, model_name):
            continue
        for name in override.unsupported:
            schema.params.pop(name, None)
        schema.params.update(copy.deepcopy(override.params))
        schema.exclusive_groups.extend(override.exclusive_groups)

    return schema


def resolve_params(
    provider: str,
    model: ConfiguredModel,
    family: str | None = None,
    default_max_tokens: int | None = None,
) -> dict[str, Any]:
    """
    Produce the request parameters for the payload, keyed by wire name.

    Defaults fill unset params, numeric values are clamped to their range,
    and params that end up unset are omitted.
    """
    schema = get_schema(provider, model.name, family)
    result: dict[str, Any] = {}

    for name, spec in schema.params.items():
        value = model.params.get(name)
        if value is None:
            value = spec.default
            if name == "max_tokens" and default_max_tokens is not None:
                value = default_max_tokens

        if value is not None and spec.range is not None and isinstance(value, int | float):
            low, high = spec.range
            value = max(low, min(high, value))

        if value is not None:
            result[spec.api_name or name] = value

    return result


def validate_model(
    provider: str,
    model: str | dict[str, Any] | ConfiguredModel,
    family: str | None = None,
) -> ValidationReport:
    """
    Check a model's overrides against its provider schema.

    Reports unknown params and out-of-range values as warnings and
    exclusive-group violations as errors. Bare model names have nothing to check.
    """
    report = ValidationReport()
    if isinstance(model, str):
        return report
    if isinstance(model, dict):
        name = str(model.get("model", ""))
        params = {k: v for k, v in model.items() if k != "model"}
    elif isinstance(model, ConfiguredModel):
        name, params = model.name, model.params
    else:
        report.errors.append("model must be a string or mapping")
        return report

    schema = get_schema(provider, name, family)

    for key in params:
        if key not in schema.params:
            report.warnings.append(
                f"unknown parameter '{key}' for provider '{provider}' model '{name}'"
            )

    for group in schema.exclusive_groups:
        set_params = [p for p in group.params if params.get(p) is not None]
        if group.at_most_one and len(set_params) > 1:
            report.errors.append(
                f"at most one of {{{', '.join(group.params)}}} can be set for model "
                f"'{name}', but found: {', '.join(set_params)}"
            )
        if group.require_one and not set_params:
            report.errors.append(
                f"at least one of {{{', '.join(group.params)}}} must be set for model '{name}'"
            )

    for key, spec in schema.params.items():
        value = params.get(key)
        if spec.range is None or not isinstance(value, int | float):
            continue
        low, high = spec.range
        if value < low or value > high:
            report.warnings.append(
                f"parameter '{key}' value {value} is outside range [{low}, {high}] "
                "(will be clamped)"
            )

    return report
