"""
Generation configuration for the explanation tree engine.

Holds the defaults, the normalized ``ExplanationConfig`` the core consumes,
validation that reports every problem at once, the config hash that ties a
tree to the settings that produced it, and regeneration planning between
two configs. Also stamps each run with version and timestamp metadata.
"""

from __future__ import annotations

import hashlib
import json
import math
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import urlparse

from explanation_tree.errors import InvalidInputError

DEFAULT_RUN_DIR = "runs"

SUPPORTED_LANGUAGES = ("en", "fr")
DEFAULT_LANGUAGE = "en"

AUDIENCE_LEVELS = ("novice", "intermediate", "expert")
READING_LEVELS = ("elementary", "middle_school", "high_school", "undergraduate", "graduate")
PROOF_DETAIL_MODES = ("minimal", "balanced", "formal")
ENTAILMENT_MODES = ("calibrated", "strict")
PROVIDERS = ("openai-compatible",)

# Lowest reading level each audience may be paired with.
MIN_READING_LEVEL_BY_AUDIENCE = {
    "novice": "elementary",
    "intermediate": "middle_school",
    "expert": "high_school",
}

# Fields whose change only affects transport, not generated content.
TRANSPORT_ONLY_FIELDS = frozenset({
    "model_provider.timeout_ms",
    "model_provider.max_retries",
    "model_provider.retry_base_delay_ms",
    "model_provider.max_output_tokens",
    "model_provider.api_key_env_var",
})


# ---------------------------------------------------------------------------
# Config types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ModelProviderConfig:
    provider: str = "openai-compatible"
    endpoint: str = "http://localhost:8080/v1"
    model: str = "gpt-4.1-mini"
    api_key_env_var: str = "OPENAI_API_KEY"
    timeout_ms: int = 30_000
    max_retries: int = 2
    retry_base_delay_ms: int = 250     # Backoff: 250ms, 500ms, 1s, ... capped at 10s
    temperature: float = 0.0
    max_output_tokens: int = 1200


@dataclass(frozen=True)
class ExplanationConfig:
    abstraction_level: int = 3
    complexity_level: int = 3
    max_children_per_parent: int = 5
    language: str = DEFAULT_LANGUAGE
    audience_level: str = "intermediate"
    reading_level_target: str = "high_school"
    complexity_band_width: int = 1
    term_introduction_budget: int = 2
    proof_detail_mode: str = "balanced"
    entailment_mode: str = "calibrated"
    model_provider: ModelProviderConfig = field(default_factory=ModelProviderConfig)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


DEFAULT_CONFIG = ExplanationConfig()


@dataclass(frozen=True)
class ConfigError:
    path: str
    message: str


@dataclass(frozen=True)
class ConfigValidationResult:
    ok: bool
    errors: tuple[ConfigError, ...] = ()


@dataclass(frozen=True)
class RegenerationPlan:
    """How much of a previously built tree a config change invalidates."""
    scope: str                          # "none", "partial" or "full"
    changed_fields: tuple[str, ...] = ()
    reason: str = ""


@dataclass(frozen=True)
class RunMetadata:
    """Stamps each run with version and timestamp."""
    version: str
    generated_at: str


def build_metadata(version: str = "0.1.0") -> RunMetadata:
    return RunMetadata(
        version=version,
        generated_at=datetime.now(timezone.utc).isoformat(),
    )


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------

def resolve_language(language: str | None) -> str:
    """Map a language tag onto a supported language (``fr-CA`` -> ``fr``)."""
    if not language:
        return DEFAULT_LANGUAGE
    tag = language.strip().lower().replace("_", "-")
    if tag in SUPPORTED_LANGUAGES:
        return tag
    base = tag.split("-", 1)[0]
    if base in SUPPORTED_LANGUAGES:
        return base
    return DEFAULT_LANGUAGE


def _strip(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value


def normalize_config(overrides: Mapping[str, Any] | None = None) -> ExplanationConfig:
    """Merge partial overrides (snake_case keys) onto the defaults.

    Unknown keys are rejected so typos do not silently fall back to defaults.
    The result is normalized but not validated; see validate_config().
    """
    data = dict(overrides or {})
    provider_data = dict(data.pop("model_provider", None) or {})

    known = set(ExplanationConfig.__dataclass_fields__) - {"model_provider"}
    unknown = sorted(set(data) - known)
    if unknown:
        raise InvalidInputError(f"Unknown config field(s): {', '.join(unknown)}")
    known_provider = set(ModelProviderConfig.__dataclass_fields__)
    unknown = sorted(set(provider_data) - known_provider)
    if unknown:
        raise InvalidInputError(
            f"Unknown model_provider field(s): {', '.join(unknown)}"
        )

    provider = replace(
        DEFAULT_CONFIG.model_provider,
        **{key: _strip(value) for key, value in provider_data.items()},
    )
    provider = replace(provider, provider=str(provider.provider).lower())

    config = replace(
        DEFAULT_CONFIG,
        **{key: _strip(value) for key, value in data.items()},
        model_provider=provider,
    )
    return replace(config, language=resolve_language(config.language))


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def _check_int(errors: list[ConfigError], path: str, value: Any, low: int, high: int) -> None:
    if not isinstance(value, int) or isinstance(value, bool) or not low <= value <= high:
        errors.append(ConfigError(path, f"must be an integer in [{low}, {high}]"))


def _check_choice(errors: list[ConfigError], path: str, value: Any, choices: tuple[str, ...]) -> None:
    if value not in choices:
        errors.append(ConfigError(path, f"must be one of: {', '.join(choices)}"))


def validate_config(config: ExplanationConfig) -> ConfigValidationResult:
    """Check every field and collect all errors rather than stopping at the first."""
    errors: list[ConfigError] = []

    _check_int(errors, "abstraction_level", config.abstraction_level, 1, 5)
    _check_int(errors, "complexity_level", config.complexity_level, 1, 5)
    _check_int(errors, "max_children_per_parent", config.max_children_per_parent, 2, 12)
    _check_int(errors, "complexity_band_width", config.complexity_band_width, 0, 3)
    _check_int(errors, "term_introduction_budget", config.term_introduction_budget, 0, 8)
    _check_choice(errors, "language", config.language, SUPPORTED_LANGUAGES)
    _check_choice(errors, "audience_level", config.audience_level, AUDIENCE_LEVELS)
    _check_choice(errors, "reading_level_target", config.reading_level_target, READING_LEVELS)
    _check_choice(errors, "proof_detail_mode", config.proof_detail_mode, PROOF_DETAIL_MODES)
    _check_choice(errors, "entailment_mode", config.entailment_mode, ENTAILMENT_MODES)

    minimum = MIN_READING_LEVEL_BY_AUDIENCE.get(config.audience_level)
    if minimum and config.reading_level_target in READING_LEVELS:
        if READING_LEVELS.index(config.reading_level_target) < READING_LEVELS.index(minimum):
            errors.append(ConfigError(
                "reading_level_target",
                f"must be at least {minimum} for audience {config.audience_level}",
            ))

    provider = config.model_provider
    _check_choice(errors, "model_provider.provider", provider.provider, PROVIDERS)
    for name in ("endpoint", "model", "api_key_env_var"):
        value = getattr(provider, name)
        if not isinstance(value, str) or not value:
            errors.append(ConfigError(f"model_provider.{name}", "must be a non-empty string"))
    if isinstance(provider.endpoint, str) and provider.endpoint:
        parsed = urlparse(provider.endpoint)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            errors.append(ConfigError("model_provider.endpoint", "must be an http(s) URL"))
    _check_int(errors, "model_provider.timeout_ms", provider.timeout_ms, 1000, 120_000)
    _check_int(errors, "model_provider.max_retries", provider.max_retries, 0, 8)
    _check_int(errors, "model_provider.retry_base_delay_ms", provider.retry_base_delay_ms, 50, 5000)
    _check_int(errors, "model_provider.max_output_tokens", provider.max_output_tokens, 128, 16_384)
    temperature = provider.temperature
    if (
        not isinstance(temperature, (int, float))
        or isinstance(temperature, bool)
        or not math.isfinite(temperature)
        or not 0 <= temperature <= 1
    ):
        errors.append(ConfigError("model_provider.temperature", "must be a number in [0, 1]"))

    return ConfigValidationResult(ok=not errors, errors=tuple(errors))


def compute_config_hash(config: ExplanationConfig) -> str:
    payload = json.dumps(config.to_dict(), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def load_config(path: Path) -> ExplanationConfig:
    """Read, normalize and validate a JSON config file.

    Raises:
        FileNotFoundError: If the file does not exist.
        InvalidInputError: If the JSON is malformed or any field is invalid.
    """
    if not path.exists():
        raise FileNotFoundError(f"Config not found: {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise InvalidInputError(f"Config {path} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise InvalidInputError(f"Config {path} must contain a JSON object")

    config = normalize_config(data)
    result = validate_config(config)
    if not result.ok:
        details = "; ".join(f"{e.path} {e.message}" for e in result.errors)
        raise InvalidInputError(f"Invalid config {path}: {details}")
    return config


# ---------------------------------------------------------------------------
# Regeneration planning
# ---------------------------------------------------------------------------

def _flatten(data: Mapping[str, Any], prefix: str = "") -> dict[str, Any]:
    flat: dict[str, Any] = {}
    for key, value in data.items():
        path = f"{prefix}{key}"
        if isinstance(value, Mapping):
            flat.update(_flatten(value, f"{path}."))
        else:
            flat[path] = value
    return flat


def plan_regeneration(
    previous: ExplanationConfig,
    current: ExplanationConfig,
) -> RegenerationPlan:
    """Decide whether a config change requires rebuilding the tree.

    Content-affecting changes require a full rebuild; transport-only
    changes (timeouts, retries, token cap, key variable) only a partial one.
    """
    before = _flatten(previous.to_dict())
    after = _flatten(current.to_dict())
    changed = tuple(sorted(path for path in after if before.get(path) != after[path]))

    if not changed:
        return RegenerationPlan(scope="none", reason="Configuration unchanged.")
    if all(path in TRANSPORT_ONLY_FIELDS for path in changed):
        return RegenerationPlan(
            scope="partial",
            changed_fields=changed,
            reason="Only transport settings changed; existing summaries stay valid.",
        )
    return RegenerationPlan(
        scope="full",
        changed_fields=changed,
        reason="Generation settings changed; every parent must be regenerated.",
    )
