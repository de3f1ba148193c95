"""
Engine Configuration

This module holds every tunable of the decision engine. Values are grouped in
small frozen pydantic models so a loaded ``AMASConfig`` can be shared
read-only by all concurrent decision calls. Configuration is read from
defaults, an optional YAML or JSON file, and environment settings.
"""

import json
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from amas.common.exceptions import ConfigurationError
from amas.common.logger import app_logger

logger = app_logger.getChild("config")

DEFAULT_ALGORITHMS: Tuple[str, ...] = ("heuristic", "ige", "swd", "mdm")


class _FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


def _check_unit(name: str, v: float) -> float:
    if not 0.0 <= v <= 1.0:
        raise ValueError(f"{name} must be between 0 and 1, got {v}")
    return v


class FeatureFlags(_FrozenModel):
    """Switches for the individual candidate generators"""
    ensemble_enabled: bool = True
    heuristic_enabled: bool = True
    ige_enabled: bool = True
    swd_enabled: bool = True
    mdm_enabled: bool = True


class EnsembleConfig(_FrozenModel):
    """Ensemble weighting configuration"""
    algorithms: Tuple[str, ...] = DEFAULT_ALGORITHMS
    # Empty means an equal cold-start prior over ``algorithms``
    base_weights: Dict[str, float] = Field(default_factory=dict)
    warmup_samples: int = 20
    blend_scale: float = 100.0
    blend_max: float = 0.5
    min_weight: float = 0.05
    min_candidates: int = 2

    @field_validator('algorithms')
    def validate_algorithms(cls, v):
        """At least one algorithm must take part in the weighting"""
        if not v:
            raise ValueError("algorithms must not be empty")
        return v

    @field_validator('base_weights')
    def validate_base_weights(cls, v):
        """Base weights must be non-negative"""
        for algorithm_id, weight in v.items():
            if weight < 0:
                raise ValueError(f"Base weight for {algorithm_id} must be non-negative, got {weight}")
        return v

    @field_validator('blend_max', 'min_weight')
    def validate_unit(cls, v, info):
        return _check_unit(info.field_name, v)

    @field_validator('blend_scale')
    def validate_blend_scale(cls, v):
        if v <= 0:
            raise ValueError(f"blend_scale must be positive, got {v}")
        return v

    @field_validator('warmup_samples', 'min_candidates')
    def validate_non_negative(cls, v, info):
        if v < 0:
            raise ValueError(f"{info.field_name} must be non-negative, got {v}")
        return v

    @model_validator(mode='after')
    def validate_min_weight_total(self):
        """min_weight across all algorithms must not exceed a total weight of 1"""
        if self.min_weight * len(self.algorithms) > 1.0:
            raise ValueError(
                f"min_weight {self.min_weight} too large for {len(self.algorithms)} algorithms"
            )
        return self


class HeuristicConfig(_FrozenModel):
    """Rule coefficients of the heuristic generator"""
    cold_start_event_threshold: int = 10
    cold_start_difficulty: float = 0.3
    cold_start_batch_size: int = 5
    cold_start_new_ratio: float = 0.5
    fatigue_difficulty_cap: float = 0.4
    fatigue_batch_size_cap: int = 5
    fatigue_new_ratio_cap: float = 0.1
    accuracy_speed_difficulty_boost: float = 0.2
    low_accuracy_difficulty_drop: float = 0.15
    low_accuracy_difficulty_floor: float = 0.1
    low_accuracy_ratio_drop: float = 0.1
    low_motivation_difficulty_drop: float = 0.1
    low_motivation_difficulty_floor: float = 0.2
    low_motivation_max_batch: int = 8
    confidence_base: float = 0.7
    confidence_decay_cap: float = 0.5
    confidence_min: float = 0.2
    confidence_decay_scale: float = 200.0

    @field_validator('cold_start_batch_size', 'fatigue_batch_size_cap', 'low_motivation_max_batch')
    def validate_batch(cls, v, info):
        if v < 1:
            raise ValueError(f"{info.field_name} must be at least 1, got {v}")
        return v

    @field_validator('confidence_decay_scale')
    def validate_scale(cls, v):
        if v <= 0:
            raise ValueError(f"confidence_decay_scale must be positive, got {v}")
        return v


class ConstraintConfig(_FrozenModel):
    """Safety constraints applied to every final strategy"""
    high_fatigue_threshold: float = 0.9
    low_attention_threshold: float = 0.3
    low_motivation_threshold: float = -0.5
    max_batch_size_when_fatigued: int = 5
    max_new_ratio_when_fatigued: float = 0.2
    max_difficulty_when_fatigued: float = 0.55
    low_motivation_difficulty_drop: float = 0.1
    low_motivation_ratio_drop: float = 0.1
    min_difficulty: float = 0.1
    min_interval_scale: float = 0.1

    @field_validator('min_interval_scale')
    def validate_min_interval_scale(cls, v):
        if v <= 0:
            raise ValueError(f"min_interval_scale must be positive, got {v}")
        return v


class MemoryModelConfig(_FrozenModel):
    """Multi-factor decay model and mastery tracker configuration"""
    short_term_learning_rate: float = 0.50
    medium_term_learning_rate: float = 0.20
    long_term_learning_rate: float = 0.05
    composite_weight_short: float = 0.20
    composite_weight_medium: float = 0.30
    composite_weight_long: float = 0.50
    consolidation_rate_scale: float = 0.03
    consolidation_bonus: float = 0.2
    half_life_base_epsilon: float = 0.1
    half_life_time_unit_secs: float = 86400.0
    max_interval_secs: float = 365.0 * 86400.0
    base_desired_retention: float = 0.85
    alpha_scale: float = 0.3
    alpha_min: float = 0.1
    alpha_max: float = 0.5
    mastery_composite_threshold: float = 0.8
    mastery_accuracy_threshold: float = 0.9
    mastery_streak_threshold: int = 3
    reviewing_threshold: float = 0.4
    forgetting_threshold: float = 0.2
    candidate_confidence: float = 0.5

    @field_validator('half_life_base_epsilon', 'half_life_time_unit_secs', 'max_interval_secs')
    def validate_positive(cls, v, info):
        if v <= 0:
            raise ValueError(f"{info.field_name} must be positive, got {v}")
        return v

    @field_validator('base_desired_retention')
    def validate_retention(cls, v):
        if not 0.0 < v < 1.0:
            raise ValueError(f"base_desired_retention must be in (0, 1), got {v}")
        return v


class EvmConfig(_FrozenModel):
    """Encoding variability model constants"""
    diversity_log_divisor: float = 5.0
    diversity_bonus_cap: float = 0.3
    diversity_growth_rate: float = 0.2
    # A gap this long since the previous event counts as a new study context
    new_context_gap_secs: float = 1800.0

    @field_validator('diversity_log_divisor')
    def validate_divisor(cls, v):
        if v <= 1.0:
            raise ValueError(f"diversity_log_divisor must be greater than 1, got {v}")
        return v

    @field_validator('diversity_bonus_cap')
    def validate_cap(cls, v):
        return _check_unit('diversity_bonus_cap', v)


class IgeConfig(_FrozenModel):
    """Information-gain exploration configuration"""
    batch_size: int = 10
    interval_scale: float = 1.0
    ucb_confidence_coeff: float = 2.0
    default_confidence: float = 0.6


class SwdConfig(_FrozenModel):
    """Similarity-weighted decision configuration"""
    max_history_size: int = 200
    history_filter_threshold: float = -0.5
    fallback_confidence: float = 0.2

    @field_validator('max_history_size')
    def validate_history(cls, v):
        if v < 1:
            raise ValueError(f"max_history_size must be at least 1, got {v}")
        return v


class TrustConfig(_FrozenModel):
    """Trust adaptation configuration"""
    learning_rate: float = 0.05
    default_score: float = 0.5

    @field_validator('learning_rate', 'default_score')
    def validate_unit(cls, v, info):
        return _check_unit(info.field_name, v)


class RewardConfig(_FrozenModel):
    """Reward shaping used for trust and exploration updates"""
    speed_reward_scale: float = 0.5
    fatigue_penalty_threshold: float = 0.7
    fatigue_penalty_scale: float = 0.3
    frustration_penalty_threshold: float = -0.3
    frustration_penalty_scale: float = 0.2


class ModelingConfig(_FrozenModel):
    """Feature extraction and user state modelling"""
    attention_smoothing: float = 0.3
    fatigue_increase_rate: float = 0.02
    fatigue_quit_increase: float = 0.2
    fatigue_full_reset_secs: float = 1800.0
    fatigue_decay_start_secs: float = 300.0
    fatigue_decay_time_constant_secs: float = 600.0
    motivation_momentum: float = 0.1
    motivation_positive_signal: float = 0.1
    motivation_negative_signal: float = -0.15
    confidence_decay: float = 0.99
    confidence_signal: float = 0.02
    min_confidence: float = 0.1
    response_speed_max_ms: float = 10000.0
    hint_penalty: float = 0.3
    quality_accuracy_weight: float = 0.6
    quality_speed_weight: float = 0.4
    engagement_pause_penalty: float = 0.05
    engagement_switch_penalty: float = 0.1
    engagement_focus_loss_base_ms: float = 30000.0
    engagement_penalty_max: float = 0.3

    @field_validator('response_speed_max_ms', 'engagement_focus_loss_base_ms', 'fatigue_decay_time_constant_secs')
    def validate_positive(cls, v, info):
        if v <= 0:
            raise ValueError(f"{info.field_name} must be positive, got {v}")
        return v


class ColdStartConfig(_FrozenModel):
    """Cold-start phase boundaries"""
    classify_to_explore_events: int = 20
    explore_to_exploit_events: int = 80


class MonitoringConfig(_FrozenModel):
    """Decision monitoring and metrics flush configuration"""
    # Share of healthy, post-cold-start decisions kept as monitoring events
    sample_rate: float = 0.05
    metrics_flush_interval_secs: float = 300.0

    @field_validator('sample_rate')
    def validate_sample_rate(cls, v):
        return _check_unit('sample_rate', v)

    @field_validator('metrics_flush_interval_secs')
    def validate_interval(cls, v):
        if v <= 0:
            raise ValueError(f"metrics_flush_interval_secs must be positive, got {v}")
        return v


class StudyDefaults(_FrozenModel):
    """Default study targets"""
    daily_word_target: int = 20
    daily_new_word_target: int = 10
    min_batch_size: int = 1

    @model_validator(mode='after')
    def validate_targets(self):
        if self.min_batch_size < 1:
            raise ValueError(f"min_batch_size must be at least 1, got {self.min_batch_size}")
        if self.daily_word_target < self.min_batch_size:
            raise ValueError("daily_word_target must not be below min_batch_size")
        if not 0 <= self.daily_new_word_target <= self.daily_word_target:
            raise ValueError("daily_new_word_target must be between 0 and daily_word_target")
        return self


class AMASConfig(_FrozenModel):
    """Complete decision engine configuration"""
    feature_flags: FeatureFlags = Field(default_factory=FeatureFlags)
    ensemble: EnsembleConfig = Field(default_factory=EnsembleConfig)
    heuristic: HeuristicConfig = Field(default_factory=HeuristicConfig)
    constraints: ConstraintConfig = Field(default_factory=ConstraintConfig)
    memory: MemoryModelConfig = Field(default_factory=MemoryModelConfig)
    evm: EvmConfig = Field(default_factory=EvmConfig)
    ige: IgeConfig = Field(default_factory=IgeConfig)
    swd: SwdConfig = Field(default_factory=SwdConfig)
    trust: TrustConfig = Field(default_factory=TrustConfig)
    reward: RewardConfig = Field(default_factory=RewardConfig)
    modeling: ModelingConfig = Field(default_factory=ModelingConfig)
    cold_start: ColdStartConfig = Field(default_factory=ColdStartConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    study: StudyDefaults = Field(default_factory=StudyDefaults)

    @model_validator(mode='after')
    def validate_cold_start(self):
        """Phase boundaries must be ordered"""
        cs = self.cold_start
        if cs.classify_to_explore_events > cs.explore_to_exploit_events:
            raise ValueError("classify_to_explore_events must not exceed explore_to_exploit_events")
        return self

    def validate_ranges(self) -> 'AMASConfig':
        """
        Re-run every validator, e.g. on a config built with ``model_construct``.

        Raises:
            ConfigurationError: If any value is invalid
        """
        try:
            return type(self).model_validate(self.model_dump())
        except ValidationError as e:
            raise ConfigurationError(str(e)) from e


class AppSettings(BaseSettings):
    """Process-level settings read from the environment or a .env file"""
    model_config = SettingsConfigDict(env_prefix="AMAS_", env_file=".env", extra="ignore")

    config_path: Optional[str] = None
    database_url: str = "sqlite:///amas.db"
    log_level: str = "INFO"
    log_json: bool = False
    log_file: Optional[str] = None
    metrics_flush_interval_secs: Optional[float] = None
    monitor_sample_rate: Optional[float] = None

    @field_validator('log_level')
    def validate_level(cls, v):
        """Validate log level"""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()

    @field_validator('monitor_sample_rate')
    def validate_sample_rate(cls, v):
        return v if v is None else _check_unit('monitor_sample_rate', v)


class ConfigLoader:
    """
    Configuration loader for the engine.

    Loads configuration from:
    1. Default values
    2. Config file (YAML or JSON)
    """

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize the config loader.

        Args:
            config_path: Path to config file (YAML or JSON)
        """
        self.config_path = config_path
        self._config: Optional[AMASConfig] = None

    def load(self) -> AMASConfig:
        """
        Load and validate configuration.

        Returns:
            Loaded configuration

        Raises:
            ConfigurationError: If a value fails validation
        """
        if self._config is not None:
            return self._config

        file_config: Dict[str, Any] = {}
        if self.config_path:
            file_config = self._load_from_file(self.config_path)

        try:
            self._config = AMASConfig(**file_config)
        except ValidationError as e:
            first = e.errors()[0] if e.errors() else {}
            key = ".".join(str(part) for part in first.get("loc", ()))
            raise ConfigurationError(str(e), config_key=key or None) from e
        return self._config

    def _load_from_file(self, path: str) -> Dict[str, Any]:
        """
        Load configuration from a file.

        Args:
            path: Path to config file

        Returns:
            Loaded configuration dictionary
        """
        path = Path(path)
        if not path.exists():
            logger.warning(f"Config file not found: {path}")
            return {}

        try:
            if path.suffix.lower() in ['.yaml', '.yml']:
                with open(path, 'r') as f:
                    return yaml.safe_load(f) or {}
            elif path.suffix.lower() == '.json':
                with open(path, 'r') as f:
                    return json.load(f)
            else:
                logger.warning(f"Unsupported config file format: {path.suffix}")
                return {}
        except (OSError, ValueError, yaml.YAMLError) as e:
            logger.error(f"Error loading config file {path}: {e}")
            return {}


def load_config(config_path: Optional[str] = None) -> AMASConfig:
    """
    Load the engine configuration.

    Args:
        config_path: Path to config file; falls back to ``AMAS_CONFIG_PATH``

    Returns:
        Validated configuration
    """
    path = config_path or AppSettings().config_path
    return ConfigLoader(path).load()
