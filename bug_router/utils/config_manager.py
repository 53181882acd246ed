"""
Configuration Management Module
Handles loading and validation of YAML configuration files for the bug router
"""

import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml
from jsonschema import ValidationError, validate


@dataclass
class SynthesisWeights:
    """Blend of estimator and lexical pattern evidence per category"""
    root_cause: float = 0.4
    patterns: float = 0.3

    def __post_init__(self):
        if self.root_cause < 0 or self.patterns < 0:
            raise ValueError("Synthesis weights must be non-negative")


@dataclass
class ClassifierConfig:
    """Thresholds driving the recommendation step"""
    emergency_confidence: float = 0.7
    min_probability: float = 60.0
    min_confidence: float = 0.6
    evidence_threshold: float = 0.6
    valid_evidence_cap: float = 0.9
    invalid_evidence_cap: float = 0.5
    weights: SynthesisWeights = field(default_factory=SynthesisWeights)

    def __post_init__(self):
        for name in ("emergency_confidence", "min_confidence", "evidence_threshold",
                     "valid_evidence_cap", "invalid_evidence_cap"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"classifier.{name} must be between 0 and 1, got {value}")
        if not 0.0 <= self.min_probability <= 100.0:
            raise ValueError("classifier.min_probability must be between 0 and 100")


@dataclass
class EstimatorConfig:
    """Root-cause estimator backend"""
    provider: str = "github-models"
    model: str = "gpt-4o"
    endpoint: Optional[str] = None
    token_secret: str = "GITHUB_TOKEN"
    timeout_seconds: int = 30
    max_tokens: int = 600

    def __post_init__(self):
        if self.provider not in ("github-models", "openai", "none"):
            raise ValueError(f"Unsupported estimator provider: {self.provider}")


@dataclass
class TrackingConfig:
    """Deduplication window and stuck-issue thresholds (days)"""
    db_path: str = "bug_router.db"
    bucket_days: int = 7
    new_days: float = 1.0
    ticket_created_days: float = 1.0
    analyzed_days: float = 2.0
    pr_created_days: float = 3.0
    under_review_days: float = 3.0
    on_call: str = "merekahira"
    lock_stripes: int = 64

    def __post_init__(self):
        if self.bucket_days < 1:
            raise ValueError("tracking.bucket_days must be at least 1")
        if self.lock_stripes < 1:
            raise ValueError("tracking.lock_stripes must be at least 1")


@dataclass
class DailyRunConfig:
    """Scheduled pass bounds and reporting"""
    rate_limit_pause_seconds: float = 1.0
    max_new_reports: int = 50
    max_stuck_issues: int = 25
    hours_saved_per_duplicate: float = 2.0
    hours_saved_per_education: float = 0.5
    report_channels: Optional[List[str]] = None
    summary_channel: Optional[str] = None
    initial_lookback_hours: int = 24

    def __post_init__(self):
        """Initialize default values after dataclass creation"""
        if self.report_channels is None:
            self.report_channels = []


@dataclass
class GitHubConfig:
    """GitHub repository used for code-generation hand-off issues"""
    repository: Optional[str] = None
    api_url: str = "https://api.github.com"
    token_secret: str = "GITHUB_TOKEN"
    handoff_label: str = "ready-for-copilot"
    issue_labels: Optional[List[str]] = None

    def __post_init__(self):
        """Initialize default values after dataclass creation"""
        if self.issue_labels is None:
            self.issue_labels = ["bug", "bug-router"]


@dataclass
class ClickUpConfig:
    """ClickUp list receiving tickets"""
    list_id: Optional[str] = None
    api_url: str = "https://api.clickup.com/api/v2"
    token_secret: str = "CLICKUP_API_TOKEN"
    default_assignees: Optional[List[str]] = None

    def __post_init__(self):
        """Initialize default values after dataclass creation"""
        if self.default_assignees is None:
            self.default_assignees = []


@dataclass
class SlackConfig:
    """Slack workspace used as report source and notification sink"""
    api_url: str = "https://slack.com/api"
    token_secret: str = "SLACK_BOT_TOKEN"
    trigger_emoji: str = "sos"
    team_channel: Optional[str] = None


@dataclass
class FeedbackConfig:
    """Who may override routing with reactions"""
    authorized_users: Optional[List[str]] = None

    def __post_init__(self):
        """Initialize default values after dataclass creation"""
        if self.authorized_users is None:
            self.authorized_users = []


@dataclass
class BugRouterConfig:
    """Top-level configuration"""
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    estimator: EstimatorConfig = field(default_factory=EstimatorConfig)
    tracking: TrackingConfig = field(default_factory=TrackingConfig)
    daily: DailyRunConfig = field(default_factory=DailyRunConfig)
    github: GitHubConfig = field(default_factory=GitHubConfig)
    clickup: ClickUpConfig = field(default_factory=ClickUpConfig)
    slack: SlackConfig = field(default_factory=SlackConfig)
    feedback: FeedbackConfig = field(default_factory=FeedbackConfig)
    log_level: str = "INFO"


_UNIT = {"type": "number", "minimum": 0, "maximum": 1}
_DAYS = {"type": "number", "exclusiveMinimum": 0}
_STRINGS = {"type": "array", "items": {"type": "string"}}


class ConfigLoader:
    """Loads and validates bug router configuration from YAML files"""

    # JSON Schema for configuration validation
    CONFIG_SCHEMA = {
        "type": "object",
        "properties": {
            "classifier": {
                "type": "object",
                "properties": {
                    "emergency_confidence": _UNIT,
                    "min_probability": {"type": "number", "minimum": 0, "maximum": 100},
                    "min_confidence": _UNIT,
                    "evidence_threshold": _UNIT,
                    "valid_evidence_cap": _UNIT,
                    "invalid_evidence_cap": _UNIT,
                    "weights": {
                        "type": "object",
                        "properties": {
                            "root_cause": {"type": "number", "minimum": 0},
                            "patterns": {"type": "number", "minimum": 0}
                        },
                        "additionalProperties": False
                    }
                },
                "additionalProperties": False
            },
            "estimator": {
                "type": "object",
                "properties": {
                    "provider": {"type": "string", "enum": ["github-models", "openai", "none"]},
                    "model": {"type": "string", "minLength": 1},
                    "endpoint": {"type": ["string", "null"]},
                    "token_secret": {"type": "string"},
                    "timeout_seconds": {"type": "integer", "minimum": 1, "maximum": 300},
                    "max_tokens": {"type": "integer", "minimum": 50}
                },
                "additionalProperties": False
            },
            "tracking": {
                "type": "object",
                "properties": {
                    "db_path": {"type": "string", "minLength": 1},
                    "bucket_days": {"type": "integer", "minimum": 1},
                    "new_days": _DAYS,
                    "ticket_created_days": _DAYS,
                    "analyzed_days": _DAYS,
                    "pr_created_days": _DAYS,
                    "under_review_days": _DAYS,
                    "on_call": {"type": "string", "minLength": 1},
                    "lock_stripes": {"type": "integer", "minimum": 1}
                },
                "additionalProperties": False
            },
            "daily": {
                "type": "object",
                "properties": {
                    "rate_limit_pause_seconds": {"type": "number", "minimum": 0},
                    "max_new_reports": {"type": "integer", "minimum": 0},
                    "max_stuck_issues": {"type": "integer", "minimum": 0},
                    "hours_saved_per_duplicate": {"type": "number", "minimum": 0},
                    "hours_saved_per_education": {"type": "number", "minimum": 0},
                    "report_channels": _STRINGS,
                    "summary_channel": {"type": ["string", "null"]},
                    "initial_lookback_hours": {"type": "integer", "minimum": 1}
                },
                "additionalProperties": False
            },
            "github": {
                "type": "object",
                "properties": {
                    "repository": {"type": ["string", "null"], "pattern": "^[^/]+/[^/]+$"},
                    "api_url": {"type": "string"},
                    "token_secret": {"type": "string"},
                    "handoff_label": {"type": "string", "minLength": 1},
                    "issue_labels": _STRINGS
                },
                "additionalProperties": False
            },
            "clickup": {
                "type": "object",
                "properties": {
                    "list_id": {"type": ["string", "null"]},
                    "api_url": {"type": "string"},
                    "token_secret": {"type": "string"},
                    "default_assignees": _STRINGS
                },
                "additionalProperties": False
            },
            "slack": {
                "type": "object",
                "properties": {
                    "api_url": {"type": "string"},
                    "token_secret": {"type": "string"},
                    "trigger_emoji": {"type": "string", "minLength": 1},
                    "team_channel": {"type": ["string", "null"]}
                },
                "additionalProperties": False
            },
            "feedback": {
                "type": "object",
                "properties": {
                    "authorized_users": _STRINGS
                },
                "additionalProperties": False
            },
            "log_level": {
                "type": "string",
                "enum": ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
            }
        },
        "additionalProperties": False
    }

    @classmethod
    def load_config(cls, config_path: str) -> BugRouterConfig:
        """
        Load and validate configuration from YAML file

        Args:
            config_path: Path to the YAML configuration file

        Returns:
            BugRouterConfig object with loaded configuration

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If YAML parsing or schema validation fails
        """
        if not os.path.exists(config_path):
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        try:
            with open(config_path, 'r', encoding='utf-8') as file:
                config_data = yaml.safe_load(file)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in configuration file: {e}") from e

        return cls.from_dict(config_data or {})

    @classmethod
    def from_dict(cls, config_data: Dict[str, Any]) -> BugRouterConfig:
        """Validate a parsed mapping and build the config objects"""
        try:
            validate(instance=config_data, schema=cls.CONFIG_SCHEMA)
        except ValidationError as e:
            raise ValueError(f"Configuration validation failed: {e.message}") from e

        return cls._build_config(config_data)

    @classmethod
    def _build_config(cls, config_data: Dict[str, Any]) -> BugRouterConfig:
        """Build BugRouterConfig object from validated configuration data"""

        classifier_data = dict(config_data.get('classifier', {}))
        weights = SynthesisWeights(**classifier_data.pop('weights', {}))
        classifier = ClassifierConfig(weights=weights, **classifier_data)

        return BugRouterConfig(
            classifier=classifier,
            estimator=EstimatorConfig(**config_data.get('estimator', {})),
            tracking=TrackingConfig(**config_data.get('tracking', {})),
            daily=DailyRunConfig(**config_data.get('daily', {})),
            github=GitHubConfig(**config_data.get('github', {})),
            clickup=ClickUpConfig(**config_data.get('clickup', {})),
            slack=SlackConfig(**config_data.get('slack', {})),
            feedback=FeedbackConfig(**config_data.get('feedback', {})),
            log_level=config_data.get('log_level', 'INFO'),
        )


class ConfigManager:
    """Public interface for configuration management"""

    @classmethod
    def load_config(cls, config_path: str) -> BugRouterConfig:
        """Load configuration from file"""
        return ConfigLoader.load_config(config_path)

    @classmethod
    def load_config_with_env_substitution(cls, config_path: str) -> BugRouterConfig:
        """Load configuration with environment variable substitution"""
        return load_config_with_env_substitution(config_path)


def load_config_with_env_substitution(config_path: str) -> BugRouterConfig:
    """
    Load configuration with environment variable substitution

    Values may reference environment variables using ${ENV_VAR_NAME} or
    ${ENV_VAR_NAME:default_value}.

    Args:
        config_path: Path to the YAML configuration file

    Returns:
        BugRouterConfig object with environment variables substituted
    """
    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r', encoding='utf-8') as file:
        content = file.read()

    env_pattern = re.compile(r'\$\{([^}:]+)(?::([^}]*))?\}')

    def replace_env_var(match):
        var_name = match.group(1)
        default_provided = match.group(2) is not None
        default_value = match.group(2) if default_provided else None

        env_value = os.getenv(var_name)

        # Treat empty strings the same as missing values so YAML does not coerce to null
        if env_value not in (None, ''):
            return env_value

        if default_provided:
            return default_value or ''

        raise ValueError(
            f"Environment variable '{var_name}' is required but not set for configuration file '{config_path}'."
        )

    content = env_pattern.sub(replace_env_var, content)

    try:
        config_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML after environment substitution: {e}") from e

    return ConfigLoader.from_dict(config_data or {})
