"""
Campaign Gate Configuration Management

Centralized configuration for all subsystems.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List

import yaml


class Environment(Enum):
    """Deployment environments."""
    DEV = "dev"
    STAGING = "staging"
    PRODUCTION = "production"


@dataclass
class PermissionConfig:
    """Permission resolver configuration."""
    admin_role: str = "admin"
    service_account_role: str = "ai-system"
    service_account_verbs: List[str] = field(
        default_factory=lambda: ["read", "create", "update"]
    )
    service_account_resources: List[str] = field(
        default_factory=lambda: ["campaigns", "ai-suggestions", "telemetry"]
    )


@dataclass
class ValidationConfig:
    """Governance validation configuration."""
    title_max_length: int = 100
    description_warn_length: int = 1000
    denylist: List[str] = field(default_factory=lambda: ["spam", "scam", "fake"])
    budget_warn_threshold: float = 1_000_000
    timeline_min_days: int = 1
    timeline_max_days: int = 365
    editor_roles: List[str] = field(default_factory=lambda: ["editor", "admin"])
    assigner_roles: List[str] = field(default_factory=lambda: ["admin", "reviewer"])
    reviewer_roles: List[str] = field(default_factory=lambda: ["reviewer", "admin"])


@dataclass
class ExportConfig:
    """Export preflight configuration."""
    exportable_statuses: List[str] = field(
        default_factory=lambda: ["approved", "active"]
    )
    approved_activity_status: str = "approved"
    exporter_roles: List[str] = field(default_factory=lambda: ["admin", "editor"])
    external_url_template: str = "https://www.wrike.com/open.htm?id={external_id}"


@dataclass
class AuditConfig:
    """Audit trail configuration."""
    collection: str = "governance"
    hash_algorithm: str = "sha256"


@dataclass
class StoreConfig:
    """Document store configuration."""
    backend: str = "memory"
    path: str = "data/campaigngate.db"


@dataclass
class Config:
    """
    Main configuration class for Campaign Gate.

    Aggregates all subsystem configurations.
    """
    environment: Environment = Environment.DEV

    permissions: PermissionConfig = field(default_factory=PermissionConfig)
    validation: ValidationConfig = field(default_factory=ValidationConfig)
    export: ExportConfig = field(default_factory=ExportConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)
    store: StoreConfig = field(default_factory=StoreConfig)

    log_level: str = "INFO"

    @classmethod
    def from_file(cls, config_path: str) -> "Config":
        """
        Load configuration from a YAML file.

        Args:
            config_path: Path to configuration YAML file

        Returns:
            Populated Config object
        """
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """
        Create configuration from dictionary.

        Args:
            data: Configuration dictionary

        Returns:
            Populated Config object
        """
        config = cls()

        if "environment" in data:
            config.environment = Environment(data["environment"])

        if "permissions" in data:
            config.permissions = PermissionConfig(**data["permissions"])
        if "validation" in data:
            config.validation = ValidationConfig(**data["validation"])
        if "export" in data:
            config.export = ExportConfig(**data["export"])
        if "audit" in data:
            config.audit = AuditConfig(**data["audit"])
        if "store" in data:
            config.store = StoreConfig(**data["store"])

        if "log_level" in data:
            config.log_level = data["log_level"]

        return config

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            "environment": self.environment.value,
            "permissions": {
                "admin_role": self.permissions.admin_role,
                "service_account_role": self.permissions.service_account_role,
                "service_account_verbs": list(self.permissions.service_account_verbs),
                "service_account_resources": list(
                    self.permissions.service_account_resources
                ),
            },
            "validation": {
                "title_max_length": self.validation.title_max_length,
                "description_warn_length": self.validation.description_warn_length,
                "denylist": list(self.validation.denylist),
                "budget_warn_threshold": self.validation.budget_warn_threshold,
                "timeline_min_days": self.validation.timeline_min_days,
                "timeline_max_days": self.validation.timeline_max_days,
                "editor_roles": list(self.validation.editor_roles),
                "assigner_roles": list(self.validation.assigner_roles),
                "reviewer_roles": list(self.validation.reviewer_roles),
            },
            "export": {
                "exportable_statuses": list(self.export.exportable_statuses),
                "approved_activity_status": self.export.approved_activity_status,
                "exporter_roles": list(self.export.exporter_roles),
                "external_url_template": self.export.external_url_template,
            },
            "audit": {
                "collection": self.audit.collection,
                "hash_algorithm": self.audit.hash_algorithm,
            },
            "store": {
                "backend": self.store.backend,
                "path": self.store.path,
            },
            "log_level": self.log_level,
        }

    def validate(self) -> List[str]:
        """
        Validate configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if self.validation.title_max_length < 1:
            errors.append("Title max length must be at least 1")

        if self.validation.timeline_min_days > self.validation.timeline_max_days:
            errors.append("Timeline minimum cannot exceed timeline maximum")

        if self.validation.budget_warn_threshold < 0:
            errors.append("Budget warning threshold must be non-negative")

        if self.audit.hash_algorithm != "sha256":
            errors.append(
                f"Unsupported audit hash algorithm: {self.audit.hash_algorithm}"
            )

        if self.store.backend not in ("memory", "sqlite"):
            errors.append(f"Unknown store backend: {self.store.backend}")

        if "{external_id}" not in self.export.external_url_template:
            errors.append("External URL template must contain {external_id}")

        if self.log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR"):
            errors.append(f"Invalid log level: {self.log_level}")

        return errors
