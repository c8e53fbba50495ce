"""Configuration Management for PageStore

Tenant capture policy is stored in a DynamoDB table keyed by a single
partition key 'Configuration':
- Default: system-wide defaults
- Tenant#<tenant_id>: per-tenant overrides (read-write)

The ConfigurationManager merges Tenant → Default to provide the effective
policy for a tenant. No caching is used; configuration is read from
DynamoDB on every call so policy changes apply immediately.
"""

import logging
import os
from copy import deepcopy
from dataclasses import dataclass, fields
from decimal import Decimal
from typing import Any, Dict, Optional

import boto3
from botocore.exceptions import ClientError

from pagestore_common import constants

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_KEY = "Default"
TENANT_CONFIG_PREFIX = "Tenant#"

RENDER_MODES = ("fetch", "auto", "render")


@dataclass
class PageStoreSettings:
    """
    Effective capture policy for one tenant.

    Attributes:
        snapshot_max_age_hours: Reuse window for cached snapshots. None means
            a stored snapshot is reused until a forced refresh.
        max_snapshots_per_url: Retention limit per page (0 disables pruning)
        render_mode: 'fetch' (plain HTTP), 'render' (headless browser) or
            'auto' (HTTP first, render when the page looks like an SPA)
        capture_screenshots: Take desktop/mobile screenshots on capture
        request_timeout_seconds: Outbound fetch timeout
        user_agent: User-Agent sent to archived sites
    """

    snapshot_max_age_hours: float | None = None
    max_snapshots_per_url: int = constants.DEFAULT_MAX_SNAPSHOTS_PER_URL
    render_mode: str = "fetch"
    capture_screenshots: bool = False
    request_timeout_seconds: float = constants.REQUEST_TIMEOUT
    user_agent: str = "PageStore/1.0 (+page-archive)"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PageStoreSettings":
        """Build settings from a merged configuration dict, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        values = {k: _from_dynamo(v) for k, v in data.items() if k in known}

        settings = cls(**values)
        if settings.render_mode not in RENDER_MODES:
            logger.warning(f"Unknown render_mode '{settings.render_mode}', using 'fetch'")
            settings.render_mode = "fetch"
        if settings.max_snapshots_per_url is not None:
            settings.max_snapshots_per_url = int(settings.max_snapshots_per_url)
        return settings


def _from_dynamo(value: Any) -> Any:
    """Convert DynamoDB Decimal values to int/float."""
    if isinstance(value, Decimal):
        return int(value) if value % 1 == 0 else float(value)
    return value


class ConfigurationManager:
    """
    Reads tenant capture policy from DynamoDB.

    Usage:
        config_manager = ConfigurationManager()
        settings = config_manager.get_settings(tenant_id)

    Design Decisions:
        - No caching: reads from DynamoDB on every call
        - Fails fast: raises ClientError if table access fails
        - Merges Tenant → Default: tenant values override defaults
    """

    def __init__(self, table_name: Optional[str] = None):
        """
        Initialize configuration manager.

        Args:
            table_name: Configuration table name. If not provided, reads from
                       CONFIGURATION_TABLE_NAME environment variable.

        Raises:
            ValueError: If table_name not provided and env var not set
        """
        table_name = table_name or os.environ.get("CONFIGURATION_TABLE_NAME")
        if not table_name:
            raise ValueError(
                "Configuration table name not provided. "
                "Set CONFIGURATION_TABLE_NAME environment variable or provide table_name parameter."
            )

        self.dynamodb = boto3.resource("dynamodb")
        self.table = self.dynamodb.Table(table_name)
        self.table_name = table_name

        logger.info(f"Initialized ConfigurationManager with table: {table_name}")

    def get_configuration_item(self, config_key: str) -> Optional[Dict[str, Any]]:
        """
        Retrieve one configuration item ('Default' or 'Tenant#<id>').

        Returns:
            Item without its partition key, or None if it doesn't exist

        Raises:
            ClientError: If DynamoDB access fails
        """
        try:
            response = self.table.get_item(Key={"Configuration": config_key})
        except ClientError:
            logger.exception(f"Error retrieving {config_key} configuration")
            raise

        item = response.get("Item")
        if not item:
            logger.debug(f"{config_key} configuration not found")
            return None

        item = dict(item)
        item.pop("Configuration", None)
        return item

    def get_effective_config(self, tenant_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Get effective configuration by merging Tenant → Default.

        Args:
            tenant_id: Tenant whose overrides apply (None for defaults only)

        Returns:
            Merged configuration dictionary
        """
        effective = deepcopy(self.get_configuration_item(DEFAULT_CONFIG_KEY) or {})

        if tenant_id:
            overrides = self.get_configuration_item(f"{TENANT_CONFIG_PREFIX}{tenant_id}") or {}
            effective.update(overrides)

        logger.debug(f"Effective configuration for {tenant_id or 'default'}: {list(effective)}")
        return effective

    def get_settings(self, tenant_id: Optional[str] = None) -> PageStoreSettings:
        """Get typed capture settings for a tenant."""
        return PageStoreSettings.from_dict(self.get_effective_config(tenant_id))

    def update_tenant_config(self, tenant_id: str, overrides: Dict[str, Any]) -> None:
        """
        Replace the override item of a tenant.

        Raises:
            ClientError: If DynamoDB write fails
        """
        safe_overrides = {k: v for k, v in overrides.items() if k != "Configuration"}
        try:
            self.table.put_item(
                Item={"Configuration": f"{TENANT_CONFIG_PREFIX}{tenant_id}", **safe_overrides}
            )
        except ClientError:
            logger.exception(f"Error updating configuration for tenant {tenant_id}")
            raise
        logger.info(f"Updated configuration for tenant {tenant_id}")


def load_settings(tenant_id: Optional[str] = None) -> PageStoreSettings:
    """
    Resolve settings for a tenant, falling back to defaults when no
    configuration table is deployed.
    """
    if not os.environ.get("CONFIGURATION_TABLE_NAME"):
        logger.warning("CONFIGURATION_TABLE_NAME not set, using default capture settings")
        return PageStoreSettings()
    return ConfigurationManager().get_settings(tenant_id)
