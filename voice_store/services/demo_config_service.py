# voice_store/services/demo_config_service.py
"""Assembles, edits and exchanges demo configurations.

A demo configuration is stored as one header row plus satellite rows (business
profile, agent, scenario, UI labels, tools, SMS templates, mock data pools).
Every multi-row change here runs inside a single adapter transaction, so a
failure part-way through leaves the stored configuration exactly as it was.
"""
import json
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog
from pydantic import BaseModel, ValidationError as PydanticValidationError

from .. import demo_schemas
from ..adapters.base import DatabaseAdapter
from ..audit_logger import AuditLogger
from ..database import generate_id
from ..demo_schemas import (
    DemoConfig, DemoConfigCreate, DemoConfigUpdate, DemoConfigHeader, DemoConfigHeaderUpdate,
    DemoConfigDocument, DemoConfigDocumentHeader, EXPORT_FORMAT_VERSION,
)
from ..errors import StoreValidationError
from .tool_registry import default_tool_configs

logger = structlog.get_logger(__name__)

AUDIT_TABLE = "demo_configs"
SLUG_MAX_LENGTH = 50
DEFAULT_CONFIG_NAME = "Default Demo"

_TEMPLATE_VARIABLE = re.compile(r"\{\{(\w+)\}\}")


# ==================== HELPERS ====================

def generate_slug(name: str) -> str:
    """Lowercase, runs of anything but [a-z0-9] collapsed to '-', trimmed, at most 50 chars."""
    slug = re.sub(r"[^a-z0-9]+", "-", (name or "").lower()).strip("-")
    return slug[:SLUG_MAX_LENGTH].rstrip("-") or "untitled"


def interpolate_template(template: str, values: Dict[str, Any]) -> str:
    """Fill ``{{name}}`` placeholders; unknown names are left in place."""
    def replace(match):
        value = values.get(match.group(1))
        return str(value) if value is not None else match.group(0)
    return _TEMPLATE_VARIABLE.sub(replace, template)


def _merge(current: BaseModel, patch) -> BaseModel:
    # nested objects (address, hours, patient data) merge one level deep
    data = current.model_dump()
    for key, value in patch.changes().items():
        if isinstance(value, dict) and isinstance(data.get(key), dict):
            data[key] = {**data[key], **value}
        else:
            data[key] = value
    return type(current).model_validate(data)


class DemoConfigService:

    def __init__(self, adapter: DatabaseAdapter, audit_actor: str = "system"):
        self.adapter = adapter
        self.audit = AuditLogger(adapter, actor=audit_actor)

    # ==================== READS ====================

    def list_configs(self) -> List[DemoConfigHeader]:
        """Headers only, default configuration first and then by name."""
        return self.adapter.list_demo_config_headers()

    def get(self, config_id: str) -> Optional[DemoConfig]:
        header = self.adapter.get_demo_config_header(config_id)
        return self._assemble(header) if header else None

    def get_by_slug(self, slug: str) -> Optional[DemoConfig]:
        header = self.adapter.get_demo_config_header_by_slug(slug)
        return self._assemble(header) if header else None

    def get_active(self) -> Optional[DemoConfig]:
        """The active configuration, else the default one, else None."""
        headers = self.adapter.list_demo_config_headers()
        chosen = next((h for h in headers if h.is_active), None) or next((h for h in headers if h.is_default), None)
        if chosen is None:
            logger.warning("no_active_or_default_demo_config")
            return None
        return self._assemble(chosen)

    def _assemble(self, header: DemoConfigHeader) -> DemoConfig:
        config_id = header.id
        return DemoConfig(
            **header.model_dump(),
            business_profile=self.adapter.get_business_profile(config_id) or demo_schemas.BusinessProfile(),
            agent_config=self.adapter.get_agent_config(config_id) or demo_schemas.AgentConfig(),
            scenario=self.adapter.get_scenario(config_id) or demo_schemas.ScenarioConfig(),
            ui_labels=self.adapter.get_ui_labels(config_id) or demo_schemas.UILabels(),
            tool_configs=self.adapter.list_tool_configs(config_id),
            sms_templates=self.adapter.list_sms_templates(config_id),
            mock_data_pools=self.adapter.list_mock_data_pools(config_id),
        )

    def _require(self, config_id: str, operation: str) -> DemoConfigHeader:
        header = self.adapter.get_demo_config_header(config_id)
        if header is None:
            raise StoreValidationError(f"Demo config '{config_id}' does not exist", "demo_config", operation)
        return header

    def unique_slug(self, base: str) -> str:
        """``base`` if free, otherwise ``base-2``, ``base-3``, ... trimmed to fit 50 chars."""
        base = generate_slug(base)
        taken = {header.slug for header in self.adapter.list_demo_config_headers()}
        if base not in taken:
            return base
        counter = 2
        while True:
            suffix = f"-{counter}"
            candidate = f"{base[:SLUG_MAX_LENGTH - len(suffix)].rstrip('-')}{suffix}"
            if candidate not in taken:
                return candidate
            counter += 1

    # ==================== WRITES ====================

    def _clear_flag(self, flag: str, keep_id: str) -> None:
        for header in self.adapter.list_demo_config_headers():
            if header.id != keep_id and getattr(header, flag):
                self.adapter.update_demo_config_header(header.id, DemoConfigHeaderUpdate(**{flag: False}))

    def create(self, config: DemoConfigCreate, reason: str = "New demo config created") -> str:
        config_id = generate_id("DEMO")
        slug = config.slug or generate_slug(config.name)
        header = DemoConfigHeader(
            id=config_id,
            slug=slug,
            name=config.name,
            description=config.description,
            is_active=config.is_active,
            is_default=config.is_default,
        )
        tools = config.tool_configs if config.tool_configs is not None else default_tool_configs()

        with self.adapter.transaction():
            if config.is_active:
                self._clear_flag("is_active", config_id)
            if config.is_default:
                self._clear_flag("is_default", config_id)
            self.adapter.create_demo_config_header(header)
            self.adapter.save_business_profile(config_id, config.business_profile or demo_schemas.BusinessProfile())
            self.adapter.save_agent_config(config_id, config.agent_config or demo_schemas.AgentConfig())
            self.adapter.save_scenario(config_id, config.scenario or demo_schemas.ScenarioConfig())
            self.adapter.save_ui_labels(config_id, config.ui_labels or demo_schemas.UILabels())
            for tool in tools:
                self.adapter.upsert_tool_config(config_id, tool)
            for template in config.sms_templates or []:
                self.adapter.upsert_sms_template(config_id, template)
            for pool in config.mock_data_pools or []:
                self.adapter.upsert_mock_data_pool(config_id, pool)
            self.audit.log_change(
                AUDIT_TABLE, config_id, "INSERT", reason=reason,
                new_value={"name": config.name, "slug": slug},
            )

        logger.info("demo_config_created", config_id=config_id, slug=slug)
        return config_id

    def update(self, config_id: str, updates: DemoConfigUpdate) -> None:
        header = self._require(config_id, "update")
        if updates.is_empty():
            return
        fields = updates.model_fields_set
        if updates.is_default is False and header.is_default:
            raise StoreValidationError(
                "The default demo config cannot be un-defaulted; mark another config as default instead",
                "demo_config", "update",
            )

        header_changes = {key: getattr(updates, key) for key in ("name", "slug", "description", "is_default") if key in fields}
        try:
            with self.adapter.transaction():
                if header_changes.get("is_default"):
                    self._clear_flag("is_default", config_id)
                if header_changes:
                    self.adapter.update_demo_config_header(config_id, DemoConfigHeaderUpdate(**header_changes))
                if updates.business_profile is not None:
                    current = self.adapter.get_business_profile(config_id) or demo_schemas.BusinessProfile()
                    self.adapter.save_business_profile(config_id, _merge(current, updates.business_profile))
                if updates.agent_config is not None:
                    current = self.adapter.get_agent_config(config_id) or demo_schemas.AgentConfig()
                    self.adapter.save_agent_config(config_id, _merge(current, updates.agent_config))
                if updates.scenario is not None:
                    current = self.adapter.get_scenario(config_id) or demo_schemas.ScenarioConfig()
                    self.adapter.save_scenario(config_id, _merge(current, updates.scenario))
                if updates.ui_labels is not None:
                    current = self.adapter.get_ui_labels(config_id) or demo_schemas.UILabels()
                    self.adapter.save_ui_labels(config_id, _merge(current, updates.ui_labels))
                for tool in updates.tool_configs or []:
                    self.adapter.upsert_tool_config(config_id, tool)
                for template in updates.sms_templates or []:
                    self.adapter.upsert_sms_template(config_id, template)
                for pool in updates.mock_data_pools or []:
                    self.adapter.upsert_mock_data_pool(config_id, pool)
                self.audit.log_change(
                    AUDIT_TABLE, config_id, "UPDATE", reason="Demo config updated",
                    new_value=updates.model_dump(mode="json", exclude_unset=True),
                )
        except PydanticValidationError as e:
            raise StoreValidationError(f"Invalid demo config update: {e}", "demo_config", "update")

        logger.info("demo_config_updated", config_id=config_id, fields=sorted(fields))

    def remove_tool_config(self, config_id: str, tool_name: str) -> None:
        self._require(config_id, "update")
        with self.adapter.transaction():
            self.adapter.delete_tool_config(config_id, tool_name)
            self.audit.log_change(AUDIT_TABLE, config_id, "UPDATE", reason="Tool config removed",
                                  field_name="tool_configs", old_value=tool_name)

    def remove_sms_template(self, config_id: str, template_type: str, template_name: str) -> None:
        self._require(config_id, "update")
        template_type = getattr(template_type, "value", template_type)
        with self.adapter.transaction():
            self.adapter.delete_sms_template(config_id, template_type, template_name)
            self.audit.log_change(AUDIT_TABLE, config_id, "UPDATE", reason="SMS template removed",
                                  field_name="sms_templates", old_value=f"{template_type}:{template_name}")

    def remove_mock_data_pool(self, config_id: str, pool_type: str) -> None:
        self._require(config_id, "update")
        pool_type = getattr(pool_type, "value", pool_type)
        with self.adapter.transaction():
            self.adapter.delete_mock_data_pool(config_id, pool_type)
            self.audit.log_change(AUDIT_TABLE, config_id, "UPDATE", reason="Mock data pool removed",
                                  field_name="mock_data_pools", old_value=pool_type)

    def set_active(self, config_id: str) -> None:
        """Exactly one active configuration afterwards, switched in one transaction."""
        self._require(config_id, "activate")
        with self.adapter.transaction():
            self._clear_flag("is_active", config_id)
            self.adapter.update_demo_config_header(config_id, DemoConfigHeaderUpdate(is_active=True))
            self.audit.log_change(AUDIT_TABLE, config_id, "UPDATE", reason="Demo config activated",
                                  field_name="is_active", new_value=True)
        logger.info("demo_config_activated", config_id=config_id)

    def duplicate(self, config_id: str, new_name: str) -> str:
        source = self.get(config_id)
        if source is None:
            raise StoreValidationError(f"Demo config '{config_id}' does not exist", "demo_config", "duplicate")
        copy = source.model_copy(deep=True)
        return self.create(
            DemoConfigCreate(
                name=new_name,
                slug=self.unique_slug(new_name),
                description=copy.description,
                business_profile=copy.business_profile,
                agent_config=copy.agent_config,
                scenario=copy.scenario,
                tool_configs=copy.tool_configs,
                sms_templates=copy.sms_templates,
                ui_labels=copy.ui_labels,
                mock_data_pools=copy.mock_data_pools,
            ),
            reason=f"Duplicated from {config_id}",
        )

    def delete(self, config_id: str) -> None:
        header = self.adapter.get_demo_config_header(config_id)
        if header is None:
            return
        if header.is_default:
            raise StoreValidationError("Cannot delete the default demo config", "demo_config", "delete")
        if header.is_active:
            raise StoreValidationError(
                "Cannot delete the active demo config; activate another first", "demo_config", "delete"
            )
        with self.adapter.transaction():
            self.adapter.delete_demo_config_header(config_id)
            self.audit.log_change(AUDIT_TABLE, config_id, "DELETE", reason="Demo config deleted",
                                  old_value={"name": header.name, "slug": header.slug})
        logger.info("demo_config_deleted", config_id=config_id)

    def ensure_default(self) -> str:
        """Id of the default configuration, seeding one on an empty store."""
        headers = self.adapter.list_demo_config_headers()
        existing = next((header for header in headers if header.is_default), None)
        if existing is not None:
            return existing.id
        logger.info("seeding_default_demo_config")
        return self.create(
            DemoConfigCreate(
                name=DEFAULT_CONFIG_NAME,
                slug=self.unique_slug(DEFAULT_CONFIG_NAME),
                description="Baseline configuration used when no other demo is active",
                is_default=True,
                is_active=not any(header.is_active for header in headers),
            ),
            reason="Default demo config seeded",
        )

    # ==================== EXCHANGE ====================

    def export(self, config_id: str) -> str:
        config = self.get(config_id)
        if config is None:
            raise StoreValidationError(f"Demo config '{config_id}' does not exist", "demo_config", "export")
        document = DemoConfigDocument(
            version=EXPORT_FORMAT_VERSION,
            exported_at=datetime.now(),
            demo_config=DemoConfigDocumentHeader(name=config.name, slug=config.slug, description=config.description),
            business_profile=config.business_profile,
            agent_config=config.agent_config,
            scenario=config.scenario,
            tool_configs=config.tool_configs,
            sms_templates=config.sms_templates,
            ui_labels=config.ui_labels,
            mock_data_pools=config.mock_data_pools,
        )
        return document.model_dump_json(indent=2)

    def import_config(self, document: str) -> str:
        """New inactive, non-default configuration from an export document."""
        try:
            raw = json.loads(document)
        except ValueError as e:
            raise StoreValidationError(f"Import document is not valid JSON: {e}", "demo_config", "import")
        if not isinstance(raw, dict):
            raise StoreValidationError("Import document must be a JSON object", "demo_config", "import")

        version = raw.get("version")
        if not isinstance(version, int) or isinstance(version, bool):
            raise StoreValidationError("Import document has no integer version", "demo_config", "import")
        if version > EXPORT_FORMAT_VERSION:
            raise StoreValidationError(
                f"Unsupported export version {version} (newest supported is {EXPORT_FORMAT_VERSION})",
                "demo_config", "import",
            )

        try:
            parsed = DemoConfigDocument.model_validate(raw)
        except PydanticValidationError as e:
            raise StoreValidationError(f"Invalid demo config document: {e}", "demo_config", "import")

        source = parsed.demo_config
        return self.create(
            DemoConfigCreate(
                name=source.name,
                slug=self.unique_slug(source.slug or source.name),
                description=source.description,
                is_active=False,
                is_default=False,
                business_profile=parsed.business_profile,
                agent_config=parsed.agent_config,
                scenario=parsed.scenario,
                tool_configs=parsed.tool_configs,
                sms_templates=parsed.sms_templates,
                ui_labels=parsed.ui_labels,
                mock_data_pools=parsed.mock_data_pools,
            ),
            reason="Demo config imported",
        )
