# tests/test_demo_config_service.py
import json

import pytest

from voice_store import demo_schemas
from voice_store.errors import ConstraintViolationError, StoreValidationError
from voice_store.services.demo_config_service import generate_slug, interpolate_template
from voice_store.services.tool_registry import PREDEFINED_TOOLS


def dental_config(name="Smile Kids Outreach", **kwargs):
    return demo_schemas.DemoConfigCreate(
        name=name,
        business_profile=demo_schemas.BusinessProfile(
            organization_name="Smile Kids Dental",
            address=demo_schemas.Address(street="1 Main St", city="Springfield", state="IL", zip="62701"),
            phone_number="+15550300000",
        ),
        agent_config=demo_schemas.AgentConfig(agent_name="Riley", voice_name="nova", system_prompt="Be warm."),
        sms_templates=[demo_schemas.SMSTemplate(
            template_name="default", message_template="Hi {{parent_name}}, see you on {{date}}.",
        )],
        mock_data_pools=[demo_schemas.MockDataPool(pool_type="patients", records=[
            {"id": "P1", "patient_id": "P1", "parent_name": "Maria Lopez", "phone": "(555) 000-1111"},
        ])],
        **kwargs,
    )


# ==================== HELPERS ====================

def test_generate_slug():
    assert generate_slug("Smile Kids -- Outreach!") == "smile-kids-outreach"
    assert generate_slug("  ") == "untitled"
    assert len(generate_slug("x" * 80)) == 50


def test_interpolate_template_leaves_unknown_placeholders():
    text = interpolate_template("Hi {{parent_name}}, {{child}} is booked for {{date}}.",
                                {"parent_name": "Maria", "date": "Friday"})
    assert text == "Hi Maria, {{child}} is booked for Friday."


# ==================== CREATE / READ ====================

def test_create_fills_defaults(service):
    config_id = service.create(demo_schemas.DemoConfigCreate(name="Bare Config"))
    config = service.get(config_id)

    assert config.slug == "bare-config"
    assert config.is_active is False
    assert config.business_profile.primary_color == "#3B82F6"
    assert config.ui_labels.header_badge == "(Enhanced)"
    assert config.scenario.call_direction == "outbound"
    assert {tool.tool_name for tool in config.tool_configs} == set(PREDEFINED_TOOLS)
    assert config.sms_templates == []
    assert config.mock_data_pools == []


def test_create_and_read_back(service):
    config_id = service.create(dental_config())
    config = service.get_by_slug("smile-kids-outreach")

    assert config.id == config_id
    assert config.business_profile.organization_name == "Smile Kids Dental"
    assert config.business_profile.hours["saturday"].closed is True
    assert config.agent_config.voice_name == demo_schemas.VoiceName.nova
    assert config.sms_templates[0].template_name == "default"
    assert config.mock_data_pools[0].records[0]["parent_name"] == "Maria Lopez"


def test_create_writes_audit_entry(service, adapter):
    config_id = service.create(dental_config())
    history = adapter.get_audit_records("demo_configs", config_id)
    assert [record.operation for record in history] == ["INSERT"]
    assert history[0].new_value == {"name": "Smile Kids Outreach", "slug": "smile-kids-outreach"}


def test_duplicate_slug_rolls_back_whole_create(service, adapter):
    service.create(dental_config())
    with pytest.raises(ConstraintViolationError):
        service.create(dental_config())
    assert len(service.list_configs()) == 1
    assert adapter.get_stats().demo_configs == 1


def test_missing_config_reads_none(service):
    assert service.get("DEMO-missing") is None
    assert service.get_by_slug("nope") is None


# ==================== ACTIVE / DEFAULT ====================

def test_set_active_leaves_exactly_one_active(service):
    ids = [service.create(demo_schemas.DemoConfigCreate(name=f"Config {n}")) for n in range(4)]
    for config_id in (ids[1], ids[3], ids[0]):
        service.set_active(config_id)
        active = [header.id for header in service.list_configs() if header.is_active]
        assert active == [config_id]
    assert service.get_active().id == ids[0]


def test_get_active_falls_back_to_default(service):
    assert service.get_active() is None
    default_id = service.ensure_default()
    service.create(demo_schemas.DemoConfigCreate(name="Other"))
    service.adapter.update_demo_config_header(default_id, demo_schemas.DemoConfigHeaderUpdate(is_active=False))
    assert service.get_active().id == default_id


def test_ensure_default_seeds_once(service):
    default_id = service.ensure_default()
    assert service.ensure_default() == default_id

    config = service.get(default_id)
    assert config.name == "Default Demo"
    assert config.slug == "default-demo"
    assert config.is_default and config.is_active
    assert service.list_configs()[0].id == default_id


def test_default_config_cannot_be_deleted(service):
    default_id = service.ensure_default()
    with pytest.raises(StoreValidationError):
        service.delete(default_id)
    with pytest.raises(StoreValidationError):
        service.update(default_id, demo_schemas.DemoConfigUpdate(is_default=False))
    assert service.get(default_id) is not None


def test_active_config_cannot_be_deleted(service):
    default_id = service.ensure_default()
    other_id = service.create(demo_schemas.DemoConfigCreate(name="Other"))
    service.set_active(other_id)

    with pytest.raises(StoreValidationError):
        service.delete(other_id)
    assert service.get(other_id) is not None
    assert service.get_active().id == other_id

    service.set_active(default_id)
    service.delete(other_id)
    assert service.get(other_id) is None


def test_set_active_missing_id_changes_nothing(service):
    active_id = service.create(demo_schemas.DemoConfigCreate(name="Config A", is_active=True))
    service.create(demo_schemas.DemoConfigCreate(name="Config B"))

    with pytest.raises(StoreValidationError):
        service.set_active("DEMO-missing")
    assert [header.id for header in service.list_configs() if header.is_active] == [active_id]


def test_moving_default_flag(service):
    first = service.ensure_default()
    second = service.create(demo_schemas.DemoConfigCreate(name="New Default"))
    service.update(second, demo_schemas.DemoConfigUpdate(is_default=True))
    defaults = [header.id for header in service.list_configs() if header.is_default]
    assert defaults == [second]
    assert service.get(first).is_default is False


# ==================== UPDATE ====================

def test_update_merges_nested_sections(service):
    config_id = service.create(dental_config())
    service.update(config_id, demo_schemas.DemoConfigUpdate(
        name="Renamed",
        business_profile=demo_schemas.BusinessProfileUpdate(address=demo_schemas.AddressUpdate(city="Peoria")),
        agent_config=demo_schemas.AgentConfigUpdate(opening_script="Hello from Riley"),
        ui_labels=demo_schemas.UILabelsUpdate(header_text="Smile Kids"),
    ))

    config = service.get(config_id)
    assert config.name == "Renamed"
    assert config.slug == "smile-kids-outreach"
    assert config.business_profile.address.city == "Peoria"
    assert config.business_profile.address.street == "1 Main St"
    assert config.business_profile.organization_name == "Smile Kids Dental"
    assert config.agent_config.opening_script == "Hello from Riley"
    assert config.agent_config.agent_name == "Riley"
    assert config.ui_labels.header_text == "Smile Kids"
    assert config.ui_labels.call_button_text == "Start Demo Call"


def test_tool_upsert_and_remove(service):
    config_id = service.create(dental_config())
    service.update(config_id, demo_schemas.DemoConfigUpdate(tool_configs=[
        demo_schemas.ToolConfig(tool_name="check_availability", is_enabled=False, mock_response_delay_ms=50),
        demo_schemas.ToolConfig(tool_name="lookup_weather", tool_type="custom", is_enabled=True),
    ]))

    tools = {tool.tool_name: tool for tool in service.get(config_id).tool_configs}
    assert tools["check_availability"].is_enabled is False
    assert tools["check_availability"].mock_response_delay_ms == 50
    assert tools["lookup_weather"].display_name == "lookup_weather"
    assert len(tools) == len(PREDEFINED_TOOLS) + 1

    service.remove_tool_config(config_id, "lookup_weather")
    assert "lookup_weather" not in {tool.tool_name for tool in service.get(config_id).tool_configs}


def test_sms_template_and_pool_removal(service):
    config_id = service.create(dental_config())
    service.remove_sms_template(config_id, "confirmation", "default")
    service.remove_mock_data_pool(config_id, demo_schemas.MockDataPoolType.patients)
    config = service.get(config_id)
    assert config.sms_templates == []
    assert config.mock_data_pools == []


def test_update_missing_config_is_validation_error(service):
    with pytest.raises(StoreValidationError):
        service.update("DEMO-missing", demo_schemas.DemoConfigUpdate(name="x"))


def test_empty_update_is_noop(service, adapter):
    config_id = service.create(dental_config())
    service.update(config_id, demo_schemas.DemoConfigUpdate())
    assert len(adapter.get_audit_records("demo_configs", config_id)) == 1


def test_invalid_pool_record_is_rejected():
    with pytest.raises(ValueError):
        demo_schemas.MockDataPool(pool_type="members", records=[{"member_id": "M1"}])


# ==================== DUPLICATE / DELETE ====================

def test_duplicate_is_independent(service):
    source_id = service.create(dental_config(is_active=True))
    copy_id = service.duplicate(source_id, "Smile Kids Outreach")

    copy = service.get(copy_id)
    assert copy.slug == "smile-kids-outreach-2"
    assert copy.is_active is False and copy.is_default is False
    assert copy.agent_config.agent_name == "Riley"

    service.update(copy_id, demo_schemas.DemoConfigUpdate(agent_config=demo_schemas.AgentConfigUpdate(agent_name="Sam")))
    assert service.get(source_id).agent_config.agent_name == "Riley"
    assert service.get_active().id == source_id


def test_delete_removes_satellites(service, adapter):
    config_id = service.create(dental_config())
    service.delete(config_id)
    assert service.get(config_id) is None
    assert adapter.list_tool_configs(config_id) == []
    assert adapter.list_mock_data_pools(config_id) == []
    # deleting again is a no-op
    service.delete(config_id)


def test_unique_slug_counts_up(service):
    service.create(demo_schemas.DemoConfigCreate(name="Outreach"))
    service.create(demo_schemas.DemoConfigCreate(name="Outreach 2", slug="outreach-2"))
    assert service.unique_slug("Outreach") == "outreach-3"
    assert service.unique_slug("Fresh Name") == "fresh-name"


# ==================== EXPORT / IMPORT ====================

def test_export_import_creates_inactive_copy(service):
    source_id = service.create(dental_config(is_active=True))
    document = service.export(source_id)
    parsed = json.loads(document)
    assert parsed["version"] == 1
    assert parsed["demo_config"]["slug"] == "smile-kids-outreach"

    imported_id = service.import_config(document)
    imported = service.get(imported_id)
    source = service.get(source_id)

    assert imported.slug == "smile-kids-outreach-2"
    assert imported.is_active is False and imported.is_default is False
    assert imported.business_profile == source.business_profile
    assert imported.agent_config == source.agent_config
    assert imported.sms_templates == source.sms_templates
    assert imported.mock_data_pools == source.mock_data_pools
    assert {t.tool_name for t in imported.tool_configs} == {t.tool_name for t in source.tool_configs}


def test_import_rejects_bad_documents(service):
    source_id = service.create(dental_config())
    newer = json.loads(service.export(source_id))
    newer["version"] = 2

    for document in ("not json", "[1, 2]", json.dumps({"demo_config": {"name": "x"}}), json.dumps(newer),
                     json.dumps({"version": 1})):
        with pytest.raises(StoreValidationError):
            service.import_config(document)
    assert len(service.list_configs()) == 1


def test_export_missing_config_is_validation_error(service):
    with pytest.raises(StoreValidationError):
        service.export("DEMO-missing")
