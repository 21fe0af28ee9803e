#!/usr/bin/env python3
"""
Test suite for rules loading and the rules JSON schema.

Covers meta-validation of the schema itself, the shipped rules file,
schema violations, semantic checks and loader behaviour.
"""

import json
import pytest
import yaml
from jsonschema import Draft7Validator, ValidationError, validate

import rule_set
from rule_set import (
    DEFAULT_RULES_PATH,
    SCHEMA_PATH,
    RuleConfigError,
    RuleSet,
    clear_cache,
    load_rules,
    parse_rules,
    validate_rules_document,
)


with open(SCHEMA_PATH) as f:
    RULES_SCHEMA = json.load(f)


@pytest.fixture(autouse=True)
def _fresh_cache():
    clear_cache()
    yield
    clear_cache()


def minimal_rules(**overrides):
    data = {
        "schema_version": 1,
        "rule_sets": [
            {"name": "global", "required_tags": ["GetSectors"]},
        ],
    }
    data.update(overrides)
    return data


# ============================================================================
# Schema meta-validation
# ============================================================================

def test_schema_is_valid_json_schema():
    Draft7Validator.check_schema(RULES_SCHEMA)


def test_default_rules_file_is_valid():
    data = yaml.safe_load(DEFAULT_RULES_PATH.read_text(encoding="utf-8"))
    validate(instance=data, schema=RULES_SCHEMA)


def test_minimal_rules_valid():
    validate(instance=minimal_rules(), schema=RULES_SCHEMA)


def test_schema_version_required():
    data = minimal_rules()
    del data["schema_version"]
    with pytest.raises(ValidationError) as exc_info:
        validate(instance=data, schema=RULES_SCHEMA)
    assert "schema_version" in str(exc_info.value)


def test_schema_version_must_be_one():
    with pytest.raises(ValidationError):
        validate(instance=minimal_rules(schema_version=2), schema=RULES_SCHEMA)


def test_rule_sets_must_not_be_empty():
    with pytest.raises(ValidationError):
        validate(instance=minimal_rules(rule_sets=[]), schema=RULES_SCHEMA)


def test_unknown_top_level_key_rejected():
    with pytest.raises(ValidationError):
        validate(instance=minimal_rules(checkTags=["A"]), schema=RULES_SCHEMA)


def test_unknown_strategy_rejected():
    with pytest.raises(ValidationError):
        validate(instance=minimal_rules(classifier={"strategy": "guess"}), schema=RULES_SCHEMA)


def test_whitelist_must_not_be_empty():
    data = minimal_rules(rule_sets=[
        {"name": "global", "required_attribute_values": {"staffNumber": []}},
    ])
    with pytest.raises(ValidationError):
        validate(instance=data, schema=RULES_SCHEMA)


def test_whitelist_accepts_integers():
    data = minimal_rules(rule_sets=[
        {"name": "global", "required_attribute_values": {"staffNumber": [2950, "26368"]}},
    ])
    validate(instance=data, schema=RULES_SCHEMA)


def test_extension_must_start_with_dot():
    with pytest.raises(ValidationError):
        validate(instance=minimal_rules(extension="xml"), schema=RULES_SCHEMA)


# ============================================================================
# parse_rules
# ============================================================================

def test_parse_minimal_rules():
    config = parse_rules(minimal_rules())

    assert config.rule_sets == (RuleSet(name="global", required_tags=("GetSectors",)),)
    assert config.classifier.strategy == "textual"
    assert config.extension == ".xml"


def test_parse_deduplicates_and_stringifies():
    config = parse_rules(minimal_rules(rule_sets=[{
        "name": "global",
        "required_tags": ["A", "B", "A"],
        "required_attribute_values": {"staffNumber": [2950, "2950", "6936"]},
    }]))

    deduped = config.get("global")
    assert deduped.required_tags == ("A", "B")
    assert deduped.required_attribute_values == {"staffNumber": ("2950", "6936")}


def test_validate_rules_document_reports_location():
    errors = validate_rules_document(minimal_rules(rule_sets=[{"tags": []}]))
    assert errors
    assert any(error.startswith("rule_sets/0") for error in errors)


def test_schema_violation_raises_config_error():
    with pytest.raises(RuleConfigError) as exc_info:
        parse_rules({"rule_sets": []})
    assert "Invalid rules document" in str(exc_info.value)


def test_non_mapping_document_raises_config_error():
    with pytest.raises(RuleConfigError):
        parse_rules(None)


def test_duplicate_rule_set_names_rejected():
    data = minimal_rules(rule_sets=[{"name": "global"}, {"name": "global"}])
    with pytest.raises(RuleConfigError) as exc_info:
        parse_rules(data)
    assert "Duplicate" in str(exc_info.value)


def test_unknown_condition_rejected():
    data = minimal_rules(rule_sets=[{"name": "extra", "apply_if": "is_crew"}])
    with pytest.raises(RuleConfigError) as exc_info:
        parse_rules(data)
    assert "is_crew" in str(exc_info.value)


def test_declared_condition_accepted():
    data = minimal_rules(
        conditions={"is_crew": 'tag_present("Crew")'},
        rule_sets=[{"name": "crew", "apply_if": "is_crew", "required_tags": ["Crew"]}],
    )
    config = parse_rules(data)
    assert config.conditions == {"is_crew": 'tag_present("Crew")'}
    assert config.get("crew").is_conditional


def test_invalid_condition_expression_rejected():
    data = minimal_rules(conditions={"broken": "tag_present(Crew)"})
    with pytest.raises(RuleConfigError) as exc_info:
        parse_rules(data)
    assert "broken" in str(exc_info.value)


def test_static_data_condition_name_reserved():
    data = minimal_rules(conditions={"static_data": 'text_contains("x")'})
    with pytest.raises(RuleConfigError):
        parse_rules(data)


def test_static_tags_default_to_static_rule_set_tags():
    data = minimal_rules(rule_sets=[
        {"name": "global", "required_tags": ["GetSectors"]},
        {"name": "static", "apply_if": "static_data", "required_tags": ["city", "base"]},
    ])
    config = parse_rules(data)
    assert config.classifier.static_tags == ("city", "base")


def test_explicit_static_tags_win():
    data = minimal_rules(
        classifier={"strategy": "structural", "static_tags": ["aircraftCode"]},
        rule_sets=[{"name": "static", "apply_if": "static_data", "required_tags": ["city"]}],
    )
    config = parse_rules(data)
    assert config.classifier.static_tags == ("aircraftCode",)
    assert config.classifier.strategy == "structural"


def test_strategy_override():
    config = parse_rules(minimal_rules(classifier={"strategy": "textual"}), strategy="structural")
    assert config.classifier.strategy == "structural"


def test_invalid_strategy_override_is_config_error():
    with pytest.raises(RuleConfigError):
        parse_rules(minimal_rules(), strategy="guess")


def test_to_dict_round_trips_through_parser():
    config = load_rules()
    assert parse_rules(config.to_dict()).to_dict() == config.to_dict()


# ============================================================================
# load_rules
# ============================================================================

def test_load_default_rules():
    config = load_rules()

    global_rules = config.get("global")
    static_rules = config.get("static")
    assert "GetSectors" in global_rules.required_tags
    assert global_rules.required_attribute_values["staffNumber"] == ("2950", "26368", "6936")
    assert global_rules.apply_if is None
    assert static_rules.apply_if == "static_data"
    assert static_rules.required_attribute_values["aircraftCode"] == ("HA-EPR",)


def test_load_rules_is_cached():
    assert load_rules() is load_rules()


def test_load_rules_override_bypasses_cache():
    cached = load_rules()
    overridden = load_rules(strategy="structural")
    assert overridden is not cached
    assert overridden.classifier.strategy == "structural"
    assert load_rules().classifier.strategy == cached.classifier.strategy


def test_load_rules_from_file(tmp_path):
    rules_file = tmp_path / "rules.yaml"
    rules_file.write_text(yaml.safe_dump(minimal_rules(extension=".msg")))

    config = load_rules(rules_file)
    assert config.extension == ".msg"


def test_load_missing_file(tmp_path):
    with pytest.raises(RuleConfigError) as exc_info:
        load_rules(tmp_path / "missing.yaml")
    assert "Cannot read" in str(exc_info.value)


def test_load_invalid_yaml(tmp_path):
    rules_file = tmp_path / "rules.yaml"
    rules_file.write_text("schema_version: [1\n")
    with pytest.raises(RuleConfigError) as exc_info:
        load_rules(rules_file)
    assert "Failed to parse YAML" in str(exc_info.value)


def test_config_error_is_value_error(tmp_path):
    rules_file = tmp_path / "rules.yaml"
    rules_file.write_text("")
    with pytest.raises(ValueError):
        load_rules(rules_file)


def test_prefixed_names_are_normalized():
    config = parse_rules(minimal_rules(
        classifier={"static_tags": ["cm:city"]},
        rule_sets=[{
            "name": "global",
            "required_tags": ["ns:City", "{urn:x}GetSectors"],
            "required_attribute_values": {"ns:code": ["GYO"]},
        }],
    ))
    global_rules = config.get("global")
    assert global_rules.required_tags == ("City", "GetSectors")
    assert global_rules.required_attribute_values == {"code": ("GYO",)}
    assert config.classifier.static_tags == ("city",)


def test_unreadable_schema_raises_config_error(monkeypatch, tmp_path):
    monkeypatch.setattr(rule_set, "SCHEMA_PATH", tmp_path / "missing.json")
    monkeypatch.setattr(rule_set, "_schema_validator", None)
    with pytest.raises(RuleConfigError) as exc_info:
        parse_rules(minimal_rules())
    assert "Cannot load rules schema" in str(exc_info.value)
