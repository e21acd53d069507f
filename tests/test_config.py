"""Tests for the config loader."""

import tempfile
from pathlib import Path

import pytest

from envsync.config.loader import load_config, parse_config
from envsync.errors import ParseError, ValidationError


def _write(tmpdir: str, text: str, name: str = "github_environments.toml") -> Path:
    path = Path(tmpdir) / name
    path.write_text(text, encoding="utf-8")
    return path


def _issue_messages(error: ValidationError) -> str:
    return "\n".join(str(issue) for issue in error.issues)


# --- Parsing ---


def test_load_variables_and_secrets():
    text = """
[production.variables]
api_url = "https://api.example.com"
REPLICAS = 3
DEBUG = false

[production.secrets]
DEPLOY_KEY = "s3cret"
SENTRY_DSN = { value = "https://sentry", changed = true }

[staging.variables]
API_URL = "https://staging.example.com"
"""
    with tempfile.TemporaryDirectory() as tmpdir:
        config = load_config(_write(tmpdir, text))

    assert config.environment_names == ["production", "staging"]
    prod = config.get("production")
    assert prod is not None
    assert prod.get("API_URL").value == "https://api.example.com"  # names are upper-cased
    assert prod.get("REPLICAS").value == "3"
    assert prod.get("DEBUG").value == "false"
    assert prod.get("DEPLOY_KEY").is_secret
    assert not prod.get("DEPLOY_KEY").changed
    assert prod.get("SENTRY_DSN").changed
    assert len(prod.variables) == 3
    assert len(prod.secrets) == 2


def test_load_entries_list_form():
    text = """
[[staging.entries]]
name = "REGION"
value = "eu-west-1"

[[staging.entries]]
name = "TOKEN"
value = "abc"
secret = true
"""
    config = parse_config(text)
    staging = config.get("staging")
    assert staging.get("REGION").is_secret is False
    assert staging.get("TOKEN").is_secret is True


def test_secret_value_from_environment_variable():
    text = """
[production.secrets]
DEPLOY_KEY = { env = "PROD_DEPLOY_KEY" }
"""
    config = parse_config(text, environ={"PROD_DEPLOY_KEY": "from-env"})
    assert config.get("production").get("DEPLOY_KEY").value == "from-env"


def test_load_yaml_config():
    text = """
production:
  variables:
    API_URL: https://api.example.com
  secrets:
    TOKEN:
      value: abc
      changed: true
"""
    with tempfile.TemporaryDirectory() as tmpdir:
        config = load_config(_write(tmpdir, text, name="envs.yaml"))
    prod = config.get("production")
    assert prod.get("API_URL").value == "https://api.example.com"
    assert prod.get("TOKEN").changed


def test_empty_environment_is_allowed():
    config = parse_config("[production]\n")
    assert config.get("production").entries == ()


def test_select_keeps_file_order():
    config = parse_config('[b.variables]\nX = "1"\n[a.variables]\nX = "1"\n[c.variables]\nX = "1"\n')
    assert config.select(["c", "b"]).environment_names == ["b", "c"]


# --- Parse errors ---


def test_missing_file_raises_parse_error():
    with tempfile.TemporaryDirectory() as tmpdir:
        with pytest.raises(ParseError, match="not found"):
            load_config(Path(tmpdir) / "missing.toml")


def test_malformed_toml_raises_parse_error():
    with pytest.raises(ParseError, match="Malformed TOML"):
        parse_config("[production.variables\nA = 1")


def test_malformed_yaml_raises_parse_error():
    with pytest.raises(ParseError, match="Malformed YAML"):
        parse_config("production: [unclosed", fmt="yaml")


def test_yaml_top_level_must_be_table():
    with pytest.raises(ParseError, match="Top level"):
        parse_config("- a\n- b\n", fmt="yaml")


def test_unknown_extension_raises_parse_error():
    with tempfile.TemporaryDirectory() as tmpdir:
        with pytest.raises(ParseError, match="Unsupported config format"):
            load_config(_write(tmpdir, "{}", name="envs.json"))


# --- Validation errors ---


def test_duplicate_names_within_environment():
    text = """
[production.variables]
API_URL = "a"

[production.secrets]
api_url = "b"
"""
    with pytest.raises(ValidationError) as excinfo:
        parse_config(text)
    assert "duplicate entry name 'API_URL'" in _issue_messages(excinfo.value)


def test_repeated_yaml_entry_key_rejected():
    text = "production:\n  variables:\n    API_URL: a\n    API_URL: b\n"
    with pytest.raises(ValidationError) as excinfo:
        parse_config(text, fmt="yaml")
    messages = _issue_messages(excinfo.value)
    assert "duplicate key 'API_URL'" in messages
    assert "line 4" in messages


def test_repeated_yaml_environment_rejected_with_other_issues():
    text = "production:\n  variables:\n    A: ''\nproduction:\n  variables:\n    B: x\n"
    with pytest.raises(ValidationError) as excinfo:
        parse_config(text, fmt="yaml")
    messages = _issue_messages(excinfo.value)
    assert "duplicate key 'production'" in messages
    assert len(excinfo.value.issues) == 1
    # The surviving mapping is the second one, which is valid on its own
    assert "must not be empty" not in messages


def test_yaml_merge_keys_may_be_overridden():
    text = """
production:
  variables: &shared
    REGION: eu
    TIER: gold
staging:
  variables:
    <<: *shared
    TIER: silver
"""
    config = parse_config(text, fmt="yaml")
    staging = config.get("staging")
    assert staging.get("REGION").value == "eu"
    assert staging.get("TIER").value == "silver"


def test_repeated_toml_key_is_a_parse_error():
    with pytest.raises(ParseError, match="Malformed TOML"):
        parse_config('[production.variables]\nAPI_URL = "a"\nAPI_URL = "b"\n')


def test_same_name_in_different_environments_is_fine():
    text = '[a.variables]\nX = "1"\n[b.variables]\nX = "2"\n'
    config = parse_config(text)
    assert config.get("a").get("X").value == "1"
    assert config.get("b").get("X").value == "2"


def test_empty_value_rejected():
    with pytest.raises(ValidationError) as excinfo:
        parse_config('[production.variables]\nAPI_URL = ""\n')
    assert "must not be empty" in _issue_messages(excinfo.value)


def test_listed_entry_without_name_rejected():
    with pytest.raises(ValidationError) as excinfo:
        parse_config('[[production.entries]]\nvalue = "x"\n')
    assert "missing required field 'name'" in _issue_messages(excinfo.value)


def test_invalid_and_reserved_names_rejected():
    text = """
[production.variables]
"1BAD" = "x"
"has-dash" = "x"
GITHUB_SHA = "x"
"""
    with pytest.raises(ValidationError) as excinfo:
        parse_config(text)
    assert len(excinfo.value.issues) == 3
    assert "reserved by GitHub" in _issue_messages(excinfo.value)


def test_unset_env_reference_rejected():
    with pytest.raises(ValidationError) as excinfo:
        parse_config('[production.secrets]\nKEY = { env = "NOPE" }\n', environ={})
    assert "'NOPE' is not set" in _issue_messages(excinfo.value)


def test_changed_flag_only_for_secrets():
    with pytest.raises(ValidationError) as excinfo:
        parse_config('[production.variables]\nKEY = { value = "x", changed = true }\n')
    assert "only applies to secrets" in _issue_messages(excinfo.value)


def test_unknown_section_and_value_type_rejected():
    text = """
[production]
settings = "x"

[production.variables]
LIST = [1, 2]
"""
    with pytest.raises(ValidationError) as excinfo:
        parse_config(text)
    messages = _issue_messages(excinfo.value)
    assert "unknown section" in messages
    assert "got list" in messages


def test_no_environments_rejected():
    with pytest.raises(ValidationError, match="no environments"):
        parse_config("")


def test_all_issues_reported_together():
    text = """
[production.variables]
A = ""
B = ""
"""
    with pytest.raises(ValidationError) as excinfo:
        parse_config(text)
    assert len(excinfo.value.issues) == 2
