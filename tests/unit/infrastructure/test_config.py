"""
Unit tests for infrastructure/config.py

Configuration must always resolve: missing files and invalid values fall
back to defaults with a warning.
"""
import logging

import pytest

from infrastructure.config import (
    DEFAULT_CONFIG_PATH,
    LineageConfig,
    LoggingConfig,
    config_from_dict,
    configure_logging,
    get_config,
    load_config,
    reset_config,
    set_config,
)


def test_defaults():
    config = LineageConfig()

    assert config.graph.cross_chat_scope == "roots"
    assert config.graph.alternative_label == "Alternative path {ordinal}"
    assert config.links.timeout_seconds == 10.0
    assert config.logging.level == "WARNING"


def test_shipped_config_file_loads():
    config = load_config(DEFAULT_CONFIG_PATH)

    assert config.graph.cross_chat_scope in ("roots", "subtree")
    assert config.links.timeout_seconds > 0


def test_load_from_toml(tmp_path):
    path = tmp_path / "lineage.toml"
    path.write_text(
        "[graph]\n"
        'cross_chat_scope = "subtree"\n'
        "\n"
        "[links]\n"
        "timeout_seconds = 2.5\n"
    )

    config = load_config(path)

    assert config.graph.cross_chat_scope == "subtree"
    assert config.links.timeout_seconds == 2.5
    # Sections not in the file keep their defaults
    assert config.logging.level == "WARNING"


def test_missing_file_warns_and_uses_defaults(tmp_path):
    with pytest.warns(UserWarning, match="Failed to load config"):
        config = load_config(tmp_path / "nope.toml")

    assert config == LineageConfig()


def test_invalid_section_falls_back_to_its_defaults():
    with pytest.warns(UserWarning, match=r"Invalid \[links\] config"):
        config = config_from_dict({
            "graph": {"cross_chat_scope": "subtree"},
            "links": {"timeout_seconds": "soon"},
        })

    assert config.links.timeout_seconds == 10.0
    # Valid sections survive an invalid neighbour
    assert config.graph.cross_chat_scope == "subtree"


def test_non_table_section_falls_back_to_defaults():
    with pytest.warns(UserWarning, match=r"Invalid \[graph\] config"):
        config = config_from_dict({"graph": 5})

    assert config == LineageConfig()


def test_unknown_scope_falls_back_to_roots():
    with pytest.warns(UserWarning, match="cross_chat_scope"):
        config = config_from_dict({"graph": {"cross_chat_scope": "everything"}})

    assert config.graph.cross_chat_scope == "roots"


def test_invalid_label_falls_back_to_default():
    with pytest.warns(UserWarning, match="alternative_label"):
        config = config_from_dict({"graph": {"alternative_label": "Path {rank}"}})

    assert config.graph.alternative_label == "Alternative path {ordinal}"


@pytest.mark.parametrize("label", ["Alt {ordinal.nope}", "Alt {ordinal[0]}", "Alt {0}", "Alt {ordinal:d"])
def test_malformed_label_never_raises(label):
    with pytest.warns(UserWarning, match="alternative_label"):
        config = config_from_dict({"graph": {"alternative_label": label}})

    assert config.graph.alternative_label == "Alternative path {ordinal}"


def test_unknown_keys_are_ignored():
    config = config_from_dict({"graph": {"colour": "blue"}, "extra": {}})

    assert config == LineageConfig()


def test_global_config_lifecycle():
    custom = LineageConfig(logging=LoggingConfig(level="DEBUG"))
    set_config(custom)

    assert get_config() is custom

    reset_config()
    assert get_config() is not custom


def test_configure_logging_applies_level():
    configure_logging(LineageConfig(logging=LoggingConfig(level="debug")))

    assert logging.getLogger("core").level == logging.DEBUG
    assert logging.getLogger("infrastructure").level == logging.DEBUG

    configure_logging(LineageConfig())
    assert logging.getLogger("core").level == logging.WARNING
