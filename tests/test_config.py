import os
import sys

import pytest
from pydantic import ValidationError

# Add the parent directory to sys.path so we can import the app modules
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import config
from config import ServerConfig


def test_defaults_come_from_module_settings():
    settings = ServerConfig()

    assert settings.upload_dir == config.UPLOAD_DIR
    assert settings.threshold == config.BULK_ARCHIVE_THRESHOLD
    assert settings.port == config.PORT


def test_config_is_immutable():
    settings = ServerConfig()

    with pytest.raises(ValidationError):
        settings.threshold = 10


@pytest.mark.parametrize("field, value", [("threshold", 0), ("chunk_size", 0), ("max_form_files", -1)])
def test_rejects_non_positive_limits(field, value):
    with pytest.raises(ValidationError):
        ServerConfig(**{field: value})
