import pytest

from usbportal.domain.bus_names import PORTAL_BUS_NAME, request_path_for, sender_path_component
from usbportal.domain.settings import DEFAULT_MAX_FINISH_PAGES, PortalSettings


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("USBPORTAL_DEBUG", "USBPORTAL_LOG_LEVEL", "USBPORTAL_BUS", "USBPORTAL_BUS_NAME", "USBPORTAL_MAX_FINISH_PAGES"):
        monkeypatch.delenv(name, raising=False)


def test_settings_defaults_from_empty_payload():
    settings = PortalSettings.from_dict(None)

    assert settings.bus_type == "session"
    assert settings.bus_name == PORTAL_BUS_NAME
    assert settings.max_finish_pages == DEFAULT_MAX_FINISH_PAGES
    assert settings.debug_logging is False


def test_settings_coerce_fields_and_keep_defaults_for_bad_values():
    settings = PortalSettings.from_dict(
        {
            "bus_type": "SYSTEM",
            "bus_name": "  ",
            "max_finish_pages": "-3",
            "debug_logging": "yes",
        }
    )

    assert settings.bus_type == "system"
    assert settings.bus_name == PORTAL_BUS_NAME
    assert settings.max_finish_pages == DEFAULT_MAX_FINISH_PAGES
    assert settings.debug_logging is True


def test_settings_env_overrides():
    base = PortalSettings.from_dict({"max_finish_pages": 8})

    settings = base.with_env_overrides(
        {
            "USBPORTAL_BUS": "system",
            "USBPORTAL_BUS_NAME": "org.example.Broker",
            "USBPORTAL_MAX_FINISH_PAGES": "16",
        }
    )

    assert settings.bus_type == "system"
    assert settings.bus_name == "org.example.Broker"
    assert settings.max_finish_pages == 16
    assert base.max_finish_pages == 8


def test_debug_env_flag_enables_debug_default(monkeypatch):
    monkeypatch.setenv("USBPORTAL_DEBUG", "1")

    assert PortalSettings.from_dict({}).debug_logging is True


def test_settings_to_dict_round_trip():
    settings = PortalSettings(bus_type="system", max_finish_pages=4, debug_logging=True)

    assert PortalSettings.from_dict(settings.to_dict()) == settings


def test_request_path_uses_sender_without_colon_and_dots():
    assert sender_path_component(":1.42") == "1_42"
    assert request_path_for(":1.42", "portal7") == "/org/freedesktop/portal/desktop/request/1_42/portal7"
