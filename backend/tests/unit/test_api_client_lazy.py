import dataclasses

import pytest

import editorial_flow.lib.api_client as api_client


@pytest.fixture
def unset_clients(monkeypatch):
    monkeypatch.setattr(api_client.supabase, "_client", None)
    monkeypatch.setattr(api_client.supabase_admin, "_client", None)
    for name in ("SUPABASE_ANON_KEY", "SUPABASE_KEY"):
        monkeypatch.delenv(name, raising=False)


def _config(monkeypatch, *, url: str, service_key: str) -> None:
    cfg = dataclasses.replace(api_client.app_config, supabase_url=url, supabase_key=service_key)
    monkeypatch.setattr(api_client, "app_config", cfg)


def test_import_does_not_create_clients():
    assert "pending" in repr(api_client._LazySupabaseClient(lambda: None, name="probe"))


def test_missing_url_raises_on_first_use(monkeypatch, unset_clients):
    _config(monkeypatch, url="", service_key="service")

    with pytest.raises(RuntimeError, match="SUPABASE_URL is required"):
        api_client.supabase_admin.table("manuscripts")


def test_anon_client_requires_anon_key(monkeypatch, unset_clients):
    _config(monkeypatch, url="https://example.supabase.co", service_key="service")

    with pytest.raises(RuntimeError, match="SUPABASE_ANON_KEY or SUPABASE_KEY is required"):
        api_client.supabase.auth


def test_admin_client_requires_service_or_anon_key(monkeypatch, unset_clients):
    _config(monkeypatch, url="https://example.supabase.co", service_key="")

    with pytest.raises(RuntimeError, match="SUPABASE_SERVICE_ROLE_KEY"):
        api_client.supabase_admin.table("manuscripts")
