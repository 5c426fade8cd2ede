"""
tests/unit/test_settings.py — Unit tests for config/settings.py.

These tests validate the Pydantic Settings schema with no network or SSH
dependencies.

Run: pytest tests/unit/test_settings.py -v
"""

import pytest

# conftest.py adds project root to sys.path
from config import settings as settings_mod
from config.settings import Settings, load_settings

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _health_kwargs(**overrides):
    base = dict(
        VCENTER_SERVER="vc01.lab.local",
        VCENTER_USER="administrator@vsphere.local",
        VCENTER_PASSWORD="vcpw",
        VBR_SERVER="vbr01.lab.local",
        VBR_USER="LAB\\svc_veeam",
        VBR_PASSWORD="vbrpw",
    )
    base.update(overrides)
    return base


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------


class TestDefaults:
    def test_ports_and_api_version(self):
        s = Settings()
        assert s.VCENTER_PORT == 443
        assert s.VBR_PORT == 9419
        assert s.VBR_API_VERSION == "1.1-rev2"

    def test_ssh_defaults(self):
        s = Settings()
        assert s.ESXI_SSH_USER == "root"
        assert s.ESXI_SSH_PASSWORD is None
        assert s.SSH_CONNECT_TIMEOUT_SECONDS == 10
        assert s.SSH_STRICT_HOST_KEY_CHECKING is False

    def test_settings_ignore_unknown_fields(self):
        s = Settings(SOMETHING_ELSE="x")
        assert not hasattr(s, "SOMETHING_ELSE")


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TestValidation:
    def test_blank_server_counts_as_unset(self):
        s = Settings(VCENTER_SERVER="   ")
        assert s.VCENTER_SERVER is None

    def test_server_names_are_stripped(self):
        s = Settings(VBR_SERVER=" vbr01  ")
        assert s.VBR_SERVER == "vbr01"

    def test_timeout_must_be_positive(self):
        with pytest.raises(ValueError, match="SSH_COMMAND_TIMEOUT_SECONDS must be >= 1"):
            Settings(SSH_COMMAND_TIMEOUT_SECONDS=0)

    def test_bool_parses_true_string(self):
        s = Settings(VBR_VERIFY_SSL="true")
        assert s.VBR_VERIFY_SSL is True

    def test_passwords_hidden_in_repr(self):
        s = Settings(**_health_kwargs())
        assert "vcpw" not in repr(s)
        assert s.VCENTER_PASSWORD.get_secret_value() == "vcpw"


class TestRequirements:
    def test_complete_health_config_passes(self):
        Settings(**_health_kwargs()).require_health_check()

    def test_missing_values_are_all_named(self):
        kwargs = _health_kwargs()
        del kwargs["VBR_PASSWORD"]
        del kwargs["VCENTER_SERVER"]
        with pytest.raises(ValueError, match="VCENTER_SERVER, VBR_PASSWORD"):
            Settings(**kwargs).require_health_check()

    def test_empty_password_is_missing(self):
        with pytest.raises(ValueError, match="VCENTER_PASSWORD"):
            Settings(**_health_kwargs(VCENTER_PASSWORD="")).require_health_check()


# ---------------------------------------------------------------------------
# Convenience properties
# ---------------------------------------------------------------------------


class TestConvenienceProperties:
    def test_vbr_base_url(self):
        s = Settings(VBR_SERVER="vbr01.lab.local")
        assert s.vbr_base_url == "https://vbr01.lab.local:9419"

    def test_cleanup_packages_split_and_deduplicated(self):
        s = Settings(CLEANUP_PACKAGES="pam_pkcs11, kernel-devel  pam_pkcs11,,btrfs-progs")
        assert s.cleanup_packages == ["pam_pkcs11", "kernel-devel", "btrfs-progs"]

    def test_cleanup_packages_empty(self):
        assert Settings().cleanup_packages == []


# ---------------------------------------------------------------------------
# load_settings
# ---------------------------------------------------------------------------


class TestLoadSettings:
    def test_reads_env_file_and_strips_inline_comments(self, tmp_path, monkeypatch):
        monkeypatch.setattr(settings_mod.os, "environ", {})
        env = tmp_path / "site.env"
        env.write_text(
            "# vCenter\n"
            "VCENTER_SERVER=vc01.lab.local   # primary\n"
            "HEALTH_CLUSTER=Prod-01\n"
            "\n"
            "SSH_CONNECT_TIMEOUT_SECONDS=20\n",
            encoding="utf-8",
        )
        s = load_settings(str(env))
        assert s.VCENTER_SERVER == "vc01.lab.local"
        assert s.HEALTH_CLUSTER == "Prod-01"
        assert s.SSH_CONNECT_TIMEOUT_SECONDS == 20

    def test_environment_wins_over_file(self, tmp_path, monkeypatch):
        monkeypatch.setattr(settings_mod.os, "environ", {"HEALTH_CLUSTER": "DR-01"})
        env = tmp_path / "site.env"
        env.write_text("HEALTH_CLUSTER=Prod-01\n", encoding="utf-8")
        assert load_settings(str(env)).HEALTH_CLUSTER == "DR-01"

    def test_missing_env_file_is_fine(self, tmp_path, monkeypatch):
        monkeypatch.setattr(settings_mod.os, "environ", {})
        s = load_settings(str(tmp_path / "nope.env"))
        assert s.VCENTER_SERVER is None

    def test_blank_password_in_env_file_is_unset(self, tmp_path, monkeypatch):
        monkeypatch.setattr(settings_mod.os, "environ", {})
        env = tmp_path / "site.env"
        env.write_text(
            "ESXI_SSH_USER=root\nESXI_SSH_PASSWORD=\nSQL_PASSWORD=   \n", encoding="utf-8"
        )
        s = load_settings(str(env))
        assert s.ESXI_SSH_PASSWORD is None
        assert s.SQL_PASSWORD is None


class TestSqlInventoryRequirements:
    def test_discovery_needs_directory_settings(self):
        with pytest.raises(ValueError, match="LDAP_SERVER, LDAP_USER, LDAP_PASSWORD"):
            Settings(SQL_USER="sa", SQL_PASSWORD="pw").require_sql_inventory()

    def test_inventory_file_needs_only_sql_login(self):
        Settings(SQL_USER="sa", SQL_PASSWORD="pw").require_sql_inventory(discover=False)

    def test_missing_sql_login_named(self):
        with pytest.raises(ValueError, match="SQL_USER, SQL_PASSWORD"):
            Settings().require_sql_inventory(discover=False)

    def test_default_filter_targets_sql_spns(self):
        assert "servicePrincipalName=MSSQLSvc/*" in Settings().LDAP_COMPUTER_FILTER
