"""Tests for vmctl.config module."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from vmctl.config import load_defaults_file, load_settings
from vmctl.constants import DEFAULT_API_PORT, DEFAULT_QEMU_BINARY, DEFAULT_STOP_GRACE
from vmctl.exceptions import ManagerError, ValidationError


class TestLoadSettings:
    def test_defaults(self, clean_env):
        settings = load_settings()
        assert settings.home == clean_env
        assert settings.qemu_binary == DEFAULT_QEMU_BINARY
        assert settings.stop_grace == DEFAULT_STOP_GRACE
        assert settings.api_port == DEFAULT_API_PORT
        assert settings.enable_kvm is False
        assert settings.default_cpu == "host"
        assert settings.default_cpus == 2
        assert settings.default_memory == "2G"

    def test_derived_directories(self, clean_env):
        settings = load_settings()
        assert settings.machines_dir == clean_env / "machines"
        assert settings.logs_root == clean_env / "logs"
        assert settings.images_dir == clean_env / "images"

    def test_env_overrides(self, clean_env, monkeypatch):
        monkeypatch.setenv("VMCTL_QEMU", "/opt/qemu/bin/qemu-system-x86_64")
        monkeypatch.setenv("VMCTL_STOP_GRACE", "0.5")
        monkeypatch.setenv("VMCTL_API_PORT", "9000")
        monkeypatch.setenv("VMCTL_KVM", "1")
        settings = load_settings()
        assert settings.qemu_binary == "/opt/qemu/bin/qemu-system-x86_64"
        assert settings.stop_grace == 0.5
        assert settings.api_port == 9000
        assert settings.enable_kvm is True

    def test_kvm_autodetected_when_unset(self, clean_env, monkeypatch):
        monkeypatch.delenv("VMCTL_KVM", raising=False)
        with patch("vmctl.config.kvm_available", return_value=True):
            assert load_settings().enable_kvm is True

    def test_invalid_port(self, clean_env, monkeypatch):
        monkeypatch.setenv("VMCTL_API_PORT", "70000")
        with pytest.raises(ManagerError):
            load_settings()

    def test_defaults_file_applies(self, clean_env):
        clean_env.mkdir(parents=True)
        (clean_env / "config.yaml").write_text("defaults:\n  cpu: qemu64\n  cpus: 4\n  memory: 4G\n")
        settings = load_settings()
        assert settings.default_cpu == "qemu64"
        assert settings.default_cpus == 4
        assert settings.default_memory == "4G"

    def test_defaults_file_validates_memory(self, clean_env):
        clean_env.mkdir(parents=True)
        (clean_env / "config.yaml").write_text("defaults:\n  memory: 3X\n")
        with pytest.raises(ValidationError):
            load_settings()


class TestLoadDefaultsFile:
    def test_missing_file(self, tmp_path):
        assert load_defaults_file(tmp_path / "nope.yaml") == {}

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("defaults: [unclosed\n")
        with pytest.raises(ManagerError, match="Invalid config file"):
            load_defaults_file(path)

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ManagerError, match="must contain a mapping"):
            load_defaults_file(path)
