"""Unit tests for CompilerProfile and CompilerRegistry.

Tests verify:
- Profiles validate versions and optimizer settings
- settings() merges extra flags into the optimizer block
- The registry rejects duplicates and unknown versions
- Default profile selection (configured default, else highest version)
- freeze() and without_optimizer()
"""

import pytest

from solbuild.compilers.registry import CompilerProfile, CompilerRegistry
from solbuild.errors import ConfigError, DuplicateVersionError, UnknownVersionError


class TestCompilerProfile:
    def test_settings_include_optimizer(self) -> None:
        """settings() produces the standard-JSON optimizer block."""
        profile = CompilerProfile("0.8.2", optimizer_enabled=True, optimizer_runs=999)
        assert profile.settings() == {"optimizer": {"enabled": True, "runs": 999}}

    def test_extra_flags_are_deep_merged(self) -> None:
        """Extra flags nested under optimizer keep enabled/runs intact."""
        profile = CompilerProfile(
            "0.6.6",
            extra_flags={"optimizer": {"details": {"yul": True}}, "evmVersion": "istanbul"},
        )
        settings = profile.settings()
        assert settings["optimizer"] == {"enabled": True, "runs": 200, "details": {"yul": True}}
        assert settings["evmVersion"] == "istanbul"

    def test_invalid_version_rejected(self) -> None:
        """A non-semver version is a configuration error."""
        with pytest.raises(ConfigError, match="Invalid compiler version"):
            CompilerProfile("latest")

    def test_negative_runs_rejected(self) -> None:
        with pytest.raises(ConfigError):
            CompilerProfile("0.8.0", optimizer_runs=-1)

    def test_extra_flags_cannot_be_mutated(self) -> None:
        """The profile keeps a private read-only copy of extra flags."""
        flags = {"evmVersion": "london"}
        profile = CompilerProfile("0.8.2", extra_flags=flags)
        flags["evmVersion"] = "paris"
        assert profile.settings()["evmVersion"] == "london"
        with pytest.raises(TypeError):
            profile.extra_flags["evmVersion"] = "paris"  # type: ignore[index]

    def test_settings_hash_changes_with_settings(self) -> None:
        a = CompilerProfile("0.8.2", optimizer_runs=200)
        b = CompilerProfile("0.8.2", optimizer_runs=201)
        assert a.settings_hash() == CompilerProfile("0.8.2", optimizer_runs=200).settings_hash()
        assert a.settings_hash() != b.settings_hash()

    def test_without_optimizer_drops_details(self) -> None:
        """Disabling the optimizer also drops optimizer details."""
        profile = CompilerProfile("0.6.6", extra_flags={"optimizer": {"details": {"yul": True}}})
        plain = profile.without_optimizer()
        assert plain.optimizer_enabled is False
        assert plain.settings()["optimizer"] == {"enabled": False, "runs": 200}
        assert profile.optimizer_enabled is True

    def test_from_dict_accepts_nested_optimizer(self) -> None:
        """Hardhat-style entries nest the optimizer under settings."""
        profile = CompilerProfile.from_dict(
            {
                "version": "0.6.6",
                "settings": {"optimizer": {"enabled": False, "runs": 50, "details": {"yul": True}}},
            }
        )
        assert profile.optimizer_enabled is False
        assert profile.optimizer_runs == 50
        assert dict(profile.extra_flags) == {"optimizer": {"details": {"yul": True}}}

    def test_from_dict_missing_version(self) -> None:
        with pytest.raises(ConfigError, match="missing 'version'"):
            CompilerProfile.from_dict({"settings": {}})

    def test_to_dict_round_trips_through_from_dict(self) -> None:
        profile = CompilerProfile("0.8.0", optimizer_runs=1000, extra_flags={"viaIR": True}, solc_path="/opt/solc")
        assert CompilerProfile.from_dict(profile.to_dict()) == profile


class TestCompilerRegistry:
    def test_lookup_registered_version(self) -> None:
        registry = CompilerRegistry([CompilerProfile("0.8.0"), CompilerProfile("0.8.2")])
        assert registry.lookup("0.8.2").version == "0.8.2"

    def test_lookup_unknown_version(self) -> None:
        """Looking up an unregistered version raises UnknownVersionError."""
        registry = CompilerRegistry([CompilerProfile("0.8.0")])
        with pytest.raises(UnknownVersionError) as exc_info:
            registry.lookup("0.8.1")
        assert exc_info.value.version == "0.8.1"

    def test_duplicate_version_rejected(self) -> None:
        registry = CompilerRegistry([CompilerProfile("0.8.0")])
        with pytest.raises(DuplicateVersionError):
            registry.register(CompilerProfile("0.8.0", optimizer_runs=1))

    def test_versions_sorted_by_semver(self) -> None:
        """0.10.0 sorts after 0.9.0, not lexically."""
        registry = CompilerRegistry(CompilerProfile(v) for v in ("0.10.0", "0.4.13", "0.9.0"))
        assert registry.versions() == ["0.4.13", "0.9.0", "0.10.0"]

    def test_default_profile_is_highest_version(self) -> None:
        registry = CompilerRegistry(CompilerProfile(v) for v in ("0.8.2", "0.6.6", "0.8.0"))
        assert registry.default_profile().version == "0.8.2"

    def test_configured_default_wins(self) -> None:
        registry = CompilerRegistry((CompilerProfile(v) for v in ("0.8.0", "0.8.2")), default_version="0.8.0")
        assert registry.default_profile().version == "0.8.0"

    def test_configured_default_must_be_registered(self) -> None:
        with pytest.raises(UnknownVersionError):
            CompilerRegistry([CompilerProfile("0.8.0")], default_version="0.7.6")

    def test_empty_registry_has_no_default(self) -> None:
        assert CompilerRegistry().default_profile() is None

    def test_frozen_registry_rejects_registration(self) -> None:
        registry = CompilerRegistry([CompilerProfile("0.8.0")]).freeze()
        assert registry.frozen
        with pytest.raises(RuntimeError, match="frozen"):
            registry.register(CompilerProfile("0.8.2"))

    def test_without_optimizer_copies_every_profile(self) -> None:
        registry = CompilerRegistry((CompilerProfile(v) for v in ("0.8.0", "0.8.2")), default_version="0.8.0")
        plain = registry.without_optimizer()
        assert plain.frozen
        assert plain.versions() == ["0.8.0", "0.8.2"]
        assert plain.default_version == "0.8.0"
        assert all(not p.optimizer_enabled for p in plain)
        assert all(p.optimizer_enabled for p in registry)

    def test_from_dicts_builds_frozen_registry(self) -> None:
        registry = CompilerRegistry.from_dicts([{"version": "0.5.16"}, {"version": "0.4.13"}])
        assert registry.frozen
        assert len(registry) == 2
        assert "0.5.16" in registry
        assert "0.5.17" not in registry
