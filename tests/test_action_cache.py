"""Tests for the action pin cache and reference resolver."""

import json

import pytest

from awflow.workflow.action_cache import (
    ActionCache,
    format_cache_key,
    is_more_precise_version,
    load_default_pins,
)
from awflow.workflow.action_resolver import (
    ActionResolver,
    extract_base_repo,
    parse_action_reference,
)
from awflow.workflow.errors import ActionCacheError, ActionResolutionError

SHA_A = "a" * 40
SHA_B = "b" * 40


class TestVersionPrecision:
    """is_more_precise_version prefers more components, then string order."""

    def test_more_components_wins(self):
        assert is_more_precise_version("v1.2.3", "v1")
        assert not is_more_precise_version("v1", "v1.2.3")

    def test_equal_components_fall_back_to_string_order(self):
        assert is_more_precise_version("v1.2.3", "v1.2.10")
        assert not is_more_precise_version("v1.2.10", "v1.2.3")


class TestActionCacheRoundTrip:
    def test_missing_file_loads_empty(self, tmp_path):
        cache = ActionCache(tmp_path)
        cache.load()

        assert cache.entries == {}
        assert not cache.dirty

    def test_save_and_load(self, tmp_path):
        cache = ActionCache(tmp_path)
        cache.set("actions/checkout", "v5", SHA_A)
        cache.save()

        loaded = ActionCache(tmp_path)
        loaded.load()

        assert loaded.get("actions/checkout", "v5") == (SHA_A, True)
        assert loaded.get("actions/checkout", "v4") == ("", False)

    def test_file_format_is_sorted_with_trailing_newline(self, tmp_path):
        cache = ActionCache(tmp_path)
        cache.set("actions/setup-node", "v4", SHA_B)
        cache.set("actions/checkout", "v5", SHA_A)
        cache.save()

        text = cache.path.read_text()
        assert text.endswith("}\n")
        data = json.loads(text)
        assert list(data["entries"]) == ["actions/checkout@v5", "actions/setup-node@v4"]
        assert data["entries"]["actions/checkout@v5"] == {
            "repo": "actions/checkout",
            "version": "v5",
            "sha": SHA_A,
        }

    def test_default_location(self, tmp_path):
        cache = ActionCache(tmp_path)

        assert cache.cache_path == tmp_path / ".github" / "aw" / "actions-lock.json"


class TestActionCacheSave:
    def test_clean_cache_does_not_write(self, tmp_path):
        cache = ActionCache(tmp_path)
        cache.save()

        assert not cache.path.exists()

    def test_save_clears_dirty(self, tmp_path):
        cache = ActionCache(tmp_path)
        cache.set("actions/checkout", "v5", SHA_A)
        assert cache.dirty

        cache.save()

        assert not cache.dirty

    def test_empty_dirty_cache_removes_file(self, tmp_path):
        cache = ActionCache(tmp_path)
        cache.set("actions/checkout", "v5", SHA_A)
        cache.save()
        assert cache.path.exists()

        cache.entries = {}
        cache.dirty = True
        cache.save()

        assert not cache.path.exists()

    def test_save_is_stable(self, tmp_path):
        cache = ActionCache(tmp_path)
        cache.set("actions/checkout", "v5", SHA_A)
        cache.save()
        first = cache.path.read_text()

        cache.set("actions/checkout", "v5", SHA_A)
        cache.save()

        assert cache.path.read_text() == first


class TestActionCacheDeduplication:
    def test_keeps_most_precise_version(self, tmp_path):
        cache = ActionCache(tmp_path)
        cache.set("actions/checkout", "v5", SHA_A)
        cache.set("actions/checkout", "v5.0.0", SHA_A)
        cache.set("actions/checkout", "v5.0", SHA_A)

        removed = cache.deduplicate()

        assert sorted(removed) == ["actions/checkout@v5", "actions/checkout@v5.0"]
        assert list(cache.entries) == ["actions/checkout@v5.0.0"]

    def test_different_shas_are_kept(self, tmp_path):
        cache = ActionCache(tmp_path)
        cache.set("actions/checkout", "v4", SHA_A)
        cache.set("actions/checkout", "v5", SHA_B)

        assert cache.deduplicate() == []
        assert len(cache.entries) == 2

    def test_same_sha_different_repos_are_kept(self, tmp_path):
        cache = ActionCache(tmp_path)
        cache.set("actions/checkout", "v5", SHA_A)
        cache.set("actions/cache", "v5.0.0", SHA_A)

        assert cache.deduplicate() == []

    def test_save_deduplicates(self, tmp_path):
        cache = ActionCache(tmp_path)
        cache.set("actions/checkout", "v5", SHA_A)
        cache.set("actions/checkout", "v5.0.0", SHA_A)
        cache.save()

        data = json.loads(cache.path.read_text())
        assert list(data["entries"]) == ["actions/checkout@v5.0.0"]

    def test_find_entry_by_sha(self, tmp_path):
        cache = ActionCache(tmp_path)
        cache.set("actions/checkout", "v5", SHA_A)

        entry, found = cache.find_entry_by_sha("actions/checkout", SHA_A)
        assert found
        assert entry.key == format_cache_key("actions/checkout", "v5")

        assert cache.find_entry_by_sha("actions/checkout", SHA_B) == (None, False)


class TestDefaultPins:
    def test_bundled_pins_cover_generated_actions(self):
        defaults = load_default_pins()

        assert {"actions/checkout@v5", "actions/github-script@v8"} <= set(defaults)
        assert all(len(entry.sha) == 40 for entry in defaults.values())

    def test_empty_cache_falls_back_to_defaults(self, tmp_path):
        cache = ActionCache(tmp_path)
        cache.load()

        sha, found = cache.get("actions/checkout", "v5")

        assert found
        assert sha == load_default_pins()["actions/checkout@v5"].sha
        assert cache.entries == {}

    def test_repository_entries_override_defaults(self, tmp_path):
        cache = ActionCache(tmp_path)
        cache.set("actions/checkout", "v5", SHA_A)

        assert cache.get("actions/checkout", "v5") == (SHA_A, True)

    def test_defaults_are_not_saved(self, tmp_path):
        cache = ActionCache(tmp_path)
        cache.set("actions/cache", "v4", SHA_B)
        cache.save()

        data = json.loads(cache.path.read_text())
        assert list(data["entries"]) == ["actions/cache@v4"]

    def test_defaults_can_be_disabled(self, tmp_path):
        cache = ActionCache(tmp_path, defaults={})

        assert cache.get("actions/checkout", "v5") == ("", False)


class TestActionCacheErrors:
    def test_malformed_json_raises(self, tmp_path):
        cache = ActionCache(tmp_path)
        cache.path.parent.mkdir(parents=True)
        cache.path.write_text("{not json")

        with pytest.raises(ActionCacheError, match="invalid action cache JSON"):
            cache.load()

    def test_missing_entries_object_raises(self, tmp_path):
        cache = ActionCache(tmp_path)
        cache.path.parent.mkdir(parents=True)
        cache.path.write_text('{"pins": {}}')

        with pytest.raises(ActionCacheError, match="'entries' object"):
            cache.load()

    def test_incomplete_entry_raises(self, tmp_path):
        cache = ActionCache(tmp_path)
        cache.path.parent.mkdir(parents=True)
        cache.path.write_text('{"entries": {"actions/checkout@v5": {"repo": "actions/checkout"}}}')

        with pytest.raises(ActionCacheError, match="repo, version and sha"):
            cache.load()


class TestActionReferences:
    def test_parse_reference(self):
        assert parse_action_reference("actions/checkout@v5") == ("actions/checkout", "v5")
        assert parse_action_reference("github/codeql-action/upload-sarif@v3 # note") == (
            "github/codeql-action/upload-sarif",
            "v3",
        )

    def test_parse_reference_without_version(self):
        with pytest.raises(ValueError, match="has no version"):
            parse_action_reference("actions/checkout")

    def test_extract_base_repo(self):
        assert extract_base_repo("github/codeql-action/upload-sarif") == "github/codeql-action"
        assert extract_base_repo("actions/checkout") == "actions/checkout"


class TestActionResolver:
    def test_pins_cached_reference(self, tmp_path):
        cache = ActionCache(tmp_path)
        cache.set("actions/checkout", "v5", SHA_A)
        resolver = ActionResolver(cache)

        assert resolver.pin_action_reference("actions/checkout@v5") == (
            f"actions/checkout@{SHA_A} # v5"
        )
        assert resolver.unresolved == []

    def test_local_and_docker_references_unchanged(self, tmp_path):
        resolver = ActionResolver(ActionCache(tmp_path))

        assert resolver.pin_action_reference("./actions/setup") == "./actions/setup"
        assert resolver.pin_action_reference("docker://alpine:3") == "docker://alpine:3"
        assert resolver.unresolved == []

    def test_sha_reference_gets_version_comment_from_cache(self, tmp_path):
        cache = ActionCache(tmp_path)
        cache.set("actions/checkout", "v5", SHA_A)
        resolver = ActionResolver(cache)

        assert resolver.pin_action_reference(f"actions/checkout@{SHA_A}") == (
            f"actions/checkout@{SHA_A} # v5"
        )
        assert resolver.pin_action_reference(f"actions/checkout@{SHA_B}") == (
            f"actions/checkout@{SHA_B}"
        )

    def test_unresolved_without_lookup(self, tmp_path):
        resolver = ActionResolver(ActionCache(tmp_path))

        assert resolver.pin_action_reference("actions/cache@v4") == "actions/cache@v4"
        assert resolver.unresolved == ["actions/cache@v4"]

        resolver.reset()
        assert resolver.unresolved == []

    def test_lookup_fills_cache(self, tmp_path):
        calls = []

        def lookup(repo, version):
            calls.append((repo, version))
            return SHA_B + "\n"

        cache = ActionCache(tmp_path)
        resolver = ActionResolver(cache, lookup=lookup)

        pinned = resolver.pin_action_reference("github/codeql-action/upload-sarif@v3")

        assert pinned == f"github/codeql-action/upload-sarif@{SHA_B} # v3"
        assert calls == [("github/codeql-action", "v3")]
        assert cache.get("github/codeql-action/upload-sarif", "v3") == (SHA_B, True)
        assert cache.dirty

    def test_lookup_invalid_sha_rejected(self, tmp_path):
        resolver = ActionResolver(ActionCache(tmp_path), lookup=lambda repo, version: "main")

        with pytest.raises(ActionResolutionError, match="invalid SHA format"):
            resolver.resolve_sha("actions/cache", "v4")

    def test_lookup_empty_sha_rejected(self, tmp_path):
        resolver = ActionResolver(ActionCache(tmp_path), lookup=lambda repo, version: None)

        with pytest.raises(ActionResolutionError, match="empty SHA"):
            resolver.resolve_sha("actions/cache", "v4")
