# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""Tests for the versioned configuration store."""
import pytest

from agent_loop.storage import DEFAULT_PROMPTS


class TestConfigStore:
    def test_current_is_latest(self, store):
        store.append("hint_system", "v1 text")
        store.append("hint_system", "v2 text", changelog="clearer")
        current = store.current("hint_system")
        assert current.version == 2
        assert current.payload == "v2 text"
        assert current.changelog == "clearer"
        assert store.current("missing") is None

    def test_rollback_appends_copy(self, store):
        store.append("hint_system", "original", metrics_snapshot={"avg_satisfaction": 6.0})
        store.append("hint_system", "worse")

        restored = store.rollback("hint_system", 1, iteration=3)

        assert restored.version == 3
        assert restored.payload == "original"
        assert restored.changelog == "Rollback to v1"
        assert restored.metrics_snapshot == {"avg_satisfaction": 6.0}
        assert restored.iteration == 3
        assert [v.payload for v in store.history("hint_system")] == ["original", "worse", "original"]

    def test_rollback_to_missing_version(self, store):
        store.append("hint_system", "only")
        with pytest.raises(KeyError):
            store.rollback("hint_system", 5)
        assert len(store.history("hint_system")) == 1

    def test_initialize_defaults_is_idempotent(self, store):
        created = store.initialize_defaults()
        assert sorted(v.module for v in created) == sorted(DEFAULT_PROMPTS)
        assert all(v.version == 1 and v.changelog == "Initial version" for v in created)

        store.append("hint_system", "tuned")
        assert store.initialize_defaults() == []
        assert store.current("hint_system").payload == "tuned"

    def test_current_payloads(self, store):
        store.initialize_defaults({"a": "alpha", "b": "beta"})
        store.append("a", "alpha 2")
        assert store.current_payloads() == {"a": "alpha 2", "b": "beta"}
        assert store.current_payloads(["b", "missing"]) == {"b": "beta"}
        assert {m: v.version for m, v in store.current_versions().items()} == {"a": 2, "b": 1}
