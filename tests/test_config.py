import json

import pytest

from card_cropper import config
from card_cropper.config import CARD_BUDGET, CERTIFICATE_BUDGET, EncodeBudget, Settings, budget_for, load_settings


class TestPresets:
    def test_card(self):
        assert CARD_BUDGET.max_bytes == 285_000
        assert CARD_BUDGET.hard_ceiling == 300_000
        assert CARD_BUDGET.max_edge_pixels == 1400
        assert CARD_BUDGET.reencode_from == "previous"

    def test_certificate(self):
        assert CERTIFICATE_BUDGET.max_bytes == 1_000_000
        assert CERTIFICATE_BUDGET.hard_ceiling == 1_000_000
        assert CERTIFICATE_BUDGET.max_edge_pixels is None
        assert CERTIFICATE_BUDGET.max_attempts == 6
        assert CERTIFICATE_BUDGET.reencode_from == "original"


@pytest.mark.parametrize(
    "kwargs",
    [
        {"max_bytes": 0},
        {"max_bytes": 100, "max_edge_pixels": 0},
        {"max_bytes": 100, "format": "gif"},
        {"max_bytes": 100, "initial_quality": 1.5},
        {"max_bytes": 100, "min_quality": 0.8, "initial_quality": 0.7},
        {"max_bytes": 100, "quality_step": 0},
        {"max_bytes": 100, "max_attempts": -1},
        {"max_bytes": 100, "hard_ceiling_bytes": 50},
        {"max_bytes": 100, "reencode_from": "cache"},
    ],
)
def test_invalid_budget_rejected(kwargs):
    with pytest.raises(ValueError):
        EncodeBudget(**kwargs)


class TestSettings:
    def test_missing_file_gives_defaults(self, tmp_path):
        assert load_settings(str(tmp_path / "missing.json")) == Settings()

    def test_malformed_file_gives_defaults(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json")
        assert load_settings(str(path)) == Settings()

    def test_non_object_gives_defaults(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("[1, 2]")
        assert load_settings(str(path)) == Settings()

    def test_values_loaded(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({
            "language": "it",
            "call_timeout": "12.5",
            "budgets": {"card": {"max_bytes": 250000}},
        }))
        settings = load_settings(str(path))
        assert settings.language == "it"
        assert settings.call_timeout == 12.5
        assert settings.budgets == {"card": {"max_bytes": 250000}}

    def test_bad_timeout_falls_back(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"call_timeout": "soon"}))
        assert load_settings(str(path)).call_timeout == config.DEFAULT_CALL_TIMEOUT


class TestBudgetFor:
    def test_preset_without_overrides(self):
        assert budget_for("card") is CARD_BUDGET

    def test_overrides_applied(self):
        settings = Settings(budgets={"card": {"max_bytes": 250_000, "colour": "red"}})
        budget = budget_for("card", settings)
        assert budget.max_bytes == 250_000
        assert budget.hard_ceiling == 300_000
        assert budget.max_edge_pixels == 1400

    def test_unknown_preset(self):
        with pytest.raises(KeyError):
            budget_for("passport")

    @pytest.mark.parametrize(
        "overrides",
        [
            {"max_bytes": "lots"},
            {"max_bytes": -5},
            {"min_quality": 0.9},
            "smaller please",
        ],
    )
    def test_malformed_overrides_fall_back_to_preset(self, overrides):
        settings = Settings(budgets={"card": overrides})
        assert budget_for("card", settings) is CARD_BUDGET


class TestWantsReencode:
    def test_stops_within_budget(self):
        assert not CARD_BUDGET.wants_reencode(1, CARD_BUDGET.max_bytes, "jpeg")

    def test_stops_when_attempts_used_up(self):
        assert CARD_BUDGET.wants_reencode(CARD_BUDGET.max_attempts, 400_000, "jpeg")
        assert not CARD_BUDGET.wants_reencode(CARD_BUDGET.max_attempts + 1, 400_000, "jpeg")

    def test_png_needs_a_fallback(self):
        assert CERTIFICATE_BUDGET.wants_reencode(1, 2_000_000, "png")
        lossless_only = EncodeBudget(max_bytes=1_000_000, format="png")
        assert not lossless_only.wants_reencode(1, 2_000_000, "png")
