"""
Integration tests for the settlement service over the sample data directory.

Run with: pytest test_service.py -v
"""

from datetime import date, datetime
from pathlib import Path

import pytest

from grd_settlement import (
    AgreementPriceEntry,
    EngineConfig,
    EpisodeUpdate,
    GrdRule,
    InMemoryEpisodeRepository,
    ReferenceCatalog,
    SettlementEngine,
    SettlementService,
    StayClassification,
)
from grd_settlement.exceptions import (
    ConcurrentUpdateError,
    EpisodeNotFoundError,
    OverrideNotAllowedError,
    UnknownTechnologyAdjustmentError,
)
from grd_settlement.reference_data import parse_setting
from grd_settlement.reporting import settlements_frame, summarize_by_agreement


DATA_DIR = Path(__file__).parent / "data"


@pytest.fixture
def repository():
    repository = InMemoryEpisodeRepository()
    repository.load_from_directory(DATA_DIR)
    return repository


@pytest.fixture
def service(repository):
    return SettlementService(repository, EngineConfig())


class TestReferenceCatalog:
    """Test loading reference data from JSON files."""

    def test_load_from_directory(self):
        catalog = ReferenceCatalog()
        catalog.load_from_directory(DATA_DIR)

        rule = catalog.get_grd_rule(" 14101 ")
        assert rule is not None
        assert rule.upper_cutoff == 10
        assert len(catalog.prices_for("fns012")) == 4
        assert catalog.get_technology_adjustment("Marcapasos").amount == 2500000
        assert catalog.system_settings["percentil50"] == 4.0

    def test_unknown_lookups(self):
        catalog = ReferenceCatalog()
        assert catalog.get_grd_rule(None) is None
        assert catalog.prices_for("ISAPRE99") == []
        assert catalog.get_technology_adjustment("") is None

    def test_grd_rules_upsert_by_code(self):
        catalog = ReferenceCatalog()
        catalog.add_grd_rule(GrdRule(code="14101", description="old", upper_cutoff=10))
        catalog.add_grd_rule(GrdRule(code="14101", description="new", upper_cutoff=12))
        assert len(catalog.grd_rules) == 1
        assert catalog.get_grd_rule("14101").upper_cutoff == 12

    @pytest.mark.parametrize("value,value_type,expected", [
        ("4", "number", 4.0),
        ("true", "boolean", True),
        ("false", "boolean", False),
        ('{"a": 1}', "json", {"a": 1}),
        ("not json", "json", "not json"),
        ("hello", "string", "hello"),
    ])
    def test_parse_setting(self, value, value_type, expected):
        assert parse_setting(value, value_type) == expected


class TestEngineConfig:
    """Test configuration sources."""

    def test_environment_variables(self, monkeypatch):
        monkeypatch.setenv("GRD_SETTLEMENT_DEFAULT_PERCENTILE75", "6")
        assert EngineConfig().default_percentile75 == 6

    def test_system_settings_layered(self):
        config = EngineConfig(default_percentile50=3).with_system_settings(
            {"diasPercentil75": 7, "percentil50": "abc", "maxFileSizeMB": 10}
        )
        assert config.default_percentile75 == 7
        assert config.default_percentile50 == 3
        assert config.default_upper_cutoff is None

    def test_non_positive_settings_ignored(self):
        config = EngineConfig().with_system_settings({"puntoCorteSuperior": 0, "diasPercentil75": -2})
        assert config.default_upper_cutoff is None
        assert config.default_percentile75 is None


class TestReadEpisode:
    """Test recalculation on read."""

    def test_fns012_outlier_superior(self, service):
        result = service.read_episode("EP-1001")

        assert result.tier == "T2"
        assert result.base_price == 1850000
        assert result.length_of_stay == 20
        assert result.classification == StayClassification.OUTLIER_SUPERIOR
        assert result.group_value == pytest.approx(3330000)
        assert result.outlier_payment == pytest.approx(2081250)
        assert result.final_amount == pytest.approx(5411250)

    def test_ch0041_daily_waiting_rate(self, service):
        result = service.read_episode("EP-1002")

        assert result.base_price == 1750000
        assert result.group_value == pytest.approx(5075000)
        assert result.delay_payment == pytest.approx(150000)
        assert result.classification == StayClassification.INLIER
        assert result.final_amount == pytest.approx(5225000)

    def test_technology_amount_and_normalized_agreement(self, service):
        result = service.read_episode("EP-1003")

        assert result.agreement_code == "FNS019"
        assert result.group_value == pytest.approx(960000)
        assert result.technology_amount == 1200000
        assert result.final_amount == pytest.approx(2160000)

    def test_system_setting_used_for_reference_days(self, service, repository):
        result = service.read_episode("EP-1004")

        assert result.classification is None
        assert result.group_value == pytest.approx(1680000)
        # ((1.2 x 1400000) / 7) x 2 with diasPercentil75 = 7
        assert result.delay_payment == pytest.approx(480000)
        assert result.final_amount == pytest.approx(2160000)

        episode = repository.get_episode("EP-1004")
        bare = SettlementEngine(EngineConfig()).settle(
            episode,
            grd=repository.get_grd_rule(episode.grd_code),
            price_entries=repository.price_entries(episode.agreement_code),
        )
        assert bare.delay_payment == pytest.approx(3360000)

    def test_final_amount_override_outside_normal_group(self, service):
        result = service.read_episode("EP-1005")

        assert result.tier == "T3"
        assert result.group_value == pytest.approx(6090000)
        assert result.classification == StayClassification.OUTLIER_INFERIOR
        assert result.final_amount == 3000000

    def test_read_persists_derived_fields_once(self, service, repository):
        service.read_episode("EP-1001")
        stored = repository.get_episode("EP-1001")
        assert stored.version == 1
        assert stored.final_amount == pytest.approx(5411250)
        assert stored.classification == StayClassification.OUTLIER_SUPERIOR

        service.read_episode("EP-1001")
        assert repository.get_episode("EP-1001").version == 1

    def test_unknown_episode(self, service):
        with pytest.raises(EpisodeNotFoundError):
            service.read_episode("EP-0000")

    def test_write_between_load_and_save(self, service, repository, monkeypatch):
        load = repository.get_episode

        def load_then_concurrent_write(episode_id):
            snapshot = load(episode_id)
            repository.save_episode(snapshot.model_copy(update={"validated": True}))
            return snapshot

        monkeypatch.setattr(repository, "get_episode", load_then_concurrent_write)
        result = service.read_episode("EP-1001")
        monkeypatch.undo()

        assert result.final_amount == pytest.approx(5411250)
        stored = repository.get_episode("EP-1001")
        assert stored.version == 1
        assert stored.validated is True
        assert stored.final_amount is None

        service.read_episode("EP-1001")
        assert repository.get_episode("EP-1001").final_amount == pytest.approx(5411250)


class TestListEpisodes:
    """Test bulk recalculation."""

    def test_list_recalculates_all(self, service, repository):
        results = service.list_episodes()
        assert [result.episode_id for result in results] == [
            "EP-1001", "EP-1002", "EP-1003", "EP-1004", "EP-1005",
        ]
        assert all(episode.version == 1 for episode in repository.list_episodes())

    def test_second_list_writes_nothing(self, service, repository):
        service.list_episodes()
        service.list_episodes()
        assert all(episode.version == 1 for episode in repository.list_episodes())

    def test_concurrent_write_does_not_abort_listing(self, service, repository, monkeypatch):
        load_all = repository.list_episodes

        def load_then_concurrent_write():
            snapshot = load_all()
            repository.save_episode(repository.get_episode("EP-1003").model_copy(update={"validated": False}))
            return snapshot

        monkeypatch.setattr(repository, "list_episodes", load_then_concurrent_write)
        results = service.list_episodes()
        monkeypatch.undo()

        assert len(results) == 5
        by_id = {result.episode_id: result for result in results}
        assert by_id["EP-1003"].final_amount == pytest.approx(2160000)
        assert repository.get_episode("EP-1003").validated is False
        assert repository.get_episode("EP-1001").version == 1

    def test_new_price_is_picked_up(self, service, repository):
        service.list_episodes()
        count = service.import_price_entries([
            AgreementPriceEntry("FNS012", 1900000, tier="T2", created_at=datetime(2025, 9, 1)),
        ])
        assert count == 1

        results = {result.episode_id: result for result in service.list_episodes()}
        assert results["EP-1001"].base_price == 1900000
        assert results["EP-1001"].group_value == pytest.approx(3420000)
        assert repository.get_episode("EP-1001").version == 2
        assert repository.get_episode("EP-1002").version == 1


class TestUpdateEpisode:
    """Test partial updates."""

    def test_discharge_date_change_reclassifies(self, service, repository):
        result = service.update_episode("EP-1001", EpisodeUpdate(discharge_date=date(2025, 3, 8)))

        assert result.length_of_stay == 7
        assert result.classification == StayClassification.INLIER
        assert result.outlier_payment == 0
        assert result.final_amount == pytest.approx(3330000)
        assert repository.get_episode("EP-1001").final_amount == pytest.approx(3330000)

    def test_technology_detail_fills_amount(self, service, repository):
        result = service.update_episode(
            "EP-1002",
            EpisodeUpdate(technology_flag="S", technology_detail="Marcapasos"),
        )
        assert result.technology_amount == 2500000
        assert result.final_amount == pytest.approx(7725000)
        assert repository.get_episode("EP-1002").technology_amount == 2500000

    def test_technology_flag_off_clears_adjustment(self, service, repository):
        result = service.update_episode("EP-1003", EpisodeUpdate(technology_flag="N"))

        assert result.technology_amount == 0
        assert result.final_amount == pytest.approx(960000)
        stored = repository.get_episode("EP-1003")
        assert stored.technology_detail is None
        assert stored.technology_amount == 0

    def test_unknown_technology_detail(self, service):
        with pytest.raises(UnknownTechnologyAdjustmentError):
            service.update_episode("EP-1002", EpisodeUpdate(technology_flag=True, technology_detail="Robot"))

    def test_technology_detail_without_amount(self, service):
        result = service.update_episode(
            "EP-1002",
            EpisodeUpdate(technology_flag=True, technology_detail="Protesis sin monto"),
        )
        assert result.technology_amount == 0
        assert result.final_amount == pytest.approx(5225000)

    def test_invalid_technology_flag(self):
        with pytest.raises(ValueError):
            EpisodeUpdate(technology_flag="X")

    def test_override_rejected_within_normal_group(self, service):
        with pytest.raises(OverrideNotAllowedError):
            service.update_episode("EP-1001", EpisodeUpdate(final_amount_override=999))

    def test_override_with_outside_normal_group(self, service):
        result = service.update_episode(
            "EP-1001",
            EpisodeUpdate(outside_normal_group=True, group_value_override=3000000),
        )
        assert result.group_value == 3000000
        assert result.final_amount == pytest.approx(5081250)

    def test_clearing_override(self, service):
        result = service.update_episode("EP-1005", EpisodeUpdate(final_amount_override=None))
        assert result.final_amount == pytest.approx(6090000)

    def test_returning_to_normal_group_clears_overrides(self, service, repository):
        result = service.update_episode("EP-1005", EpisodeUpdate(outside_normal_group=False))

        assert result.final_amount == pytest.approx(6090000)
        assert not any("ignored" in note for note in result.notes)
        stored = repository.get_episode("EP-1005")
        assert stored.outside_normal_group is False
        assert stored.overrides.supplied() == []

    def test_negative_override_rejected(self):
        with pytest.raises(ValueError):
            EpisodeUpdate(outside_normal_group=True, final_amount_override=-1)

    def test_stale_version_rejected(self, service):
        service.read_episode("EP-1001")
        with pytest.raises(ConcurrentUpdateError):
            service.update_episode("EP-1001", EpisodeUpdate(rescue_delay_days=1), expected_version=0)

    def test_update_bumps_version(self, service, repository):
        service.update_episode("EP-1004", EpisodeUpdate(rescue_delay_days=0), expected_version=0)
        stored = repository.get_episode("EP-1004")
        assert stored.version == 1
        assert stored.delay_payment == 0


class TestImport:
    """Test reference data import."""

    def test_grd_rule_import_changes_classification(self, service):
        imported = service.import_grd_rules([
            GrdRule(code="99999", description="Con puntos de corte", lower_cutoff=1, upper_cutoff=4),
        ])
        assert imported == 1

        result = service.read_episode("EP-1004")
        assert result.classification == StayClassification.OUTLIER_SUPERIOR
        assert result.within_norm is False


class TestReporting:
    """Test tabular summaries."""

    def test_settlements_frame(self, service):
        frame = settlements_frame(service.list_episodes())
        assert len(frame) == 5
        row = frame.set_index("episode_id").loc["EP-1001"]
        assert row["classification"] == "Outlier Superior"
        assert row["final_amount"] == pytest.approx(5411250)

    def test_summary_by_agreement(self, service):
        summary = summarize_by_agreement(settlements_frame(service.list_episodes()))
        fns012 = summary.set_index("agreement_code").loc["FNS012"]
        assert fns012["episodes"] == 2
        assert fns012["final_amount"] == pytest.approx(8411250)
        assert list(summary["agreement_code"]) == ["CH0041", "FNS012", "FNS019", "FNS026"]

    def test_empty_summary(self):
        summary = summarize_by_agreement(settlements_frame([]))
        assert summary.empty
