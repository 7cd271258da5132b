from driveads.config import Config, config


class TestConfig:
    """Test environment-driven settings."""

    def test_environment_overrides(self):
        assert config.payment_webhook_secret == "test-webhook-secret"
        assert config.celery_task_always_eager is True

    def test_only_consumed_settings_exposed(self):
        """Settings nothing reads are not carried on the instance."""
        fresh = Config()
        assert not hasattr(fresh, "debug")
        assert fresh.max_plausible_speed_kph == 300.0

    def test_runtime_threshold_update(self):
        fresh = Config()
        fresh.update_antifraud_thresholds(max_plausible_speed_kph=250, sort_pings_by_timestamp=True)
        assert fresh.get_antifraud_config()["max_plausible_speed_kph"] == 250
        assert fresh.sort_pings_by_timestamp is True
