"""Configuration validation tests"""

from datetime import datetime, timezone

import pytest

from incident_stream.core.config import PipelineOptions, Settings
from incident_stream.core.exceptions import ConfigurationError
from incident_stream.schemas.incident import AckAction
from incident_stream.tests.conftest import CLIENT_CONFIG


class TestPipelineOptions:
    """Options are validated before any engine is built"""

    def test_defaults(self):
        opts = PipelineOptions.from_mapping({"config": CLIENT_CONFIG})
        assert opts.receive_interval == 5000
        assert opts.from_timestamp is None
        assert opts.on_success is AckAction.ACK
        assert opts.on_failure is AckAction.NOOP
        assert opts.config.base_url == "https://api.security.microsoft.com"

    def test_missing_config_is_fatal(self):
        with pytest.raises(ConfigurationError, match="invalid configuration given to pipeline"):
            PipelineOptions.from_mapping({})

    @pytest.mark.parametrize("missing", ["tenant_id", "client_id", "client_secret"])
    def test_missing_credential_names_the_key(self, missing):
        config = {k: v for k, v in CLIENT_CONFIG.items() if k != missing}
        with pytest.raises(ConfigurationError) as excinfo:
            PipelineOptions.from_mapping({"pipeline_id": "p", "config": config})
        assert missing in str(excinfo.value)
        assert "'p'" in str(excinfo.value)

    def test_empty_credential_is_rejected(self):
        with pytest.raises(ConfigurationError):
            PipelineOptions.from_mapping({"config": {**CLIENT_CONFIG, "tenant_id": ""}})

    def test_malformed_from_timestamp_is_fatal(self):
        with pytest.raises(ConfigurationError, match="from_timestamp"):
            PipelineOptions.from_mapping({"from_timestamp": "last tuesday", "config": CLIENT_CONFIG})

    def test_from_timestamp_accepts_iso_and_normalizes_to_utc(self):
        opts = PipelineOptions.from_mapping(
            {"from_timestamp": "2024-03-01T14:00:00+02:00", "config": CLIENT_CONFIG}
        )
        assert opts.from_timestamp == datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

    def test_naive_from_timestamp_is_utc(self):
        opts = PipelineOptions.from_mapping({"from_timestamp": datetime(2024, 3, 1, 12), "config": CLIENT_CONFIG})
        assert opts.from_timestamp.tzinfo is timezone.utc

    def test_negative_interval_is_rejected(self):
        with pytest.raises(ConfigurationError, match="receive_interval"):
            PipelineOptions.from_mapping({"receive_interval": -1, "config": CLIENT_CONFIG})

    def test_unknown_ack_action_is_rejected(self):
        with pytest.raises(ConfigurationError, match="on_success"):
            PipelineOptions.from_mapping({"on_success": "maybe", "config": CLIENT_CONFIG})

    def test_unknown_option_is_rejected(self):
        with pytest.raises(ConfigurationError):
            PipelineOptions.from_mapping({"recieve_interval": 10, "config": CLIENT_CONFIG})

    def test_secret_not_in_repr(self):
        opts = PipelineOptions.from_mapping({"config": CLIENT_CONFIG})
        assert "this-is-my-client-secret" not in repr(opts)


class TestSettings:
    def test_pipeline_options_from_settings(self):
        s = Settings(
            DEFENDER_TENANT_ID="t",
            DEFENDER_CLIENT_ID="c",
            DEFENDER_CLIENT_SECRET="s",
            RECEIVE_INTERVAL_MS=2000,
            PIPELINE_ID="from-env",
        )
        opts = s.pipeline_options(on_failure="ack")
        assert opts.pipeline_id == "from-env"
        assert opts.receive_interval == 2000
        assert opts.on_failure is AckAction.ACK
        assert opts.config.tenant_id == "t"

    def test_settings_without_credentials_fail_validation(self):
        s = Settings(DEFENDER_TENANT_ID=None, DEFENDER_CLIENT_ID=None, DEFENDER_CLIENT_SECRET=None)
        with pytest.raises(ConfigurationError):
            s.pipeline_options()

    def test_production_clamps_debug_logging(self):
        assert Settings(ENV="prod", LOG_LEVEL="DEBUG").effective_log_level == "INFO"
        assert Settings(ENV="dev", LOG_LEVEL="DEBUG").effective_log_level == "DEBUG"
