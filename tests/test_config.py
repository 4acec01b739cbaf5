import pytest

from analytics_config import AnalyticsConfig
from analytics_errors import InvalidInputError


class TestAnalyticsConfig:

    def test_defaults(self):
        config = AnalyticsConfig()

        assert config.log_level == 'INFO'
        assert config.significance_level == 0.05
        assert config.credible_interval_z == 1.96
        assert config.base_price == 50.0
        assert config.default_response_rate == 0.20

    def test_log_level_is_normalised(self):
        assert AnalyticsConfig(log_level='debug').log_level == 'DEBUG'

    @pytest.mark.parametrize("overrides", [
        {'log_level': 'chatty'},
        {'significance_level': 1.5},
        {'credible_interval_z': 0},
        {'min_cluster_size': 0},
        {'max_personas': 0},
        {'base_price': -1},
        {'cost_per_response': -0.5},
        {'default_response_rate': 0},
    ])
    def test_invalid_values(self, overrides):
        with pytest.raises(ValueError):
            AnalyticsConfig(**overrides)

    def test_from_dict_ignores_unknown_keys(self):
        config = AnalyticsConfig.from_dict({'base_price': '80', 'unrelated': True, 'min_cluster_size': None})
        assert config.base_price == 80.0
        assert config.min_cluster_size == 5

    def test_from_dict_rejects_bad_numbers(self):
        with pytest.raises(InvalidInputError):
            AnalyticsConfig.from_dict({'max_personas': 'several'})

    def test_from_env(self):
        environ = {
            'SURVEY_ANALYTICS_LOG_JSON': 'true',
            'SURVEY_ANALYTICS_MAX_PERSONAS': '3',
            'SURVEY_ANALYTICS_SIGNIFICANCE_LEVEL': '0.01',
            'OTHER_BASE_PRICE': '999',
        }
        config = AnalyticsConfig.from_env(environ=environ)

        assert config.log_json is True
        assert config.max_personas == 3
        assert config.significance_level == 0.01
        assert config.base_price == 50.0

    def test_from_yaml_with_substitution(self, tmp_path):
        path = tmp_path / 'analytics.yaml'
        path.write_text(
            'analytics:\n'
            '  log_level: ${LOG_LEVEL:warning}\n'
            '  base_price: ${BASE_PRICE}\n'
            '  cost_per_response: 2.5\n'
        )
        config = AnalyticsConfig.from_yaml(path, environ={'BASE_PRICE': '120'})

        assert config.log_level == 'WARNING'
        assert config.base_price == 120.0
        assert config.cost_per_response == 2.5

    def test_from_yaml_top_level_settings(self, tmp_path):
        path = tmp_path / 'analytics.yaml'
        path.write_text('min_cluster_size: 3\n')
        assert AnalyticsConfig.from_yaml(path, environ={}).min_cluster_size == 3

    def test_from_yaml_missing_variable(self, tmp_path):
        path = tmp_path / 'analytics.yaml'
        path.write_text('base_price: ${BASE_PRICE}\n')
        with pytest.raises(InvalidInputError):
            AnalyticsConfig.from_yaml(path, environ={})

    def test_from_yaml_rejects_non_mapping(self, tmp_path):
        path = tmp_path / 'analytics.yaml'
        path.write_text('- just\n- a list\n')
        with pytest.raises(InvalidInputError):
            AnalyticsConfig.from_yaml(path, environ={})

    def test_empty_yaml_gives_defaults(self, tmp_path):
        path = tmp_path / 'analytics.yaml'
        path.write_text('')
        assert AnalyticsConfig.from_yaml(path, environ={}) == AnalyticsConfig()

    def test_to_dict(self):
        assert AnalyticsConfig().to_dict()['positive_response_threshold'] == 4.0
