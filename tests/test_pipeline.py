"""Tests for the fetch-and-alert pipeline."""

import threading
from unittest.mock import MagicMock, Mock, patch

import pytest

from conftest import make_reading
from weather_alerts.errors import CycleInProgressError, PersistenceError, TransportError
from weather_alerts.mailer import EmailClient
from weather_alerts.models import Preference
from weather_alerts.pipeline import AlertPipeline, evaluate_preferences


class TestEvaluatePreferences:
    def test_below_minimum_is_temperature_alert(self):
        matches = evaluate_preferences(make_reading(temperature=5.0),
                                       Preference(user_id="u", min_temp=10))

        assert [m.alert_type for m in matches] == ["temperature"]
        assert "Low temperature" in matches[0].message

    def test_above_maximum_is_temperature_alert(self):
        matches = evaluate_preferences(make_reading(temperature=35.0),
                                       Preference(user_id="u", max_temp=30))

        assert [m.alert_type for m in matches] == ["temperature"]
        assert "High temperature" in matches[0].message

    def test_within_range_without_flags_ignores_description(self):
        reading = make_reading(temperature=20.0, conditions="Clouds",
                               description="rain expected later")
        preference = Preference(user_id="u", min_temp=10, max_temp=30)

        assert evaluate_preferences(reading, preference) == []

    def test_condition_needs_opt_in(self):
        reading = make_reading(conditions="Rain")
        assert evaluate_preferences(reading, Preference(user_id="u")) == []

    @pytest.mark.parametrize("conditions,flag,alert_type", [
        ("Rain", "alert_on_rain", "rain"),
        ("Drizzle", "alert_on_rain", "rain"),
        ("Snow", "alert_on_snow", "snow"),
        ("Thunderstorm", "alert_on_storm", "storm"),
    ])
    def test_condition_alerts(self, conditions, flag, alert_type):
        preference = Preference(user_id="u", **{flag: True})
        matches = evaluate_preferences(make_reading(conditions=conditions), preference)

        assert [m.alert_type for m in matches] == [alert_type]

    def test_multiple_matches_in_one_reading(self):
        reading = make_reading(temperature=-3.0, conditions="Snow")
        preference = Preference(user_id="u", min_temp=0, alert_on_snow=True, alert_on_rain=True)

        assert [m.alert_type for m in evaluate_preferences(reading, preference)] == [
            "temperature", "snow"
        ]


class TestRunCycle:
    def test_cold_reading_sends_one_alert_and_logs_it(self, database, weather_client,
                                                      email_client, pipeline):
        user = database.create_user("bob@example.com", "Oslo", "NO")
        database.upsert_preferences(user.id, 10, None, False, False, False)
        weather_client.fetch.side_effect = None
        weather_client.fetch.return_value = make_reading(city="Oslo", country="NO",
                                                         temperature=5.0)

        result = pipeline.run_cycle()

        assert result.cities_processed == 1
        assert result.readings_stored == 1
        assert result.alerts_sent == 1
        assert result.errors == {}
        email_client.send.assert_called_once()
        assert email_client.send.call_args[0][0] == "bob@example.com"
        alerts = database.get_user_alerts(user.id, 10)
        assert [a.alert_type for a in alerts] == ["temperature"]

    def test_mild_reading_sends_nothing_but_stores_reading(self, database, weather_client,
                                                           email_client, pipeline):
        user = database.create_user("bob@example.com", "London", "GB")
        database.upsert_preferences(user.id, 10, 30, False, False, False)
        weather_client.fetch.side_effect = None
        weather_client.fetch.return_value = make_reading(
            temperature=20.0, conditions="Clouds", description="chance of rain"
        )

        result = pipeline.run_cycle()

        assert result.alerts_sent == 0
        assert result.readings_stored == 1
        email_client.send.assert_not_called()
        assert database.get_all_alerts(10) == []
        assert database.get_latest_reading("London") is not None

    def test_each_city_fetched_once(self, database, weather_client, pipeline):
        database.create_user("a@example.com", "London", "GB")
        database.create_user("b@example.com", "London", "GB")
        database.create_user("c@example.com", "Paris", "FR")

        result = pipeline.run_cycle()

        assert result.cities_processed == 2
        assert weather_client.fetch.call_count == 2

    def test_provider_failure_does_not_stop_other_cities(self, database, email_client,
                                                         failing_city_client):
        pipeline = AlertPipeline(database, failing_city_client, email_client)
        paris = database.create_user("p@example.com", "Paris", "FR")
        london = database.create_user("l@example.com", "London", "GB")
        for user in (paris, london):
            database.upsert_preferences(user.id, 10, None, False, False, False)

        result = pipeline.run_cycle()

        assert result.cities_processed == 2
        assert result.readings_stored == 1
        assert result.alerts_sent == 1
        assert list(result.errors) == ["Paris,FR"]
        assert database.get_latest_reading("London") is not None
        assert database.get_latest_reading("Paris") is None
        assert len(database.get_user_alerts(london.id, 10)) == 1
        assert database.get_user_alerts(paris.id, 10) == []

    def test_send_failure_skips_log_and_continues(self, database, weather_client,
                                                  email_client, pipeline):
        first = database.create_user("a@example.com", "London", "GB")
        second = database.create_user("b@example.com", "London", "GB")
        for user in (first, second):
            database.upsert_preferences(user.id, 30, None, False, False, False)
        email_client.send.side_effect = [TransportError("auth failed"), None]

        result = pipeline.run_cycle()

        assert result.alerts_failed == 1
        assert result.alerts_sent == 1
        assert database.get_user_alerts(first.id, 10) == []
        assert len(database.get_user_alerts(second.id, 10)) == 1

    def test_missing_preferences_fall_back_to_defaults(self, weather_client, email_client):
        database = Mock()
        database.get_user_cities.return_value = [Mock(city="London", country="GB",
                                                      label="London,GB")]
        database.get_users_in_city.return_value = [Mock(id="u1", email="a@example.com")]
        database.get_preferences.return_value = None
        pipeline = AlertPipeline(database, weather_client, email_client)

        result = pipeline.run_cycle()

        assert result.alerts_sent == 0
        assert result.errors == {}

    def test_store_failure_skips_alerts_for_city(self, weather_client, email_client):
        database = Mock()
        database.get_user_cities.return_value = [Mock(city="London", country="GB",
                                                      label="London,GB")]
        database.insert_reading.side_effect = PersistenceError("disk full")
        pipeline = AlertPipeline(database, weather_client, email_client)

        result = pipeline.run_cycle()

        assert result.errors == {"London,GB": "disk full"}
        assert result.readings_stored == 0
        email_client.send.assert_not_called()

    def test_unsendable_city_does_not_abort_cycle(self, database, weather_client):
        # Stored directly: the API now rejects control characters in city names
        broken = database.create_user("a@example.com", "Aa\nrhus", "DK")
        zurich = database.create_user("z@example.com", "Zurich", "CH")
        for user in (broken, zurich):
            database.upsert_preferences(user.id, 30, None, False, False, False)
        email_client = EmailClient("smtp.test", 587, "alerts@example.com", "secret")
        pipeline = AlertPipeline(database, weather_client, email_client)

        with patch("weather_alerts.mailer.smtplib.SMTP") as smtp_cls:
            smtp_cls.return_value.__enter__.return_value = MagicMock()
            result = pipeline.run_cycle()

        assert result.cities_processed == 2
        assert result.readings_stored == 2
        assert result.alerts_failed == 1
        assert result.alerts_sent == 1
        assert database.get_latest_reading("Zurich") is not None
        assert [a.alert_type for a in database.get_user_alerts(zurich.id, 10)] == ["temperature"]
        assert database.get_user_alerts(broken.id, 10) == []

    def test_no_users_is_an_empty_cycle(self, pipeline, weather_client):
        result = pipeline.run_cycle()

        assert result.cities_processed == 0
        assert result.finished_at is not None
        weather_client.fetch.assert_not_called()

    def test_overlapping_cycle_is_refused(self, database, weather_client, email_client):
        database.create_user("a@example.com", "London", "GB")
        entered = threading.Event()
        release = threading.Event()

        def slow_fetch(city, country):
            entered.set()
            release.wait(timeout=5)
            return make_reading(city=city, country=country)

        weather_client.fetch.side_effect = slow_fetch
        pipeline = AlertPipeline(database, weather_client, email_client)

        worker = threading.Thread(target=pipeline.run_cycle)
        worker.start()
        try:
            assert entered.wait(timeout=5)
            assert pipeline.is_running
            with pytest.raises(CycleInProgressError):
                pipeline.run_cycle()
        finally:
            release.set()
            worker.join(timeout=5)

        assert not pipeline.is_running
        assert pipeline.last_result.readings_stored == 1
