import datetime as dt
import unittest

from pydantic import ValidationError

from airwatch.domain import (
    AqiCategory,
    ForecastDay,
    ForecastRecord,
    Pollutant,
    PollutantValues,
    Snapshot,
    categorize,
    category_info,
    dominant_pollutant,
    ensure_utc,
)


class TestAqiCategories(unittest.TestCase):
    def test_boundaries(self):
        cases = [
            (0, AqiCategory.GOOD),
            (50, AqiCategory.GOOD),
            (51, AqiCategory.MODERATE),
            (100, AqiCategory.MODERATE),
            (101, AqiCategory.UNHEALTHY_FOR_SENSITIVE_GROUPS),
            (150, AqiCategory.UNHEALTHY_FOR_SENSITIVE_GROUPS),
            (151, AqiCategory.UNHEALTHY),
            (200, AqiCategory.UNHEALTHY),
            (201, AqiCategory.VERY_UNHEALTHY),
            (300, AqiCategory.VERY_UNHEALTHY),
            (301, AqiCategory.HAZARDOUS),
            (999, AqiCategory.HAZARDOUS),
        ]
        for aqi, expected in cases:
            with self.subTest(aqi=aqi):
                self.assertEqual(categorize(aqi), expected)

    def test_category_info_carries_color_and_message(self):
        info = category_info(85)
        self.assertEqual(info.color, "#FFFF00")
        self.assertTrue(info.health_message)

    def test_negative_aqi_rejected(self):
        with self.assertRaises(ValueError):
            categorize(-1)


class TestDominantPollutant(unittest.TestCase):
    def test_provider_code_wins(self):
        values = PollutantValues(pm25=10, pm10=80)
        self.assertEqual(dominant_pollutant("pm25", values), Pollutant.PM25)
        self.assertEqual(dominant_pollutant(" O3 ", values), Pollutant.O3)

    def test_falls_back_to_highest_value(self):
        values = PollutantValues(pm25=10, no2=30, co=5)
        self.assertEqual(dominant_pollutant(None, values), Pollutant.NO2)
        self.assertEqual(dominant_pollutant("xyz", values), Pollutant.NO2)

    def test_ties_follow_table_order(self):
        values = PollutantValues(o3=40, pm10=40)
        self.assertEqual(dominant_pollutant(None, values), Pollutant.PM10)

    def test_nothing_reported_is_unknown(self):
        self.assertEqual(dominant_pollutant(None, PollutantValues()), Pollutant.UNKNOWN)


class TestRecords(unittest.TestCase):
    def test_naive_and_offset_timestamps_normalized_to_utc(self):
        naive = dt.datetime(2024, 1, 15, 12, 0)
        self.assertEqual(ensure_utc(naive).tzinfo, dt.timezone.utc)
        offset = dt.datetime(2024, 1, 15, 13, 0, tzinfo=dt.timezone(dt.timedelta(hours=1)))
        snap = Snapshot(
            location_id="sarajevo",
            station="@10557",
            timestamp=offset,
            aqi=85,
            category=AqiCategory.MODERATE,
        )
        self.assertEqual(snap.timestamp, dt.datetime(2024, 1, 15, 12, 0, tzinfo=dt.timezone.utc))
        self.assertEqual(snap.key, ("sarajevo", snap.timestamp))

    def test_snapshot_rejects_negative_aqi(self):
        with self.assertRaises(ValidationError):
            Snapshot(
                location_id="sarajevo",
                station="@10557",
                timestamp=dt.datetime(2024, 1, 15, tzinfo=dt.timezone.utc),
                aqi=-5,
                category=AqiCategory.GOOD,
            )

    def test_forecast_days_must_be_ordered(self):
        day1 = ForecastDay(date=dt.date(2024, 1, 16), aqi=40, category=AqiCategory.GOOD)
        day2 = ForecastDay(date=dt.date(2024, 1, 15), aqi=60, category=AqiCategory.MODERATE)
        with self.assertRaises(ValidationError):
            ForecastRecord(location_id="tuzla", as_of=dt.datetime(2024, 1, 15), days=[day1, day2])

    def test_forecast_rejects_days_before_as_of(self):
        as_of = dt.datetime(2024, 1, 15, 23, 0, tzinfo=dt.timezone.utc)
        stale = ForecastDay(date=dt.date(2024, 1, 13), aqi=40, category=AqiCategory.GOOD)
        with self.assertRaises(ValidationError):
            ForecastRecord(location_id="tuzla", as_of=as_of, days=[stale])

        # local date may trail the UTC as-of by a day
        yesterday = ForecastDay(date=dt.date(2024, 1, 14), aqi=40, category=AqiCategory.GOOD)
        record = ForecastRecord(location_id="tuzla", as_of=as_of, days=[yesterday])
        self.assertEqual(record.days[0].date, dt.date(2024, 1, 14))


if __name__ == "__main__":
    unittest.main()
