import unittest
from datetime import date, datetime, timedelta, timezone

from cardmarket.timestamps import isoformat, parse_instant, to_instant


class ParseInstantTestCase(unittest.TestCase):
    expected = datetime(2026, 3, 1, 12, 0, 0)

    def test_supported_representations(self):
        class StoreTimestamp:
            def to_date(self):
                return datetime(2026, 3, 1, 13, 0, 0, tzinfo=timezone(timedelta(hours=1)))

        values = [
            self.expected,
            datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc),
            StoreTimestamp(),
            {"seconds": 1772366400, "nanoseconds": 0},
            {"_seconds": 1772366400},
            "2026-03-01T12:00:00Z",
            "2026-03-01T14:00:00+02:00",
            1772366400000,
            "1772366400000",
        ]
        for value in values:
            with self.subTest(value=value):
                self.assertEqual(parse_instant(value), self.expected)

    def test_date_is_midnight(self):
        self.assertEqual(parse_instant(date(2026, 3, 1)), datetime(2026, 3, 1))

    def test_unparseable(self):
        for value in (None, "", "not a date", True, float("nan"), {"seconds": "x"}, object()):
            with self.subTest(value=value):
                self.assertIsNone(parse_instant(value))

    def test_to_instant_falls_back_with_warning(self):
        fallback = datetime(2026, 1, 1)
        with self.assertLogs("cardmarket.timestamps", level="WARNING"):
            self.assertEqual(to_instant("garbage", fallback=fallback), fallback)
        self.assertEqual(to_instant("2026-03-01T12:00:00Z"), self.expected)


class IsoformatTestCase(unittest.TestCase):
    def test_millisecond_precision(self):
        self.assertEqual(isoformat(datetime(2026, 3, 1, 12, 0, 0, 123456)), "2026-03-01T12:00:00.123000Z")
        self.assertEqual(isoformat(datetime(2026, 3, 1, 12, 0, 0)), "2026-03-01T12:00:00Z")
        self.assertIsNone(isoformat(None))


if __name__ == "__main__":
    unittest.main()
