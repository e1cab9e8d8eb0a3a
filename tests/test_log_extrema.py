"""
Tests for offline extrema extraction over a depth series.
"""

import pytest

from conftest import START_MS, MINUTE_MS, make_tide_series


PERIOD_MS = 44_700_000


@pytest.fixture
def three_days():
    return make_tide_series(hours=72)


class TestFindLogExtrema:
    """Tests for find_log_extrema."""

    def test_finds_every_interior_extreme(self, three_days):
        from tide_watch.analysis.log_extrema import find_log_extrema

        extrema = find_log_extrema(three_days)
        assert len(extrema.highs) == 5
        assert len(extrema.lows) == 6

    def test_extrema_on_true_tide(self, three_days):
        from tide_watch.analysis.log_extrema import find_log_extrema

        extrema = find_log_extrema(three_days)
        for n, high in enumerate(extrema.highs, start=1):
            assert abs(high.timer - (START_MS + n * PERIOD_MS)) <= 5 * MINUTE_MS
            assert high.depth == pytest.approx(6.0, abs=1e-3)
        for n, low in enumerate(extrema.lows):
            assert abs(low.timer - (START_MS + (n + 0.5) * PERIOD_MS)) <= 5 * MINUTE_MS
            assert low.depth == pytest.approx(4.0, abs=1e-3)

    def test_too_few_samples(self, three_days):
        from tide_watch.analysis.log_extrema import find_log_extrema

        with pytest.raises(ValueError):
            find_log_extrema(three_days[:2])

    def test_to_dict(self, three_days):
        from tide_watch.analysis.log_extrema import find_log_extrema

        result = find_log_extrema(three_days).to_dict()
        assert set(result) == {'highs', 'lows'}
        assert 'timer' in result['highs'][0]
        assert 'position' in result['lows'][0]


class TestCompareWithKnown:
    """Agreement between the online analyzer and the offline extrema."""

    def test_nearest_extreme(self):
        from tide_watch.analysis.log_extrema import nearest_extreme
        from tide_watch.interfaces.tide_report import ExtremeRecord

        candidates = [ExtremeRecord(depth=6.0, timer=t) for t in (100.0, 200.0, 300.0)]
        assert nearest_extreme(candidates, 240.0).timer == 200.0
        assert nearest_extreme([], 240.0) is None

    def test_analyzer_agrees_with_log(self, three_days):
        from tide_watch.analysis.log_extrema import compare_with_known, find_log_extrema
        from tide_watch.analysis.phase_analyzer import TideAnalyzer

        analyzer = TideAnalyzer()
        for sample in three_days:
            analyzer.include_data(sample, is_live=False)

        offsets = compare_with_known(
            find_log_extrema(three_days), analyzer.highest_known, analyzer.lowest_known
        )
        assert set(offsets) == {'high', 'low'}
        for entry in offsets.values():
            assert abs(entry['time_offset_minutes']) <= 5
            assert abs(entry['depth_offset']) <= 1e-3

    def test_missing_known_extremes(self, three_days):
        from tide_watch.analysis.log_extrema import compare_with_known, find_log_extrema

        assert compare_with_known(find_log_extrema(three_days), None, None) == {}
