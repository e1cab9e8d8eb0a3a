"""
Unit tests for the Signal K delta output.
"""

import pytest
from datetime import datetime, timezone

from conftest import START_MS, FakeClock, make_tide_series


def values_by_path(values):
    return {v.path: v.value for v in values}


class TestPhaseValues:
    """Values published with a phase report."""

    def test_bootstrap_report_only_has_phase(self):
        from tide_watch.analysis.phase_analyzer import TideAnalyzer
        from tide_watch.interfaces.tide_report import PhaseReport, TidePhase
        from tide_watch.output.delta_writer import build_phase_values

        report = PhaseReport(timer=START_MS, phase=TidePhase.EBB)
        values = build_phase_values(report, TideAnalyzer(clock=FakeClock()))

        assert values_by_path(values) == {'environment.tide.phaseNow': 'ebb'}

    def test_full_report(self):
        from tide_watch.analysis.phase_analyzer import TideAnalyzer
        from tide_watch.output.delta_writer import build_phase_values

        series = make_tide_series(hours=48)
        clock = FakeClock(series[-1].timer)
        analyzer = TideAnalyzer(clock=clock)
        for sample in series:
            analyzer.include_data(sample, is_live=False)

        report = analyzer.last_phase_report
        values = values_by_path(build_phase_values(report, analyzer))

        assert values['environment.tide.phaseNow'] == report.phase.value
        assert values['environment.tide.heightLow'] == report.lowest_known.depth
        assert values['environment.tide.heightHigh'] == report.highest_known.depth
        assert 'environment.tide.heightNow' in values

        for key in ('environment.tide.timeLow', 'environment.tide.timeHigh'):
            assert values[key].endswith('Z')
            when = datetime.fromisoformat(values[key].replace('Z', '+00:00'))
            assert when.timestamp() * 1000 > clock.now

    def test_height_values(self):
        from tide_watch.analysis.phase_analyzer import TideAnalyzer
        from tide_watch.output.delta_writer import build_height_values

        analyzer = TideAnalyzer(clock=FakeClock())
        assert build_height_values(analyzer, START_MS) == []

        for sample in make_tide_series(hours=48):
            analyzer.include_data(sample, is_live=False)
        values = values_by_path(build_height_values(analyzer, analyzer.last_reading))
        assert values['environment.tide.phaseNow'] in ('ebb', 'flood')
        assert 0.0 <= values['environment.tide.heightNow'] <= 2.01

    def test_iso_format(self):
        from tide_watch.output.delta_writer import _iso

        dt = datetime(2024, 1, 2, 3, 4, 5, 678000, tzinfo=timezone.utc)
        assert _iso(dt) == '2024-01-02T03:04:05.678Z'


class TestDeltaWriter:
    """Delta file output."""

    def test_write_and_read(self, tmp_path):
        from tide_watch.interfaces.tide_report import PathValue
        from tide_watch.output.delta_writer import DeltaWriter

        writer = DeltaWriter(str(tmp_path / 'out' / 'delta.json'))
        assert writer.send([PathValue('environment.tide.phaseNow', 'flood')])

        delta = writer.read()
        update = delta['updates'][0]
        assert update['source'] == {'label': 'tide-watch'}
        assert update['timestamp'].endswith('Z')
        assert update['values'] == [{'path': 'environment.tide.phaseNow', 'value': 'flood'}]
        assert writer.write_count == 1

    def test_empty_values_not_sent(self, tmp_path):
        from tide_watch.output.delta_writer import DeltaWriter

        writer = DeltaWriter(str(tmp_path / 'delta.json'))
        assert writer.send([]) is False
        assert writer.read() is None
        assert writer.write_count == 0

    def test_log_only(self):
        from tide_watch.interfaces.tide_report import PathValue
        from tide_watch.output.delta_writer import DeltaWriter

        writer = DeltaWriter()
        assert writer.send([PathValue('environment.tide.heightNow', 1.2)])
        assert writer.last_delta.values[0].value == 1.2
        assert writer.read() is None

    def test_no_temp_files_left(self, tmp_path):
        from tide_watch.interfaces.tide_report import PathValue
        from tide_watch.output.delta_writer import DeltaWriter

        writer = DeltaWriter(str(tmp_path / 'delta.json'))
        for i in range(3):
            writer.send([PathValue('environment.tide.heightNow', float(i))])
        assert [p.name for p in tmp_path.iterdir()] == ['delta.json']
