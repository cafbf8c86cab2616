import pytest

from capprobe.common.streams import StreamProfile
from capprobe.core.config import ProbeOptions
from capprobe.core.logging_utils import METRICS
from capprobe.engine.experiment import DEGENERATE_DATA, AttemptOutcome, Experiment

PROFILE = StreamProfile.from_uri(
    "videotestsrc pattern=ball ! video/x-raw,width=640,height=480,framerate=25/1 ! x264enc bitrate=1024 ! fakesink"
)


def _finish(experiment, count, *, fps=25.0, cpu=50.0):
    attempt = experiment.new_attempt()
    attempt.cam_id = count
    attempt.fps = fps
    attempt.add_cpu(cpu)
    return attempt


class TestExperiment:

    def test_aggregates_over_attempts(self, options):
        experiment = Experiment(options, PROFILE)
        for count in [10, 12, 11]:
            _finish(experiment, count)
        assert experiment.cams == 11
        assert experiment.cams_dispersion == pytest.approx(0.8165, abs=1e-4)
        assert experiment.cpu == pytest.approx(50.0)
        assert experiment.fps == pytest.approx(25.0)
        assert experiment.score == pytest.approx(640 * 480 * 11 * 25 / (2 ** 20 * 50))

    def test_score_is_zero_without_cpu(self, options):
        experiment = Experiment(options, PROFILE)
        attempt = experiment.new_attempt()
        attempt.cam_id = 4
        attempt.fps = 25.0
        assert experiment.cpu == -1.0
        assert experiment.score == 0.0

    def test_new_attempt_is_seeded_with_previous_count(self, options):
        experiment = Experiment(options, PROFILE)
        first = experiment.new_attempt()
        assert not first.ignore_cpu
        assert first.cam_history == [0]
        first.cam_id = 6
        second = experiment.new_attempt()
        assert second.ignore_cpu
        assert second.cam_history == [6]

    @pytest.mark.parametrize("count,expected", [(6, 4), (10, 8), (1, 1), (0, 1)])
    def test_drop_count(self, options, count, expected):
        experiment = Experiment(options, PROFILE)
        experiment.new_attempt().cam_id = count
        assert experiment.drop_count() == expected
        assert experiment.start_count == expected

    def test_valid_attempts_until_complete(self, options):
        experiment = Experiment(options, PROFILE)
        outcomes = []
        for count in [6, 6, 7]:
            _finish(experiment, count)
            outcomes.append(experiment.conclude())
        assert outcomes == [AttemptOutcome.NEXT, AttemptOutcome.NEXT, AttemptOutcome.COMPLETE]
        assert not experiment.is_pending
        assert experiment.start_count == 5

    def test_failures_are_invalidated_and_retried(self, options):
        experiment = Experiment(options, PROFILE)
        _finish(experiment, 6)
        assert experiment.conclude() == AttemptOutcome.NEXT
        _finish(experiment, 3)
        assert experiment.conclude("Statistics timeout") == AttemptOutcome.RETRY
        assert len(experiment.attempts) == 1
        assert experiment.retries == 1
        assert experiment.last_error == "Statistics timeout"
        assert experiment.is_pending
        assert METRICS.snapshot()["attempt_invalid"] == 1

    def test_profile_is_skipped_after_too_many_failures(self):
        experiment = Experiment(ProbeOptions(max_retries=1), PROFILE)
        _finish(experiment, 2)
        assert experiment.conclude("Stream failure") == AttemptOutcome.RETRY
        _finish(experiment, 2)
        assert experiment.conclude("Stream failure") == AttemptOutcome.SKIPPED
        assert experiment.failed
        assert not experiment.is_pending
        assert experiment.to_row().failed

    def test_single_unit_without_output_is_degenerate(self, options):
        experiment = Experiment(options, PROFILE)
        _finish(experiment, 1)
        assert experiment.conclude() == AttemptOutcome.RETRY
        assert experiment.last_error == DEGENERATE_DATA
        assert experiment.attempts == []

    def test_conclude_without_attempt(self, options):
        with pytest.raises(RuntimeError):
            Experiment(options, PROFILE).conclude()

    def test_to_row(self, options):
        experiment = Experiment(options, PROFILE)
        experiment.start = "2024-01-01 00:00:00"
        experiment.elapsed = "00:10:00"
        _finish(experiment, 6, cpu=60.0)
        row = experiment.to_row()
        assert row.vendor == "GStreamer"
        assert row.codec == "x264"
        assert (row.width, row.height, row.framerate) == (640, 480, 25.0)
        assert row.max_units == 6
        assert row.dispersion == 0.0
        assert row.cpu == pytest.approx(60.0)
        assert row.start == "2024-01-01 00:00:00"
        assert not row.failed
