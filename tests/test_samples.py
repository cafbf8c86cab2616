import pytest

from capprobe.core.samples import UNSET, SampleWindow


class TestSampleWindow:

    def test_unregistered_ids_are_ignored(self):
        window = SampleWindow(3)
        window.add(7, 10.0)
        assert window.get(7) == []
        assert not window.has(7)
        assert 7 not in window

    def test_get_returns_at_most_length_samples_oldest_first(self):
        window = SampleWindow(3)
        window.init(1)
        for value in [1.0, 2.0, 3.0, 4.0, 5.0, 6.0, 7.0]:
            window.add(1, value)
            got = window.get(1)
            assert len(got) <= 3
        assert window.get(1) == [5.0, 6.0, 7.0]

    def test_get_never_returns_samples_older_than_last_writes(self):
        window = SampleWindow(4)
        window.init(1)
        written = []
        for i in range(1, 20):
            window.add(1, float(i))
            written.append(float(i))
            assert set(window.get(1)) <= set(written[-4:])

    def test_complete_after_length_plus_one_writes(self):
        window = SampleWindow(3)
        window.init(1)
        window.init(2)
        for _ in range(4):
            window.add(1, 25.0)
        assert not window.is_complete
        for i in range(3):
            window.add(2, 25.0)
            assert not window.is_complete
        window.add(2, 25.0)
        assert window.is_complete

    def test_empty_window_is_not_complete(self):
        assert not SampleWindow(3).is_complete

    def test_all_excludes_newest_sample_of_each_id(self):
        window = SampleWindow(3)
        window.init(1)
        window.init(2)
        for value in [10.0, 11.0, 99.0]:
            window.add(1, value)
        for value in [20.0, 77.0]:
            window.add(2, value)
        collected = window.all
        assert 99.0 not in collected
        assert 77.0 not in collected
        assert sorted(collected) == [10.0, 11.0, 20.0]

    def test_all_excludes_newest_after_wraparound(self):
        window = SampleWindow(2)
        window.init(1)
        for value in [1.0, 2.0, 3.0, 4.0, 5.0]:
            window.add(1, value)
        assert 5.0 not in window.all
        assert sorted(window.all) == [3.0, 4.0]

    def test_reset_is_idempotent_and_keeps_ids(self):
        window = SampleWindow(3)
        window.init(1)
        window.extend(1, [1.0, 2.0, 3.0, 4.0])
        window.reset()
        once = (window.ids, window.get(1), window.all)
        window.reset()
        assert (window.ids, window.get(1), window.all) == once
        assert window.ids == [1]
        assert window.get(1) == []
        assert not window.is_complete

    def test_reset_restarts_completeness_count(self):
        window = SampleWindow(2)
        window.init(1)
        window.extend(1, [1.0, 1.0, 1.0])
        assert window.is_complete
        window.reset()
        window.extend(1, [1.0, 1.0])
        assert not window.is_complete
        window.add(1, 1.0)
        assert window.is_complete

    def test_delete_forgets_id(self):
        window = SampleWindow(2)
        window.init(3)
        window.add(3, 5.0)
        window.delete(3)
        window.add(3, 6.0)
        assert 3 not in window
        assert window.get(3) == []

    def test_non_positive_values_read_back_as_gaps(self):
        window = SampleWindow(3)
        window.init(1)
        window.extend(1, [25.0, 0.0, float("nan"), 24.0])
        # four slots; the first write is outside the last three
        assert window.get(1) == [24.0]
        assert window.newest(1) == 24.0
        assert UNSET == 0.0

    def test_median_is_memoised_and_invalidated_on_add(self):
        window = SampleWindow(4)
        window.init(1)
        window.extend(1, [10.0, 20.0, 30.0])
        assert window.median == pytest.approx(15.0)
        window.add(1, 40.0)
        assert window.median == pytest.approx(20.0)

    def test_empty_aggregates_use_sentinel(self):
        window = SampleWindow(3)
        assert window.median == -1.0
        assert window.mad == -1.0
