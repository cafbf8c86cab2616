from capprobe.engine.sequencer import StepSequencer
from capprobe.engine.state import StepAction, StepTask


def _tasks(*ids):
    return [StepTask(StepAction.ADD, i) for i in ids]


class _Recorder:
    def __init__(self):
        self.executed = []
        self.settled = 0

    def execute(self, task):
        self.executed.append(task.unit_id)

    def on_settled(self):
        self.settled += 1


def test_fire_mode_runs_everything_and_settles_once():
    rec = _Recorder()
    seq = StepSequencer(rec.execute, rec.on_settled)
    seq.load(_tasks(1, 2, 3))
    assert rec.executed == [1, 2, 3]
    assert rec.settled == 1
    assert not seq.active


def test_confirm_mode_runs_one_task_per_advance():
    rec = _Recorder()
    seq = StepSequencer(rec.execute, rec.on_settled, confirm_driven=True)
    gen = seq.load(_tasks(4, 5))
    assert rec.executed == [4]
    assert seq.last_executed == StepTask(StepAction.ADD, 4)
    assert seq.remaining == [StepTask(StepAction.ADD, 5)]
    assert seq.advance(gen)
    assert rec.executed == [4, 5]
    assert rec.settled == 0
    assert seq.advance(gen)
    assert rec.settled == 1
    assert not seq.active


def test_stale_generation_is_ignored():
    rec = _Recorder()
    seq = StepSequencer(rec.execute, rec.on_settled, confirm_driven=True)
    old = seq.load(_tasks(1, 2))
    seq.load(_tasks(7, 8))
    assert not seq.advance(old)
    assert rec.executed == [1, 7]


def test_cancel_drops_without_settling():
    rec = _Recorder()
    seq = StepSequencer(rec.execute, rec.on_settled, confirm_driven=True)
    gen = seq.load(_tasks(1, 2, 3))
    seq.cancel()
    seq.cancel()
    assert not seq.active
    assert not seq.advance(gen)
    assert not seq.advance()
    assert rec.settled == 0


def test_stop_settles_on_what_already_ran():
    rec = _Recorder()
    seq = StepSequencer(rec.execute, rec.on_settled, confirm_driven=True)
    seq.load(_tasks(1, 2, 3))
    seq.advance()
    seq.stop()
    assert rec.executed == [1, 2]
    assert rec.settled == 1
    assert not seq.active


def test_empty_sequence_settles_immediately():
    rec = _Recorder()
    seq = StepSequencer(rec.execute, rec.on_settled)
    seq.load([])
    assert rec.settled == 1
