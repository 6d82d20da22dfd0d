import configparser
import os
import threading

import pytest

from exoflow.errors import ExternalToolFailure, MissingUpstreamArtifact
from exoflow.runner import CpuBudget, RunCommands, run_wf, set_logger


def write_ini(outdir, tasks, threads=3, max_cpu=4):
    wf = configparser.ConfigParser(interpolation=None)
    wf.optionxform = str
    wf['mode'] = dict(
        outdir=str(outdir), threads=threads, max_cpu=max_cpu, monitor_resource=False,
        monitor_time_step=1, check_resource_before_run=False,
    )
    for name, detail in tasks.items():
        section = dict(
            depend='', cpu=1, mem=0, timeout=60, key=name.split('-')[-1], stage=name.split('-')[0],
            inputs='', outputs='', wkdir='${mode:outdir}/' + name,
        )
        section.update(detail)
        wf[name] = section
    outfile = os.path.join(str(outdir), 'test.ini')
    os.makedirs(str(outdir), exist_ok=True)
    with open(outfile, 'w') as f:
        wf.write(f)
    return outfile


@pytest.fixture
def finished_run(tmp_path, fast_runner):
    outdir = tmp_path / 'result'
    ini = write_ini(outdir, {
        'Make-s1': dict(cmd='echo s1 > s1.txt', outputs='${mode:outdir}/Make-s1/s1.txt'),
        'Fail-s1': dict(cmd='echo oops >&2; exit 3', depend='Make-s1'),
        'After-s1': dict(cmd='echo never > never.txt', depend='Fail-s1'),
        'Make-s2': dict(cmd='echo s2 > s2.txt', outputs='${mode:outdir}/Make-s2/s2.txt'),
        'Use-s2': dict(
            cmd='cat ../Make-s2/s2.txt > copy.txt', depend='Make-s2',
            inputs='${mode:outdir}/Make-s2/s2.txt', outputs='${mode:outdir}/Use-s2/copy.txt'
        ),
        'NoOutput-s2': dict(cmd='true', outputs='${mode:outdir}/NoOutput-s2/missing.txt'),
        'NoInput-s3': dict(cmd='true', inputs='${mode:outdir}/absent.txt'),
    })
    return outdir, run_wf(ini)


def test_independent_tasks_complete(finished_run):
    outdir, runner = finished_run
    assert runner.state['Make-s2']['state'] == 'success'
    assert runner.state['Use-s2']['state'] == 'success'
    with open(outdir / 'Use-s2' / 'copy.txt') as f:
        assert f.read() == 's2\n'
    assert runner.failed == 4


def test_nonzero_exit_is_recorded(finished_run):
    outdir, runner = finished_run
    error = runner.failures['Fail-s1']
    assert isinstance(error, ExternalToolFailure)
    assert (error.stage, error.key, error.exit_code) == ('Fail', 's1', 3)
    with open(error.stderr) as f:
        assert f.read() == 'oops\n'
    assert error.stderr == str(outdir / 'logs' / 'Fail-s1.stderr.txt')


def test_failure_cascades_to_dependents(finished_run):
    outdir, runner = finished_run
    assert runner.state['After-s1']['state'] == 'failed'
    assert runner.state['After-s1']['used_time'] == 'FailedDependencies'
    assert isinstance(runner.failures['After-s1'], MissingUpstreamArtifact)
    assert not (outdir / 'After-s1').exists()


def test_missing_output_fails_task(finished_run):
    outdir, runner = finished_run
    error = runner.failures['NoOutput-s2']
    assert isinstance(error, ExternalToolFailure)
    assert error.exit_code == 0
    assert 'missing.txt' in error.reason


def test_missing_input_stops_task_before_launch(finished_run):
    outdir, runner = finished_run
    assert isinstance(runner.failures['NoInput-s3'], MissingUpstreamArtifact)
    assert runner.state['NoInput-s3']['used_time'] == 'NotStarted'
    assert not (outdir / 'NoInput-s3').exists()


def test_state_file(finished_run):
    outdir, runner = finished_run
    with open(outdir / 'cmd_state.txt') as f:
        header = f.readline().strip('\n').split('\t')
        names = [line.split('\t')[0] for line in f]
    assert header[:4] == ['name', 'key', 'stage', 'state']
    assert names == ['Make-s1', 'Fail-s1', 'After-s1', 'Make-s2', 'Use-s2', 'NoOutput-s2', 'NoInput-s3']


def test_continue_run_only_reruns_failed_tasks(tmp_path, fast_runner):
    outdir = tmp_path / 'result'
    tasks = {
        'Make-s1': dict(cmd='echo s1 > s1.txt; echo run >> ../make_runs.txt'),
        'Fail-s1': dict(cmd='exit 1', depend='Make-s1'),
        'After-s1': dict(cmd='echo done > done.txt', depend='Fail-s1', outputs='${mode:outdir}/After-s1/done.txt'),
    }
    runner = run_wf(write_ini(outdir, tasks))
    assert runner.failed == 2

    tasks['Fail-s1']['cmd'] = 'true'
    runner = run_wf(write_ini(outdir, tasks))
    assert runner.is_continue
    assert runner.failed == 0
    assert all(x['state'] == 'success' for x in runner.state.values())
    with open(outdir / 'make_runs.txt') as f:
        assert f.read() == 'run\n'


def test_cpu_budget_is_not_oversubscribed(tmp_path, fast_runner):
    outdir = tmp_path / 'result'
    # mkdir fails if another task holds the lock
    cmd = 'mkdir ../lock && sleep 0.3 && rmdir ../lock'
    ini = write_ini(outdir, {f'Lock-t{i}': dict(cmd=cmd, cpu=2) for i in range(3)}, threads=3, max_cpu=2)
    runner = run_wf(ini)
    assert runner.failed == 0


def test_cpu_budget_caps_request():
    budget = CpuBudget(4)
    assert budget.acquire(8) == 4
    assert budget.free == 0
    budget.release(4)
    assert budget.free == 4


def test_cpu_budget_blocks_until_release():
    budget = CpuBudget(2)
    units = budget.acquire(2)
    got = threading.Event()

    def worker():
        budget.release(budget.acquire(1))
        got.set()

    thread = threading.Thread(target=worker, daemon=True)
    thread.start()
    assert not got.wait(0.2)
    budget.release(units)
    assert got.wait(5)


def test_set_logger_replaces_handlers(tmp_path):
    set_logger(str(tmp_path / 'a.log'), logger_id='test_runner')
    logger = set_logger(str(tmp_path / 'b.log'), logger_id='test_runner')
    assert len(logger.handlers) == 2
    logger.info('hello')
    with open(tmp_path / 'b.log') as f:
        assert 'hello' in f.read()


def test_dry_run_graph_only(tmp_path):
    ini = write_ini(tmp_path / 'result', {'Make-s1': dict(cmd='echo s1 > s1.txt')})
    runner = RunCommands(ini, draw_state_graph=False)
    assert runner.task_number == 1
    assert runner.state['Make-s1']['state'] == 'unknown'


@pytest.mark.parametrize('dirname', ['res$1 %x', "it's (v1); x&y"])
def test_outdir_with_shell_characters(tmp_path, fast_runner, dirname):
    outdir = tmp_path / dirname
    ini = write_ini(outdir, {
        'Make-s1': dict(cmd='echo s1 > s1.txt', outputs='${mode:outdir}/Make-s1/s1.txt'),
        'Use-s1': dict(
            cmd="cat '${mode:outdir}/Make-s1/s1.txt' > copy.txt", depend='Make-s1',
            inputs='${mode:outdir}/Make-s1/s1.txt', outputs='${mode:outdir}/Use-s1/copy.txt'
        ),
    })
    runner = run_wf(ini)
    assert runner.failed == 0
    assert runner.outdir == str(outdir)
    with open(outdir / 'Use-s1' / 'copy.txt') as f:
        assert f.read() == 's1\n'


def test_rerun_steps_match_exact_names(tmp_path, fast_runner):
    outdir = tmp_path / 'result'
    tasks = {name: dict(cmd=f'echo run >> ../runs_{name}.txt') for name in ['Make-s1', 'Make-s10']}
    ini = write_ini(outdir, tasks)
    assert run_wf(ini).failed == 0
    runner = run_wf(ini, rerun_steps=('Make-s1',))
    assert runner.is_continue
    assert runner.failed == 0
    with open(outdir / 'runs_Make-s1.txt') as f:
        assert len(f.readlines()) == 2
    with open(outdir / 'runs_Make-s10.txt') as f:
        assert len(f.readlines()) == 1
