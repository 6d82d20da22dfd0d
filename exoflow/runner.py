import os
import sys
import time
import glob
import queue
import shutil
import signal
import atexit
import logging
import threading
import configparser
import subprocess
from threading import Lock
import psutil
from .errors import ExternalToolFailure, MissingUpstreamArtifact

try:
    import pygraphviz as pgv
except ImportError:
    pgv = None

__author__ = 'gdq'

"""
Local runner of a workflow ini file.
Each section except 'mode' is one task: a shell command with its dependencies, working directory,
declared inputs and outputs, one path per line. Worker threads take ready tasks from a queue; a task is ready once all its
dependencies succeeded, and is failed without running if any of them failed.
State of every task is kept in outdir/cmd_state.txt, which is also used to continue an interrupted run.
"""

# replaced by the outdir of the 'mode' section when the ini file is read
OUTDIR_VAR = '${mode:outdir}'
STATE_FIELDS = ['key', 'stage', 'state', 'used_time', 'mem', 'cpu', 'pid', 'depend', 'cmd']
STATE_COLORS = dict(
    success='#7FFF00',
    failed='#FFD700',
    running='#9F79EE',
    queueing='#87CEFF',
    killed='red',
    outdoor='#A8A8A8',
)
# task name -> process, for the processes still running
RUNNING = dict()


@atexit.register
def kill_running_processes():
    for name, proc in list(RUNNING.items()):
        try:
            for child in proc.children(recursive=True):
                child.kill()
            proc.kill()
            print(f'Stopped task {name} (pid={proc.pid})')
        except psutil.NoSuchProcess:
            pass
        RUNNING.pop(name, None)


def _exit_on_signal(signum, frame):
    print(f'\nReceived signal {signum}, the running tasks will be killed')
    sys.exit(1)


signal.signal(signal.SIGTERM, _exit_on_signal)
signal.signal(signal.SIGINT, _exit_on_signal)


def set_logger(name='workflow.log', logger_id='x'):
    logger = logging.getLogger(logger_id)
    logger.propagate = False
    logger.setLevel(logging.INFO)
    # a new run in the same process must not keep writing into the log of the former one
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    formatter = logging.Formatter('%(asctime)s: %(message)s')
    for handler, level in [(logging.FileHandler(name, mode='w'), logging.INFO), (logging.StreamHandler(), logging.WARNING)]:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    return logger


def read_state(state_file):
    """cmd_state.txt -> {task name: {field: value}}"""
    state = dict()
    with open(state_file) as f:
        header = f.readline().strip('\n').split('\t')
        for line in f:
            if line.strip():
                record = dict(zip(header, line.strip('\n').split('\t')))
                state[record['name']] = record
    return state


class TaskProcess(object):
    """One task of the ini file, run as a shell command inside its own working directory"""
    def __init__(self, name, cmd, wkdir, outdir, key='', stage='', inputs=(), outputs=(), timeout=3600*24,
                 monitor_resource=False, monitor_time_step=2, logger=None, **kwargs):
        self.name = name
        self.cmd = cmd
        self.wkdir = wkdir
        self.key = key
        self.stage = stage or name
        self.inputs = list(inputs)
        self.outputs = list(outputs)
        self.timeout = int(timeout)
        self.monitor_resource = monitor_resource
        self.monitor_time_step = int(monitor_time_step)
        self.log_prefix = os.path.join(outdir, 'logs', name)
        self.logger = logger or logging.getLogger('x')
        self.proc = None
        self.error = None
        self.used_time = 0
        self.max_mem = 0
        self.max_cpu = 0
        self.threads = 0

    @property
    def success(self):
        return self.proc is not None and self.error is None

    @property
    def stdout_file(self):
        return self.log_prefix + '.stdout.txt'

    @property
    def stderr_file(self):
        return self.log_prefix + '.stderr.txt'

    def _monitor(self):
        while self.proc.is_running():
            try:
                procs = [self.proc] + self.proc.children(recursive=True)
                self.max_mem = max([self.max_mem] + [x.memory_info().vms for x in procs])
                self.max_cpu = max([self.max_cpu] + [x.cpu_percent(interval=0.2) for x in procs])
                self.threads = max(self.threads, self.proc.num_threads())
            except psutil.Error:
                break
            time.sleep(self.monitor_time_step)

    def _kill(self):
        try:
            for child in self.proc.children(recursive=True):
                child.kill()
            self.proc.kill()
        except psutil.NoSuchProcess:
            pass

    def run(self):
        missing = [x for x in self.inputs if not os.path.exists(x)]
        if missing:
            self.error = MissingUpstreamArtifact(self.stage, self.key, ', '.join(missing))
            self.logger.warning(str(self.error))
            return

        if os.path.exists(self.wkdir):
            self.logger.info(f'Removing existing directory {self.wkdir}')
            shutil.rmtree(self.wkdir)
        os.makedirs(self.wkdir)

        self.logger.warning(f'Step: {self.name}')
        self.logger.info(f'> {self.cmd}')
        start = time.time()
        self.proc = psutil.Popen(self.cmd, shell=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE, cwd=self.wkdir)
        RUNNING[self.name] = self.proc
        if self.monitor_resource:
            threading.Thread(target=self._monitor, daemon=True).start()
        try:
            stdout, stderr = self.proc.communicate(timeout=self.timeout)
        except subprocess.TimeoutExpired:
            self.logger.warning(f'{self.name} is killed after running {self.timeout}s')
            self._kill()
            stdout, stderr = self.proc.communicate()
        RUNNING.pop(self.name, None)
        self.used_time = round(time.time() - start, 2)
        self._write_logs(stdout, stderr)
        self._check_result()

    def _write_logs(self, stdout, stderr):
        os.makedirs(os.path.dirname(self.log_prefix), exist_ok=True)
        with open(self.stdout_file, 'wb') as f:
            f.write(stdout or b'')
        with open(self.stderr_file, 'wb') as f:
            f.write(stderr or b'')
        if self.monitor_resource:
            with open(self.log_prefix + '.resource.txt', 'w') as f:
                f.write(f'max_cpu (cpu_percent*0.01): {self.max_cpu*0.01:.2f}\n')
                f.write(f'max_mem (virtual memory; M): {self.max_mem/1024**2:.2f}\n')
                f.write(f'thread_num: {self.threads}\n')

    def _check_result(self):
        if self.proc.returncode != 0:
            self.error = ExternalToolFailure(self.stage, self.key, self.proc.returncode, self.stdout_file, self.stderr_file)
        else:
            missing = [x for x in self.outputs if not (os.path.exists(x) or glob.glob(x))]
            if missing:
                self.error = ExternalToolFailure(
                    self.stage, self.key, 0, self.stdout_file, self.stderr_file,
                    reason='declared outputs not found: ' + ', '.join(missing)
                )
        if self.error:
            self.logger.warning(f'{self.error}, see {self.stderr_file}')


class CommandNetwork(object):
    """Tasks and dependencies read from a workflow ini file"""
    def __init__(self, cmd_config):
        # no interpolation: paths may contain '$' or '%'
        self.parser = configparser.ConfigParser(interpolation=None)
        self.parser.optionxform = str
        self.parser.read(cmd_config, encoding='utf-8')
        self.outdir = os.path.abspath(self.parser.get('mode', 'outdir'))
        self.pool_size = self.parser.getint('mode', 'threads')
        for name in self.names():
            section = self.parser[name]
            for option, value in list(section.items()):
                section[option] = self.expand_outdir(value, quoted=option == 'cmd')

    def expand_outdir(self, value, quoted=False):
        """
        Replace OUTDIR_VAR with outdir.
        :param quoted: value is a command line, where OUTDIR_VAR sits inside a single quoted path
        """
        outdir = self.outdir.replace("'", "'\"'\"'") if quoted else self.outdir
        return value.replace(OUTDIR_VAR, outdir)

    def names(self):
        # in the order of the ini file, dependencies come first
        return [x for x in self.parser.sections() if x != 'mode']

    def get_dependency(self, name):
        return [x.strip() for x in self.parser[name].get('depend', '').split(',') if x.strip()]

    def orphans(self):
        names = self.names()
        for name in names:
            unknown = set(self.get_dependency(name)) - set(names)
            if unknown:
                raise KeyError(f'{name} depends on {sorted(unknown)}, which are not in the workflow')
        return [x for x in names if not self.get_dependency(x)]

    def get_cmd_description_dict(self, name):
        section = self.parser[name]
        mode = self.parser['mode']
        return dict(
            name=name,
            cmd=section['cmd'],
            key=section.get('key', ''),
            stage=section.get('stage', name),
            wkdir=section.get('wkdir', os.path.join(self.outdir, name)),
            depend=self.get_dependency(name),
            cpu=section.getint('cpu', 0),
            mem=section.getint('mem', 0),
            timeout=section.getint('timeout', 3600*24),
            inputs=[x.strip() for x in section.get('inputs', '').split('\n') if x.strip()],
            outputs=[x.strip() for x in section.get('outputs', '').split('\n') if x.strip()],
            monitor_resource=section.getboolean('monitor_resource', mode.getboolean('monitor_resource', False)),
            monitor_time_step=section.getint('monitor_time_step', mode.getint('monitor_time_step', 2)),
            check_resource_before_run=section.getboolean('check_resource_before_run', mode.getboolean('check_resource_before_run', False)),
        )


class CheckResource(object):
    """Free cpu and memory of the host"""
    @staticmethod
    def free_cpu():
        return psutil.cpu_count() * (1 - psutil.cpu_percent(interval=0.5)*0.01)

    @staticmethod
    def free_mem():
        return psutil.virtual_memory().available

    def is_enough(self, cpu, mem, timeout=10):
        deadline = time.time() + timeout
        while True:
            if cpu <= self.free_cpu() and mem <= self.free_mem():
                return True
            if time.time() >= deadline:
                return False
            time.sleep(3)


class CpuBudget(object):
    """
    Global budget of cpu cores declared by the running tasks.
    A task asking more than the whole budget gets the whole budget, so that it still runs.
    """
    def __init__(self, total):
        self.total = max(int(total), 1)
        self.free = self.total
        self.cond = threading.Condition()

    def acquire(self, cpu):
        need = min(max(int(cpu), 0), self.total)
        with self.cond:
            self.cond.wait_for(lambda: self.free >= need)
            self.free -= need
        return need

    def release(self, units):
        with self.cond:
            self.free += units
            self.cond.notify_all()


def _time_label(used_time):
    try:
        return f'{float(used_time)}s'
    except ValueError:
        return '' if used_time == 'unknown' else used_time


class StateGraph(object):
    """Task graph colored by task state"""
    def __init__(self, state):
        self.state = state if isinstance(state, dict) else read_state(state)

    def draw(self, img_file='state.svg'):
        graph = pgv.AGraph(directed=True, rankdir='LR')
        for name, info in self.state.items():
            label = '\n'.join(x for x in name.split('-', 1) + [_time_label(info['used_time'])] if x)
            graph.add_node(
                name, label=label, tooltip=info['cmd'], shape='box', style='rounded, filled',
                fillcolor=STATE_COLORS.get(info['state'], '#A8A8A8'), color='mediumseagreen'
            )
        for name, info in self.state.items():
            color = 'green' if info['state'] == 'success' else '#4D4D4D'
            for source in [x for x in info['depend'].split(',') if x] or ['Input']:
                graph.add_edge(source, name, color=color)
        legend = graph.add_subgraph(name='cluster_legend', label='Color Legend', color='lightgrey', style='filled')
        for state in sorted({x['state'] for x in self.state.values()}):
            legend.add_node(state, shape='note', style='filled', fillcolor=STATE_COLORS.get(state, '#A8A8A8'))
        graph.draw(path=img_file, format=os.path.splitext(img_file)[1][1:], prog='dot')


class RunCommands(CommandNetwork):
    __LOCK__ = Lock()
    # seconds an idle worker waits before looking at the queue again
    poll_interval = 1

    def __init__(self, cmd_config, timeout=10, logger=None, draw_state_graph=True):
        super().__init__(cmd_config)
        # seconds to wait for free host resource
        self.timeout = timeout
        self.state = {name: self._init_record(name) for name in self.names()}
        self.task_number = len(self.state)
        self.success = 0
        self.failed = 0
        self.failures = dict()
        self.is_continue = False
        self.budget = CpuBudget(self.parser.getint('mode', 'max_cpu', fallback=psutil.cpu_count() or 1))
        if logger is None:
            os.makedirs(self.outdir, exist_ok=True)
            logger = set_logger(name=os.path.join(self.outdir, 'workflow.log'))
        self.logger = logger
        self.draw_state_graph = bool(draw_state_graph and pgv)
        # every task enters the queue at most once
        self.queued = set()
        self.queue = queue.Queue()
        for name in self.orphans():
            self._enqueue(name)

    def _init_record(self, name):
        record = dict.fromkeys(STATE_FIELDS, 'unknown')
        section = self.parser[name]
        record.update(
            key=section.get('key', ''),
            stage=section.get('stage', name),
            cmd=section['cmd'],
            depend=','.join(self.get_dependency(name)),
        )
        return record

    def _enqueue(self, name):
        self.queued.add(name)
        self.queue.put(name)

    def _in_state(self, state):
        return {name for name, record in self.state.items() if record['state'] == state}

    def _update_queue(self):
        waiting = [x for x in self.names() if x not in self.queued]
        if not waiting:
            # end signal for the workers
            self.queue.put(None)
            return
        success = self._in_state('success')
        failed = self._in_state('failed')
        for name in waiting:
            depend = set(self.get_dependency(name))
            if depend & failed:
                upstream = ','.join(sorted(depend & failed))
                failed.add(name)
                self.queued.add(name)
                self.state[name].update(state='failed', used_time='FailedDependencies')
                self.failures[name] = MissingUpstreamArtifact(
                    self.state[name]['stage'], self.state[name]['key'], f'(failed upstream: {upstream})'
                )
                self.logger.warning(f'{name} is not started for its failed dependencies')
            elif depend <= success:
                self._enqueue(name)

    def _update_state(self, task=None, killed=False):
        if task is not None:
            record = self.state[task.name]
            record['state'] = 'success' if task.success else 'failed'
            if task.error is not None:
                self.failures[task.name] = task.error
            if task.proc is None:
                record['used_time'] = 'NotStarted'
            else:
                record.update(used_time=task.used_time, mem=task.max_mem, cpu=task.max_cpu, pid=task.proc.pid)
        success = self._in_state('success')
        failed = self._in_state('failed')
        self.success = len(success)
        self.failed = len(failed)
        running = dict(RUNNING)
        for name in self.queued - success - failed:
            if name in running:
                self.state[name]['pid'] = running[name].pid
                self.state[name]['state'] = 'killed' if killed else 'running'
            elif self.state[name]['state'] != 'running':
                self.state[name]['state'] = 'queueing'
        for name in set(self.names()) - self.queued:
            self.state[name]['state'] = 'outdoor'

    def _write_state(self):
        with open(os.path.join(self.outdir, 'cmd_state.txt'), 'w') as f:
            f.write('\t'.join(['name'] + STATE_FIELDS) + '\n')
            for name, record in self.state.items():
                f.write('\t'.join([name] + [str(record[x]) for x in STATE_FIELDS]) + '\n')

    def _draw_state(self):
        if self.draw_state_graph:
            StateGraph(self.state).draw(os.path.join(self.outdir, 'state.svg'))

    def _update_status_when_exit(self):
        self._update_state(killed=True)
        self._write_state()
        self._draw_state()

    def _next_task(self):
        with self.__LOCK__:
            if self.queue.empty():
                self._update_queue()
                self._write_state()
            if self.queue.empty():
                return False, None
            return True, self.queue.get()

    def single_run(self):
        while True:
            got, name = self._next_task()
            if not got:
                time.sleep(self.poll_interval)
                continue
            if name is None:
                # pass the end signal on to the other workers
                self.queue.put(None)
                break
            detail = self.get_cmd_description_dict(name)
            task = TaskProcess(**detail, outdir=self.outdir, logger=self.logger)
            if detail['check_resource_before_run'] and not CheckResource().is_enough(detail['cpu'], detail['mem'], self.timeout):
                task.error = ExternalToolFailure(task.stage, task.key, None, reason='not enough free cpu or memory on the host')
                self.logger.warning(f'{name}: {task.error}')
            else:
                units = self.budget.acquire(detail['cpu'])
                self.state[name]['state'] = 'running'
                try:
                    task.run()
                except OSError as e:
                    # the task fails, the worker keeps serving the queue
                    task.error = e
                    self.logger.exception(f'{name}: {e}')
                finally:
                    self.budget.release(units)
            if not task.success:
                self.logger.warning(f'Failed to complete task {name}!')
            with self.__LOCK__:
                self._update_state(task)
                self._update_queue()
                self._write_state()
                self._draw_state()

    def parallel_run(self):
        atexit.register(self._update_status_when_exit)
        start = time.time()
        workers = [threading.Thread(target=self.single_run, daemon=True) for _ in range(self.pool_size)]
        for worker in workers:
            worker.start()
        with self.__LOCK__:
            self._update_state()
            self._write_state()
            self._draw_state()
        for worker in workers:
            worker.join()
        with self.__LOCK__:
            self._update_state()
            self._write_state()
            self._draw_state()
        atexit.unregister(self._update_status_when_exit)
        self.logger.warning(f'Total time: {time.time() - start:.2f}s')
        self.logger.warning(f'Finished: Success={self.success}, Failed={self.task_number - self.success}, Total={self.task_number}')
        return self.success, self.task_number

    def continue_run(self, steps=None):
        """
        Run the tasks that did not succeed in the former run recorded in outdir/cmd_state.txt.
        :param steps: names of succeeded tasks to run again
        """
        state_file = os.path.join(self.outdir, 'cmd_state.txt')
        if not os.path.exists(state_file):
            raise FileNotFoundError(f'No cmd_state.txt found in {self.outdir}')
        rerun = set(steps or []) & set(self.names())
        self.queued = set()
        self.queue = queue.Queue()
        for name, record in read_state(state_file).items():
            if record['state'] != 'success' or name in rerun:
                continue
            if name not in self.state:
                self.logger.warning(f'{name} is no longer in the workflow, ignored')
                continue
            self.queued.add(name)
            # cmd and depend of the current ini are kept
            self.state[name].update({k: record[k] for k in ('state', 'used_time', 'mem', 'cpu', 'pid') if k in record})
        remaining = sorted(set(self.names()) - self.queued)
        if not remaining:
            self._update_state()
            self.logger.warning('Nothing to continue, all tasks succeeded before')
            return
        self.is_continue = True
        self.logger.warning(f'Continue to run {len(remaining)} tasks: {remaining}')
        self._update_queue()
        self.parallel_run()


def run_wf(wf, plot=False, timeout=300, rerun_steps: tuple = None):
    """
    :param wf: workflow ini file
    :param plot: draw outdir/state.svg if pygraphviz is installed
    :param timeout: seconds to wait for free host resource before a task fails, works with check_resource_before_run
    :param rerun_steps: succeeded tasks to run again, by default only unfinished tasks run when continuing
    :return: RunCommands object
    """
    workflow = RunCommands(wf, timeout=timeout, draw_state_graph=plot)
    if os.path.exists(os.path.join(workflow.outdir, 'cmd_state.txt')):
        workflow.continue_run(steps=rerun_steps)
    else:
        workflow.parallel_run()
    return workflow
