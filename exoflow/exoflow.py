import glob
import os
import shutil
import shlex
import json
import sys
import logging
import argparse
import configparser
from uuid import uuid4, UUID
from dataclasses import dataclass, field
from typing import Any, List, Dict, Literal
from .runner import run_wf, RunCommands, OUTDIR_VAR
from .errors import ConfigurationError, MissingUpstreamArtifact

__author__ = 'gdq'
logger = logging.getLogger(__name__)

"""
Design
1. argument, runtime, outputs, meta describe one tool:
    argument: every parameter of the tool, the command line is assembled from them in order
    runtime: tool name, cpu and memory needed to run it
    outputs: files the tool writes into its working directory
    meta: name, version, source of the tool
2. Command = {Argument, RunTime, Output, Meta}
3. Task = Command with concrete argument values + depends + run key.
   The run key (sample name) is carried by the task and all its outputs, downstream tasks
   may only consume outputs of their own key.
4. Workflow = dict(task_id=task, ...), serialised to an ini file and executed by runner.RunCommands

Note:
1. the order of cmd.args matters, it is the order of the command line.
2. file arguments and paths of upstream outputs are shell quoted, each path reaches the tool as one word.
   'fix' arguments are written as they are, such as '&& tool' or '> out.vcf'.
"""


@dataclass()
class Argument:
    name: str = '?'
    value: Any = None
    # prefix may be '-i ' or 'i=', mind the trailing space of the former
    prefix: str = ''
    # fix: not a real parameter but a fixed string, such as '&&' or '| sort' when chaining commands
    # outstr: a parameter that only names an output file
    type: Literal['str', 'int', 'float', 'bool', 'infile', 'indir', 'fix', 'outstr'] = 'str'
    level: Literal['required', 'optional'] = 'required'
    default: Any = None
    range: Any = None
    # the parameter may be repeated, such as '--variant a.vcf --variant b.vcf'
    multi_times: bool = False
    format: str = None
    order: int = 0
    desc: str = 'This is description of the argument.'
    # editable arguments are dumped to wf.static.args.json and can be changed by -update_args
    editable: bool = True

    def __post_init__(self):
        if type(self.default) == int and self.type == 'str':
            self.type = 'int'
        elif type(self.default) == float and self.type == 'str':
            self.type = 'float'
        elif type(self.default) == bool:
            self.type = 'bool'

        if self.type == 'bool':
            self.level = 'required'
            self.range = {True, False}
            if not self.default:
                # a flag without default stays out of the command line
                self.default = False
        elif self.type == 'fix':
            self.level = 'optional'
            self.editable = False
            if self.value is None:
                self.value = self.default
            else:
                self.default = self.value
        if type(self.range) in {set, list}:
            if self.default not in self.range:
                raise ValueError(f'default value {self.default} of {self.name} is not in {self.range}')

        if self.type == 'outstr':
            self.editable = False


@dataclass()
class RunTime:
    tool_dir: str = ''
    # first part of the command line, such as 'gatk -T SelectVariants' or 'snpEff'
    tool: str = ''
    # minimum resource needed, memory in bytes
    memory: int = 1024
    cpu: int = 2
    timeout: int = 3600*24*7


@dataclass()
class Output:
    value: Any = None
    type: Literal['str', 'int', 'float', 'bool', 'outfile', 'outdir'] = 'outfile'
    # report outputs are published to Outputs/ when the task succeeds
    report: bool = False
    # filled in when the command becomes a task
    task_id: UUID = None
    key: str = None
    name: str = None
    desc: str = None
    format: str = None
    # set once value holds the file name formatted with the argument values
    formatted: bool = False


@dataclass()
class Meta:
    name: str = None
    desc: str = 'This is description of the tool/workflow.'
    author: str = 'unknown'
    source: str = 'source URL for the tool'
    version: str = 'unknown'
    function: str = ''


def _value_dict(args):
    value_dict = dict()
    for k, v in args.items():
        value_dict[k] = v.value if v.value is not None else v.default
    return value_dict


def _output_name(out, args):
    """File name of out, formatted with the argument values of the command producing it"""
    if out.formatted:
        return out.value
    return out.value.format(**_value_dict(args))


@dataclass()
class Command:
    meta: Meta = field(default_factory=Meta)
    runtime: RunTime = field(default_factory=RunTime)
    args: Dict[str, Argument] = field(default_factory=dict)
    # output values may refer to arguments with '{arg}'
    outputs: Dict[str, Output] = field(default_factory=dict)

    def __post_init__(self):
        # other_args passes options of the tool that are not wrapped as Argument
        self.args['other_args'] = Argument(prefix='', default='', level='optional', desc='This argument is designed to provide any arguments that are not wrapped in Command')

    def _resolve(self, value, wf_tasks):
        if type(value) == Output:
            if wf_tasks is None or value.task_id not in wf_tasks:
                raise MissingUpstreamArtifact(self.meta.name, value.key, f'output "{value.name}" of an unknown task')
            producer = wf_tasks[value.task_id]
            try:
                name = _output_name(value, producer.cmd.args)
            except (KeyError, IndexError) as e:
                raise KeyError(f'failed to format output {value.name} of {producer.name} with value {value.value}: {e}')
            return os.path.join(OUTDIR_VAR, producer.parent_wkdir, producer.name, name)
        elif type(value) == TopVar:
            return value.value
        return value

    def _word(self, arg, value, wf_tasks):
        """value as written into the command line, None if it resolves to nothing"""
        resolved = self._resolve(value, wf_tasks)
        if resolved is None:
            return None
        if type(value) in (Output, TopVar) or arg.type in ('infile', 'indir', 'outstr'):
            return shlex.quote(str(resolved))
        return resolved

    @staticmethod
    def _arg_str(arg, value):
        """Render one assigned argument, '' if it stays out of the command line"""
        if arg.type == 'bool' or type(value) == bool:
            return arg.prefix if value else ''
        if arg.multi_times:
            values = value if type(value) in [list, tuple] else [value]
            return ' '.join(arg.prefix + str(x) for x in values)
        return arg.prefix + str(value)

    def format_cmd(self, wf_tasks=None):
        if not self.args:
            raise ValueError(f'Command {self.meta.name} has no args !')
        tool_dir = self.runtime.tool_dir
        if tool_dir and not tool_dir.endswith('/'):
            tool_dir += '/'
        parts = [tool_dir + self.runtime.tool]
        for arg_name, arg in self.args.items():
            # optional arguments join the command line only when assigned explicitly
            value = arg.value
            if value is None and arg.level == 'required':
                value = arg.default
            if value is None:
                if arg.level == 'required':
                    raise ValueError(f'No value found for required argument {arg_name} in {self.meta.name}')
                continue
            if type(value) in [list, tuple]:
                value = [x for x in (self._word(arg, v, wf_tasks) for v in value) if x is not None]
            else:
                value = self._word(arg, value, wf_tasks)
            if value is None or value == []:
                continue
            rendered = self._arg_str(arg, value)
            if rendered:
                parts.append(rendered)
        return ' '.join(parts)

    def format_outputs(self):
        for name, out in self.outputs.items():
            if out.value is None or out.formatted:
                continue
            out.value = _output_name(out, self.args)
            out.formatted = True

    def run_now(self, wkdir, wf_tasks=None):
        """
        Run the command at once, outside of any workflow, e.g. to prepare inputs or to
        post-process results. Raises subprocess.CalledProcessError on failure.
        """
        import subprocess
        print(f'Running {self.meta.name} ...')
        os.makedirs(wkdir, exist_ok=True)
        subprocess.check_call(self.format_cmd(wf_tasks), cwd=wkdir, shell=True, executable='/bin/bash')
        self.format_outputs()
        invalid_outs = []
        for name, out in self.outputs.items():
            out.value = os.path.join(wkdir, out.value)
            if out.type in ['outfile', 'outdir'] and not (os.path.exists(out.value) or glob.glob(out.value)):
                invalid_outs.append(name)
        for each in invalid_outs:
            self.outputs.pop(each)


@dataclass()
class Task:
    cmd: Command
    name: str = None
    tag: str = None
    # run key, such as the sample name
    key: str = None
    parent_wkdir: str = ""
    task_id: UUID = field(default_factory=uuid4)
    depends: List[Any] = field(default_factory=list)
    wkdir: str = ''

    def __post_init__(self):
        if self.name is None:
            if self.tag:
                self.name = self.cmd.meta.name + '-' + str(self.tag)
            else:
                self.name = self.cmd.meta.name

        for key in self.cmd.outputs.keys():
            self.cmd.outputs[key].task_id = self.task_id
            self.cmd.outputs[key].name = key
            self.cmd.outputs[key].key = self.key
        self.outputs = self.cmd.outputs
        for ind, each in enumerate(self.depends):
            if hasattr(each, 'task_id'):
                self.depends[ind] = each.task_id
        self.depends = [x for x in self.depends if x is not None]

    def bound_outputs(self):
        """Outputs of other tasks that are assigned to the arguments of this task"""
        bound = []
        for arg_name, arg in self.cmd.args.items():
            values = arg.value if type(arg.value) in [list, tuple] else [arg.value]
            bound += [(arg_name, x) for x in values if type(x) == Output]
        return bound


@dataclass()
class TopVar:
    """
    Input of the whole workflow, such as a reference file.
    Input files are checked and made absolute at once so that a wrong path stops the run
    before any task starts.
    """
    value: Any
    name: str = 'notNamed'
    type: Literal['str', 'int', 'float', 'bool', 'infile', 'indir'] = 'infile'

    def __post_init__(self):
        if self.type in ['infile', 'indir']:
            if self.value is not None:
                if not os.path.exists(self.value):
                    raise ConfigurationError(f'{self.name}: {self.value} does not exist', [self.name])
                # absolute paths are passed to the tools verbatim
                if not os.path.isabs(self.value):
                    self.value = os.path.abspath(self.value)


class WorkflowArgumentParser(argparse.ArgumentParser):
    def error(self, message):
        # argument errors are configuration errors: exit code 1
        self.print_usage(sys.stderr)
        self.exit(1, f'{self.prog}: error: {message}\n')


@dataclass()
class Workflow:
    meta: Meta = field(default_factory=Meta)
    tasks: Dict[UUID, Task] = field(default_factory=dict)
    outputs: Dict[str, Output] = field(default_factory=dict)
    topvars: Dict[str, TopVar] = field(default_factory=dict)
    argparser = None
    args = None
    success = False
    add_argument = None
    runner = None
    wkdir: str = None
    task_order: int = 0

    def __post_init__(self):
        for k, v in self.topvars.items():
            v.name = k
        self.failures = dict()
        # skipped tasks, their outputs may still be referenced as previous results
        self.skipped = dict()

    def all_tasks(self):
        return {**self.skipped, **self.tasks}

    def run(self):
        """
        Write the workflow as an ini file (-> outdir/{wf.meta.name}.ini) and run it locally
        """
        if self.args is None:
            self.parse_args()
        parameters = self.args
        outdir = os.path.abspath(parameters.outdir)
        self.wkdir = outdir
        for task in self.tasks.values():
            task.wkdir = os.path.join(outdir, task.parent_wkdir, task.name)

        self.finalize()

        if parameters.skip:
            self.skip_steps(parameters.skip, skip_depend=not parameters.no_skip_depend)

        if parameters.update_args:
            self.update_args(parameters.update_args)

        for task in self.all_tasks().values():
            task.cmd.format_outputs()

        if parameters.rerun_steps:
            rerun_steps = self.get_all_depends(parameters.rerun_steps)
            print('rerun the following steps:', rerun_steps)
        else:
            rerun_steps = tuple()

        wf = self.to_config()

        if parameters.list_cmd:
            self.list_cmd()
        elif parameters.show_cmd:
            self.show_cmd(parameters.show_cmd)
        elif parameters.list_task:
            self.list_task()
        elif parameters.dry_run:
            outfile = self._write_run_files(wf, outdir)
            self.generate_docs(os.path.join(outdir, f'{self.meta.name}.ReadMe.md'))
            # only to draw the graph
            RunCommands(outfile, draw_state_graph=parameters.plot)
        elif parameters.run:
            outfile = self._write_run_files(wf, outdir)
            self.runner = run_wf(
                outfile,
                timeout=parameters.wait_resource_time,
                plot=parameters.plot,
                rerun_steps=rerun_steps
            )
            self.success = self.runner.failed == 0
            self.failures = dict(self.runner.failures)
            self.publish_outputs()
        else:
            print('No actions, you may provide one action parameter: --run, --dry_run, --list_cmd, --list_task, -show_cmd')

    def to_config(self):
        parameters = self.args
        wf = configparser.ConfigParser(interpolation=None)
        wf.optionxform = str
        wf['mode'] = dict(
            outdir=os.path.abspath(parameters.outdir),
            threads=parameters.threads,
            max_cpu=parameters.max_cpu,
            monitor_resource=parameters.monitor_resource,
            monitor_time_step=3,
            check_resource_before_run=parameters.check_resource_before_run,
        )
        all_tasks = self.all_tasks()
        for task_id, task in self.tasks.items():
            cmd_wkdir = os.path.join(OUTDIR_VAR, task.parent_wkdir, task.name)
            inputs = []
            for arg_name, arg in task.cmd.args.items():
                values = arg.value if type(arg.value) in [list, tuple] else [arg.value]
                for value in values:
                    if type(value) == Output and value.type in ['outfile', 'outdir']:
                        inputs.append(task.cmd._resolve(value, all_tasks))
                    elif type(value) == TopVar and value.type in ['infile', 'indir'] and value.value is not None:
                        inputs.append(value.value)
            outputs = [os.path.join(cmd_wkdir, x.value) for x in task.outputs.values()
                       if x.type in ['outfile', 'outdir'] and x.value]
            wf[task.name] = dict(
                depend=','.join(self.tasks[x].name for x in task.depends),
                cmd=task.cmd.format_cmd(all_tasks),
                mem=task.cmd.runtime.memory,
                cpu=task.cmd.runtime.cpu,
                timeout=task.cmd.runtime.timeout,
                wkdir=cmd_wkdir,
                key=task.key or '',
                stage=task.cmd.meta.name,
                inputs='\n'.join(inputs),
                outputs='\n'.join(outputs),
            )
        return wf

    def _write_run_files(self, wf, outdir):
        os.makedirs(outdir, exist_ok=True)
        self.dump_args(out=os.path.join(outdir, 'wf.static.args.json'))
        with open(os.path.join(outdir, "wf.run.cmd.txt"), 'w') as f:
            args = []
            for each in sys.argv:
                if {'(', '{', ';', '*'} & set(each):
                    args.append('"' + each + '"')
                else:
                    args.append(each)
            f.write(' '.join(args) + '\n')
            f.write('>>>Argument Detail\n')
            f.write('{}\n'.format(dict(self.args.__dict__.items())))
        outfile = os.path.join(outdir, f'{self.meta.name}.ini')
        with open(outfile, 'w') as configfile:
            wf.write(configfile)
        return outfile

    def publish_outputs(self):
        """
        Hard link the report outputs of succeeded tasks into outdir/Outputs/{stage name}/
        """
        state = self.runner.state if self.runner else dict()
        for name, out in self.outputs.items():
            task = self.tasks.get(out.task_id)
            if task is None or state.get(task.name, {}).get('state') != 'success':
                continue
            path = os.path.join(task.wkdir, out.value)
            matched = [path] if os.path.exists(path) else glob.glob(path)
            if not matched:
                print('Failed to found expected output: ', path)
                continue
            final_out_dir = os.path.join(self.wkdir, 'Outputs', task.cmd.meta.name)
            os.makedirs(final_out_dir, exist_ok=True)
            for src in matched:
                dst_path = os.path.join(final_out_dir, os.path.basename(src.rstrip('/')))
                if os.path.islink(dst_path) or os.path.isfile(dst_path):
                    os.remove(dst_path)
                elif os.path.isdir(dst_path):
                    shutil.rmtree(dst_path)
                # files are hard linked, directories soft linked, copied if the filesystem refuses
                try:
                    if os.path.isfile(src):
                        os.link(src, dst_path)
                    else:
                        os.symlink(src.rstrip('/'), dst_path)
                except OSError as e:
                    logger.warning(f'failed to link {src} to {dst_path} ({e}), copy it instead')
                    if os.path.isfile(src):
                        shutil.copy2(src, dst_path)
                    else:
                        shutil.copytree(src, dst_path)

    def output_path(self, out: Output):
        task = self.all_tasks()[out.task_id]
        return os.path.join(self.wkdir, task.parent_wkdir, task.name, out.value)

    def add_topvars(self, var_dict):
        for k, v in var_dict.items():
            v.name = k
            if v.type in ['infile', 'indir'] and v.value and not os.path.isabs(v.value):
                v.value = os.path.abspath(v.value)
        self.topvars.update(var_dict)

    def add_task(self, cmd: Command, key: str = None, depends: list = (), parent_wkdir: str = '', name: str = None, tag: str = None):
        self.task_order += 1
        task = Task(cmd=cmd, key=key, depends=list(depends), name=name, tag=tag, parent_wkdir=parent_wkdir)
        existed_names = {x.name for x in self.tasks.values()}
        if task.name in existed_names:
            raise ValueError(f'{task.name} duplicated, please rename it')
        if self.wkdir:
            task.wkdir = os.path.join(self.wkdir, task.parent_wkdir, task.name)
        self.tasks[task.task_id] = task
        return task, task.cmd.args

    @staticmethod
    def join_by_key(left: Dict[str, Output], right: Dict[str, Output], stage='join'):
        """
        Pair the outputs of two sibling branches by run key.
        :param left: {key: Output}
        :param right: {key: Output}
        :return: list of (key, left_output, right_output), in the order of left
        """
        unpaired = sorted(set(left) ^ set(right))
        if unpaired:
            raise MissingUpstreamArtifact(stage, ','.join(unpaired), 'no output of the sibling branch for this key')
        pairs = []
        for key, out in left.items():
            other = right[key]
            if out.key != key or other.key != key:
                raise MissingUpstreamArtifact(stage, key, f'outputs of keys {out.key} and {other.key} cannot be joined')
            pairs.append((key, out, other))
        return pairs

    @staticmethod
    def _is_bound(value):
        if type(value) in [list, tuple]:
            return any(type(x) in {TopVar, Output} for x in value)
        return type(value) in {TopVar, Output}

    def dump_args(self, out='arguments.json'):
        """
        Dump editable arguments of each command as json, which can be edited and passed back
        by -update_args. Only the first task of a command is recorded.
        """
        arg_values = dict()
        for task in self.tasks.values():
            if task.cmd.meta.name in arg_values:
                continue
            values = arg_values[task.cmd.meta.name] = dict()
            for arg_name, arg in task.cmd.args.items():
                # required without default: assigned by the workflow itself
                if not arg.editable or self._is_bound(arg.value) or (arg.level == 'required' and arg.default is None):
                    continue
                values[arg_name] = arg.default if arg.value is None else arg.value
        with open(out, 'w') as f:
            json.dump(arg_values, f, indent=2)

    def update_args(self, arg_json_file):
        with open(arg_json_file) as f:
            cfg = json.load(f)
        for task in self.tasks.values():
            for arg_name, value in cfg.get(task.cmd.meta.name, dict()).items():
                arg = task.cmd.args.get(arg_name)
                if arg is None or not arg.editable or self._is_bound(arg.value):
                    continue
                arg.value = value

    def _downstream(self, task_ids):
        """task_ids and every task depending on them, directly or not"""
        found = set(task_ids)
        while True:
            more = {tid for tid, task in self.tasks.items() if tid not in found and found & set(task.depends)}
            if not more:
                return found
            found |= more

    def skip_steps(self, steps, skip_depend=True):
        """
        :param steps: list containing cmd.meta.name or task.name
        :param skip_depend: if also skip steps that depend on the steps
        """
        skip_ids = {tid for tid, x in self.tasks.items() if x.name in steps or x.cmd.meta.name in steps}
        if skip_depend:
            skip_ids = self._downstream(skip_ids)
        skipped = [self.tasks[tid].name for tid in skip_ids]
        for tid in skip_ids:
            self.skipped[tid] = self.tasks.pop(tid)
        if not skip_depend:
            # remaining tasks will use the results of a previous run
            for task in self.tasks.values():
                task.depends = [x for x in task.depends if x in self.tasks]
        print(f'total {len(skipped)} tasks will be skipped', sorted(skipped))

    def get_all_depends(self, steps):
        """
        Find the given steps and all the steps downstream of them.
        :param steps: task names, or prefixes of task names ending with '*'
        :return: tuple of task names
        """
        matched = set()
        for each in steps:
            if each.endswith('*'):
                hits = {tid for tid, x in self.tasks.items() if x.name.startswith(each[:-1])}
            else:
                hits = {tid for tid, x in self.tasks.items() if x.name == each}
            if not hits:
                raise KeyError(f'{each} matches no task, you may check the task name by "--list_task"')
            matched |= hits
        return tuple(sorted(self.tasks[tid].name for tid in self._downstream(matched)))

    def list_cmd(self):
        print(sorted({x.cmd.meta.name for x in self.tasks.values()}))

    def list_task(self):
        print(sorted(x.name for x in self.tasks.values()))

    def show_cmd(self, cmd_name):
        task = next((x for x in self.tasks.values() if x.cmd.meta.name == cmd_name), None)
        if task is not None:
            print(task.cmd.format_cmd(self.tasks))

    def init_argparser(self, argv=None):
        if not (sys.argv[1:] if argv is None else argv):
            sys.exit('Please provide at least one argument, use -h for help')
        parser = WorkflowArgumentParser(
            formatter_class=argparse.ArgumentDefaultsHelpFormatter,
            description=self.meta.desc
        )
        wf_args = parser.add_argument_group('Arguments for controlling running mode')
        wf_args.add_argument('-outdir', metavar='workdir', default=os.path.join(os.getcwd(), 'Result'), help='result directory')
        wf_args.add_argument('--run', default=False, action='store_true', help="run the workflow, otherwise it is only built. If outdir already contains cmd_state.txt, the run continues from the failed steps")
        wf_args.add_argument('--plot', default=False, action='store_true', help="draw the task graph with running state to outdir/state.svg, requires pygraphviz")
        wf_args.add_argument('-threads', metavar='max-workers', default=3, type=int, help="max number of tasks running at the same time")
        wf_args.add_argument('-max_cpu', metavar='cpu-budget', default=os.cpu_count() or 1, type=int, help="total number of cpu cores the running tasks may declare")
        wf_args.add_argument('-update_args', metavar='update-args', required=False, help="json file with argument values per command. Each run writes wf.static.args.json that can be used as template")
        wf_args.add_argument('-skip', metavar=('step1', 'task3'), default=list(), nargs='+', help='steps or tasks to skip, steps depending on them are skipped as well unless --no_skip_depend. See --list_cmd or --list_task')
        wf_args.add_argument('--no_skip_depend', default=False, action='store_true', help="do not skip the steps depending on the skipped steps")
        wf_args.add_argument('-rerun_steps', metavar=('task3', 'task_prefix'), default=list(), nargs='+', help="tasks to rerun even if they succeeded before, a trailing '*' matches task name prefix. Steps depending on them are rerun as well")
        wf_args.add_argument('--list_cmd', default=False, action="store_true", help="list the steps of the workflow")
        wf_args.add_argument('-show_cmd', metavar='cmd-query', help="print an example command line of the given step")
        wf_args.add_argument('--list_task', default=False, action="store_true", help="list the tasks of the workflow")
        wf_args.add_argument('--monitor_resource', default=False, action='store_true', help='record cpu/memory usage of each task')
        wf_args.add_argument('-wait_resource_time', metavar='wait-time', default=900, type=int, help="seconds to wait for free resource before a task is failed, works with --check_resource_before_run")
        wf_args.add_argument('--check_resource_before_run', default=False, action='store_true', help="check free cpu and memory of the host before starting a task")
        wf_args.add_argument('--dry_run', default=False, action='store_true', help='do not run, only write the workflow ini file and a markdown document of the workflow')
        self.argparser = parser
        self.add_argument = self.argparser.add_argument

    def parse_args(self, argv=None):
        if self.argparser is None:
            self.init_argparser(argv)
        self.args = self.argparser.parse_args(argv)
        self.wkdir = os.path.abspath(self.args.outdir)
        return self.args

    def finalize(self):
        for task_id, task in self.tasks.items():
            for ind, each in enumerate(task.depends):
                if hasattr(each, 'task_id'):
                    task.depends[ind] = each.task_id
                elif type(each) != UUID:
                    raise ValueError(f'valid "depends" for task {task.name} should be UUID object or Task Object but not "{each}"')

            for arg_name, out in task.bound_outputs():
                if out.task_id not in self.tasks:
                    raise MissingUpstreamArtifact(task.cmd.meta.name, task.key, f'{arg_name} is bound to a task not in the workflow')
                # outputs of one run key never feed tasks of another key
                if task.key is not None and out.key is not None and out.key != task.key:
                    raise MissingUpstreamArtifact(task.cmd.meta.name, task.key, f'{arg_name} is bound to output "{out.name}" of key {out.key}')
                if out.task_id not in task.depends:
                    task.depends.append(out.task_id)

            for _name, out in task.outputs.items():
                if out.report:
                    self.outputs[task.name + '.' + _name] = out

    def generate_docs(self, out):
        """Markdown description of the workflow: its steps, the command line options and the arguments of each tool"""
        tools = dict()
        for task in self.tasks.values():
            tools.setdefault(task.cmd.meta.name, task.cmd)
        lines = [f'# {self.meta.name}', f'* version: {self.meta.version}', f'* source: {self.meta.source}', self.meta.desc]
        lines += ['## Steps', '| name | function | source | version |', '| :--- | :---: | :---: | :---: |']
        lines += [f'|{x.meta.name}|{x.meta.function}|{x.meta.source}|{x.meta.version}|' for x in tools.values()]
        lines += ['## Arguments']
        lines += [f'+ **{x.dest}**: {x.help}' for x in self.argparser._actions]
        for name, cmd in tools.items():
            lines += [f'## {name}', f'* desc: {cmd.meta.desc.strip()}', f'* CPU: {cmd.runtime.cpu}', f'* Memory: {cmd.runtime.memory}']
            lines += ['### Arguments']
            lines += [f'+ {k} ({v.type}, default={v.default}): {v.desc}' for k, v in cmd.args.items()]
            lines += ['### Outputs']
            lines += [f'+ {k} ({v.type}): {v.value}' for k, v in cmd.outputs.items()]
        with open(out, 'w') as f:
            f.write(''.join(('\n' if x.startswith('#') else '') + x + '\n' for x in lines))
