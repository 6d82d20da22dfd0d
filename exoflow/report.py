import os
import re
import glob
import json
import logging
import subprocess
from . import __version__
from .errors import VersionProbeFailure, ExternalToolFailure
from .commands import MultiQC, MULTIQC
from .runner import read_state

__author__ = 'gdq'
logger = logging.getLogger(__name__)

"""
Post-run aggregation: task states, failures, evaluation tables and tool versions of all samples
are gathered into outdir/Report. Nothing here changes the result of the run, errors are only logged.
"""

UNKNOWN = 'N/A'
VERSION_PATTERNS = dict(
    GATK=[r'The Genome Analysis Toolkit \(GATK\) v([\w.\-]+)', r'GATK version ([\w.\-]+)'],
    SnpEff=[r'SnpEff version SnpEff ([\w.]+)', r'SnpEff\s+(\d+\.\d+\w*)'],
    MultiQC=[r'This is MultiQC v([\w.]+)', r'multiqc, version ([\w.]+)'],
)


def probe_version(tool, texts, patterns=None):
    """Return the first version string of tool found in texts, raise VersionProbeFailure if none"""
    patterns = VERSION_PATTERNS[tool] if patterns is None else patterns
    for text in texts:
        for pattern in patterns:
            match = re.search(pattern, text)
            if match:
                return match.group(1)
    raise VersionProbeFailure(tool)


def software_versions(log_files):
    texts = []
    for each in log_files:
        with open(each, errors='replace') as f:
            texts.append(f.read())
    versions = {'exoflow': __version__}
    for tool in VERSION_PATTERNS:
        try:
            versions[tool] = probe_version(tool, texts)
        except VersionProbeFailure as e:
            logger.info(f'{e}, recorded as {UNKNOWN}')
            versions[tool] = UNKNOWN
    return versions


def _tail(path, n=20):
    if not path or not os.path.exists(path):
        return []
    with open(path, errors='replace') as f:
        return [x.rstrip('\n') for x in f.readlines()[-n:]]


def _snpeff_summary(path):
    """Lines of the '# Summary table' section of a snpEff csv stats file"""
    lines = []
    with open(path, errors='replace') as f:
        in_summary = False
        for line in f:
            line = line.rstrip('\n')
            if line.startswith('#'):
                if in_summary:
                    break
                in_summary = line.startswith('# Summary table')
                continue
            if in_summary and line.strip():
                lines.append(line)
    return lines


def _unique(items):
    result = []
    for each in items:
        if each not in result:
            result.append(each)
    return result


def run_multiqc(analysis_dir, report_dir, multiqc_cmd=MULTIQC):
    cmd = MultiQC(multiqc_cmd)
    cmd.args['analysis_dir'].value = analysis_dir
    cmd.args['outdir'].value = 'MultiQC'
    try:
        cmd.run_now(wkdir=report_dir)
    except (subprocess.CalledProcessError, OSError) as e:
        logger.warning(f'MultiQC failed, the report is made without it: {e}')
        return None
    return cmd.outputs.get('report')


def write_report(wf, state, versions, out):
    ok_tasks = {name for name, record in state.items() if record['state'] == 'success'}
    failed_tasks = {name for name, record in state.items() if record['state'] == 'failed'}
    contents = [f'# {wf.meta.name} report']
    contents += [f'* version: {wf.meta.version}']
    contents += [f'* result directory: {wf.wkdir}']
    contents += [f'* tasks: total={len(state)}, success={len(ok_tasks)}, failed={len(failed_tasks)}']

    contents += ['## Status per sample']
    stages = _unique(x['stage'] for x in state.values())
    keys = _unique(x['key'] for x in state.values() if x['key'])
    contents += ['| sample | ' + ' | '.join(stages) + ' |']
    contents += ['| :--- |' + ' :---: |' * len(stages)]
    for key in keys:
        row = []
        for stage in stages:
            states = [x['state'] for x in state.values() if x['key'] == key and x['stage'] == stage]
            if not states:
                row.append('-')
            elif 'failed' in states:
                row.append('failed')
            elif all(x == 'success' for x in states):
                row.append('success')
            else:
                row.append('/'.join(sorted(set(states))))
        contents += [f'| {key} | ' + ' | '.join(row) + ' |']

    if wf.failures:
        contents += ['## Failures']
        for name, error in wf.failures.items():
            contents += [f'### {name}', f'* {type(error).__name__}: {error}']
            if isinstance(error, ExternalToolFailure):
                tail = _tail(error.stderr)
                if tail:
                    contents += [f'* last lines of {error.stderr}:', '```'] + tail + ['```']

    evaluations = []
    snpeff_stats = []
    for task in wf.tasks.values():
        if task.name not in ok_tasks:
            continue
        if task.cmd.meta.name == 'VariantEval':
            evaluations.append((task.key, wf.output_path(task.outputs['out'])))
        elif task.cmd.meta.name == 'SnpEffAnnotate':
            snpeff_stats.append((task.key, wf.output_path(task.outputs['stats'])))

    if evaluations:
        contents += ['## Variant evaluation']
        for key, path in evaluations:
            if not os.path.exists(path):
                continue
            with open(path, errors='replace') as f:
                table = [x.rstrip('\n') for x in f if x.strip()]
            contents += [f'### {key}', '```'] + table + ['```']

    if snpeff_stats:
        contents += ['## SnpEff summary']
        for key, path in snpeff_stats:
            if not os.path.exists(path):
                continue
            contents += [f'### {key}', '```'] + _snpeff_summary(path) + ['```']

    contents += ['## Software versions']
    contents += ['| tool | version |', '| :--- | :---: |']
    for tool, version in versions.items():
        contents += [f'| {tool} | {version} |']

    with open(out, 'w') as f:
        for each in contents:
            if each.startswith('#'):
                f.write('\n')
            f.write(each + '\n')
    return out


def aggregate(wf, multiqc=False, multiqc_cmd=MULTIQC):
    """
    Write outdir/Report/exoseq_report.md and outdir/Report/software_versions.json.
    Runs after the workflow finished, whatever the result of the run.
    :return: report directory
    """
    report_dir = os.path.join(wf.wkdir, 'Report')
    try:
        os.makedirs(report_dir, exist_ok=True)
        if multiqc:
            run_multiqc(wf.wkdir, report_dir, multiqc_cmd)
        log_files = sorted(glob.glob(os.path.join(glob.escape(wf.wkdir), 'logs', '*.txt')))
        log_files += sorted(glob.glob(os.path.join(glob.escape(report_dir), '**', 'multiqc.log'), recursive=True))
        versions = software_versions(log_files)
        with open(os.path.join(report_dir, 'software_versions.json'), 'w') as f:
            json.dump(versions, f, indent=2)
        state = read_state(os.path.join(wf.wkdir, 'cmd_state.txt'))
        write_report(wf, state, versions, os.path.join(report_dir, 'exoseq_report.md'))
    except (OSError, ValueError, KeyError) as e:
        logger.exception(f'failed to aggregate results of {wf.meta.name}: {e}')
    return report_dir
