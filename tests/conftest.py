import os
import sys
import textwrap

import pytest

from exoflow.resources import GENOMES, KITS
from exoflow.runner import RunCommands


VCF_HEADER = [
    '##fileformat=VCFv4.2',
    '##contig=<ID=1,length=249250621>',
    '#CHROM\tPOS\tID\tREF\tALT\tQUAL\tFILTER\tINFO\tFORMAT\tSAMPLE',
]

# 2 SNPs and 1 indel
RECORDS = [
    '1\t1000\trs1\tA\tG\t50\t.\tDP=30\tGT\t0/1',
    '1\t2000\trs2\tC\tT\t60\t.\tDP=25\tGT\t1/1',
    '1\t3000\t.\tAT\tA\t40\t.\tDP=20\tGT\t0/1',
]

FAKE_GATK = textwrap.dedent('''
    import os
    import sys


    def parse(argv):
        opts = dict()
        i = 0
        while i < len(argv):
            if argv[i].startswith('-') and i + 1 < len(argv) and not argv[i + 1].startswith('-'):
                opts.setdefault(argv[i], []).append(argv[i + 1])
                i += 2
            else:
                opts.setdefault(argv[i], []).append(True)
                i += 1
        return opts


    def read_vcf(path):
        header, records = [], []
        with open(path) as f:
            for line in f:
                (header if line.startswith('#') else records).append(line.rstrip('\\n'))
        return header, records


    def write_vcf(path, header, records):
        with open(path, 'w') as f:
            for line in header + records:
                f.write(line + '\\n')


    def is_snp(record):
        fields = record.split('\\t')
        return len(fields[3]) == 1 and all(len(x) == 1 for x in fields[4].split(','))


    opts = parse(sys.argv[1:])
    tool = opts['-T'][0]
    sys.stderr.write('INFO  10:00:00,000 HelpFormatter - The Genome Analysis Toolkit (GATK) v3.8-1-0-gf15c1c3ef\\n')
    # FAKE_GATK_FAIL lists task names, such as 'RecalibrateSNPs-sampleA'
    if os.path.basename(os.getcwd()) in os.environ.get('FAKE_GATK_FAIL', '').split(','):
        sys.stderr.write(f'##### ERROR MESSAGE: {tool} failed on purpose\\n')
        sys.exit(3)

    if tool == 'GenotypeGVCFs':
        header, records = read_vcf(opts['--variant'][0])
        write_vcf(opts['-o'][0], header, records)
    elif tool == 'SelectVariants':
        header, records = read_vcf(opts['--variant'][0])
        if opts['-selectType'][0] == 'SNP':
            records = [x for x in records if is_snp(x)]
        else:
            records = [x for x in records if not is_snp(x)]
        write_vcf(opts['-o'][0], header, records)
    elif tool == 'VariantRecalibrator':
        with open(opts['-recalFile'][0], 'w') as f:
            f.write('##fileformat=VCFv4.2\\n')
        with open(opts['-tranchesFile'][0], 'w') as f:
            f.write('# Variant quality score tranches file\\n')
    elif tool == 'ApplyRecalibration':
        if not os.path.exists(opts['-recalFile'][0]):
            sys.exit(4)
        header, records = read_vcf(opts['-input'][0])
        records = ['\\t'.join(x.split('\\t')[:6] + ['PASS'] + x.split('\\t')[7:]) for x in records]
        write_vcf(opts['-o'][0], header, records)
    elif tool == 'CombineVariants':
        header, records = None, []
        for each in opts['--variant']:
            h, r = read_vcf(each)
            header = header or h
            records += r
        write_vcf(opts['-o'][0], header, records)
    elif tool == 'VariantAnnotator':
        if not os.path.exists(opts['--snpEffFile'][0]):
            sys.exit(4)
        header, records = read_vcf(opts['--variant'][0])
        write_vcf(opts['-o'][0], header, records)
    elif tool == 'VariantEval':
        header, records = read_vcf(opts['--eval'][0])
        with open(opts['-o'][0], 'w') as f:
            f.write('#:GATKReport.v1.1:1\\n')
            f.write('CountVariants  nVariantLoci\\n')
            f.write(f'CountVariants  {len(records)}\\n')
    else:
        sys.exit(2)
''')

FAKE_SNPEFF = textwrap.dedent('''
    import sys

    argv = sys.argv[1:]
    positional = []
    stats = None
    i = 0
    while i < len(argv):
        if argv[i] in ('-csvStats', '-o', '-c'):
            if argv[i] == '-csvStats':
                stats = argv[i + 1]
            i += 2
        elif argv[i].startswith('-'):
            i += 1
        else:
            positional.append(argv[i])
            i += 1
    genome_db, vcf = positional
    sys.stderr.write('SnpEff version SnpEff 4.3t (build 2017-11-24 10:18), by Pablo Cingolani\\n')
    number = 0
    with open(vcf) as f:
        for line in f:
            if not line.startswith('#'):
                number += 1
                line = line.rstrip('\\n') + ';EFF=missense_variant\\n'
            sys.stdout.write(line)
    with open(stats, 'w') as f:
        f.write('# Summary table\\n')
        f.write(f'Genome, {genome_db}\\n')
        f.write(f'Number_of_variants_processed, {number}\\n')
        f.write('\\n# Change rate by chromosome\\n')
        f.write('Chromosome, Length, Changes\\n')
''')


def write_vcf(path, records):
    with open(path, 'w') as f:
        for line in VCF_HEADER + records:
            f.write(line + '\n')
    return str(path)


def vcf_records(path):
    with open(path) as f:
        return [x.rstrip('\n') for x in f if x.strip() and not x.startswith('#')]


@pytest.fixture
def fake_tools(tmp_path):
    tool_dir = tmp_path / 'tools'
    tool_dir.mkdir()
    (tool_dir / 'fake_gatk.py').write_text(FAKE_GATK)
    (tool_dir / 'fake_snpeff.py').write_text(FAKE_SNPEFF)
    return dict(
        gatk=f'{sys.executable} {tool_dir / "fake_gatk.py"}',
        snpeff=f'{sys.executable} {tool_dir / "fake_snpeff.py"}',
    )


@pytest.fixture
def ref_dir(tmp_path):
    """A reference directory holding the GRCh37 and agilent_v5 files named in the built-in tables"""
    path = tmp_path / 'ref'
    for name, value in list(GENOMES['GRCh37'].items()) + list(KITS['agilent_v5'].items()):
        if name == 'snpeff_db':
            continue
        target = path / value
        target.parent.mkdir(parents=True, exist_ok=True)
        if name.endswith('bed'):
            target.write_text('1\t900\t3100\n')
        elif name in ('bait', 'target'):
            target.write_text('@HD\tVN:1.6\n1\t900\t3100\t+\ttarget\n')
        else:
            write_vcf(target, [])
    return str(path)


@pytest.fixture
def fast_runner(monkeypatch):
    monkeypatch.setattr(RunCommands, 'poll_interval', 0.05)


@pytest.fixture
def run_exoseq(tmp_path, fake_tools, ref_dir, fast_runner):
    from exoflow.exoseq import pipeline

    def _run(reads, outdir, *extra):
        argv = [
            '-reads', *reads, '-genome', 'GRCh37', '-kit', 'agilent_v5', '-ref_dir', ref_dir,
            '-gatk', fake_tools['gatk'], '-snpeff', fake_tools['snpeff'],
            '-outdir', str(outdir), '-threads', '3', '--run', *extra
        ]
        return pipeline(argv)
    return _run


def relative_files(root):
    files = set()
    for parent, dirs, names in os.walk(root):
        for name in names:
            files.add(os.path.relpath(os.path.join(parent, name), root))
    return files
