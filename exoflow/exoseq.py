import os
import re
import sys
import glob
from . import __version__
from .exoflow import Workflow, TopVar
from .errors import ConfigurationError, MissingUpstreamArtifact
from .resources import resolve_bundle, GENOME_FIELDS, KIT_FIELDS
from .commands import GATK, SNPEFF, MULTIQC
from .commands import GenotypeGVCFs, VariantSelect, RecalibrateSNPs, RecalibrateIndels, CombineVariants
from .commands import SnpEffAnnotate, GATKAnnotate, VariantEval
from . import report

__author__ = 'gdq'

"""
Exome variant workflow: per-sample raw g.vcf -> genotyped, recalibrated, annotated and evaluated variants.
Every task carries the sample name as its run key, and outputs only flow between tasks of the same key.
"""

# sample name is the first group, e.g. 'patient1' of 'patient1.g.vcf' or 'patient1.raw.g.vcf.gz'
KEY_REGEX = r'(.+?)(?:\.raw)?(?:\.g)?\.vcf(?:\.gz)?'


def collect_inputs(reads, key_regex=KEY_REGEX):
    """
    :param reads: list of file paths or glob patterns
    :param key_regex: regExp matching the whole file name, the first group is the sample name
    :return: dict(sample=path), in the order of the input
    """
    paths = []
    for each in reads:
        matched = sorted(glob.glob(each))
        if not matched:
            raise ConfigurationError(f'no raw variant file matches "{each}"', ['reads'])
        paths += [x for x in matched if x not in paths]

    samples = dict()
    for path in paths:
        match = re.fullmatch(key_regex, os.path.basename(path))
        if not match:
            raise ConfigurationError(f'failed to get sample name from {path} with "{key_regex}"', ['key_regex'])
        key = match.group(1)
        if key in samples:
            raise ConfigurationError(f'sample {key} has more than one input file: {samples[key]}, {path}', ['reads'])
        samples[key] = path
    return samples


def bundle_topvars(bundle):
    top_vars = dict()
    for name, value in bundle.as_dict().items():
        if name == 'snpeff_db':
            continue
        # bwa index is a prefix rather than a file
        top_vars[name] = TopVar(value=value, name=name, type='str' if name == 'bwa_index' else 'infile')
    return top_vars


def combine_variants(wf, filtered_snp, filtered_indel, gatk=GATK):
    """
    Join the two recalibrated branches by sample name.
    :param filtered_snp: {key: Output}
    :param filtered_indel: {key: Output}
    :return: {key: Output of the combined vcf}
    """
    combined = dict()
    for key, snp, indel in wf.join_by_key(filtered_snp, filtered_indel, stage='CombineVariants'):
        task, args = wf.add_task(CombineVariants(key, gatk), key=key, tag=key, parent_wkdir='CombineVariants')
        args['ref'].value = wf.topvars['gfasta']
        args['snp'].value = snp
        args['indel'].value = indel
        combined[key] = task.outputs['out']
    return combined


def build_workflow(wf, samples, snpeff_db, gatk=GATK, snpeff=SNPEFF, save_intermediates=False, save_combined=True):
    """
    Add the tasks of all samples to wf. wf.topvars must hold the resolved resource bundle.
    :param samples: dict(sample=raw g.vcf TopVar)
    """
    top_vars = wf.topvars

    genotyped = dict()
    for key, raw_vcf in samples.items():
        task, args = wf.add_task(GenotypeGVCFs(key, gatk), key=key, tag=key, parent_wkdir='GenotypeGVCFs')
        args['ref'].value = top_vars['gfasta']
        args['dbsnp'].value = top_vars['dbsnp']
        args['variant'].value = raw_vcf
        task.outputs['out'].report = save_intermediates
        genotyped[key] = task.outputs['out']

    # fan out to SNP and INDEL subsets
    selected = dict(SNP=dict(), INDEL=dict())
    for key, gvcf in genotyped.items():
        for mode in selected:
            task, args = wf.add_task(VariantSelect(key, mode, gatk), key=key, tag=f'{mode}-{key}', parent_wkdir='VariantSelect')
            args['ref'].value = top_vars['gfasta']
            args['variant'].value = gvcf
            task.outputs['out'].report = save_intermediates
            selected[mode][key] = task.outputs['out']

    filtered_snp = dict()
    for key, raw_snp in selected['SNP'].items():
        task, args = wf.add_task(RecalibrateSNPs(key, gatk), key=key, tag=key, parent_wkdir='RecalibrateSNPs')
        args['ref'].value = args['apply_ref'].value = top_vars['gfasta']
        args['input'].value = args['apply_input'].value = raw_snp
        args['omni'].value = top_vars['omni']
        args['thousandg'].value = top_vars['thousandg']
        args['dbsnp'].value = top_vars['dbsnp']
        for each in task.outputs.values():
            each.report = save_intermediates
        filtered_snp[key] = task.outputs['out']

    filtered_indel = dict()
    for key, raw_indel in selected['INDEL'].items():
        task, args = wf.add_task(RecalibrateIndels(key, gatk), key=key, tag=key, parent_wkdir='RecalibrateIndels')
        args['ref'].value = args['apply_ref'].value = top_vars['gfasta']
        args['input'].value = args['apply_input'].value = raw_indel
        args['mills'].value = top_vars['mills']
        args['dbsnp'].value = top_vars['dbsnp']
        for each in task.outputs.values():
            each.report = save_intermediates
        filtered_indel[key] = task.outputs['out']

    combined = combine_variants(wf, filtered_snp, filtered_indel, gatk)

    # combined vcf feeds annotation and evaluation
    for key, vcf in combined.items():
        vcf.report = save_combined
        snpeff_task, args = wf.add_task(SnpEffAnnotate(key, snpeff), key=key, tag=key, parent_wkdir='SnpEffAnnotate')
        if top_vars.get('snpeff_config') and top_vars['snpeff_config'].value:
            args['config'].value = top_vars['snpeff_config']
        args['genome_db'].value = snpeff_db
        args['vcf'].value = vcf
        snpeff_task.outputs['out'].report = True
        snpeff_task.outputs['stats'].report = True

        annotate_task, args = wf.add_task(GATKAnnotate(key, gatk), key=key, tag=key, parent_wkdir='GATKAnnotate')
        args['ref'].value = top_vars['gfasta']
        args['variant'].value = vcf
        args['snpEffFile'].value = snpeff_task.outputs['out']
        annotate_task.outputs['out'].report = True

        eval_task, args = wf.add_task(VariantEval(key, gatk), key=key, tag=key, parent_wkdir='VariantEval')
        args['ref'].value = top_vars['gfasta']
        args['eval'].value = vcf
        args['dbsnp'].value = top_vars['dbsnp']
        args['intervals'].value = top_vars['target']
        eval_task.outputs['out'].report = True
    return combined


def pipeline(argv=None):
    wf = Workflow()
    wf.meta.version = __version__
    wf.meta.name = 'ExoSeq-Variant-Workflow'
    wf.meta.source = """
    ## https://gatk.broadinstitute.org/hc/en-us/articles/360035535932-Germline-short-variant-discovery-SNPs-Indels-
    ## https://pcingola.github.io/SnpEff/
    """
    wf.meta.desc = """
    Exome sequencing variant workflow, starting from per-sample raw variant calls (g.vcf by HaplotypeCaller):
    * GenotypeGVCFs for genotyping
    * SelectVariants to split SNPs and indels
    * VQSR (VariantRecalibrator + ApplyRecalibration) for SNPs and indels separately
    * CombineVariants to merge the filtered SNPs and indels of each sample
    * SnpEff and VariantAnnotator for annotation
    * VariantEval for evaluation
    Reference files are resolved from -genome and -kit, any of them can be overridden by its own argument.
    Example:
    exoseq -reads 'vcf/*.g.vcf' -genome GRCh37 -kit agilent_v5 -ref_dir /data/ref -outdir result --run
    """
    wf.init_argparser(argv)
    wf.add_argument('-reads', nargs='+', required=True, help='raw variant calls of the samples, file paths or glob patterns')
    wf.add_argument('-key_regex', default=KEY_REGEX, help='python regExp matching the whole input file name, the first group is used as sample name')
    wf.add_argument('-genome', required=True, help='genome name, such as GRCh37 or GRCh38. A genome not in the built-in table needs all of -dbsnp, -thousandg, -mills, -omni, -gfasta, -bwa_index')
    wf.add_argument('-kit', required=False, help='capture kit name, such as agilent_v5. A kit not in the built-in table needs -bait and -target')
    wf.add_argument('-ref_dir', required=False, help='directory containing the reference files named in the genome and kit tables')
    wf.add_argument('-config', required=False, help='json file with extra genome/kit entries: {"genomes": {name: {...}}, "kits": {name: {...}}}')
    wf.add_argument('-bait', required=False, help='bait intervals of the capture kit')
    wf.add_argument('-target', required=False, help='target intervals of the capture kit, used by VariantEval')
    wf.add_argument('-target_bed', required=False, help='target regions of the capture kit in bed format')
    wf.add_argument('-dbsnp', required=False, help='dbsnp vcf file')
    wf.add_argument('-thousandg', required=False, help='1000 genomes high confidence snp vcf file')
    wf.add_argument('-mills', required=False, help='Mills and 1000G gold standard indel vcf file')
    wf.add_argument('-omni', required=False, help='1000G omni2.5 snp vcf file')
    wf.add_argument('-gfasta', required=False, help='reference fasta file')
    wf.add_argument('-bwa_index', required=False, help='bwa index prefix of the reference')
    wf.add_argument('-snpeff_db', required=False, help='snpEff database, default is decided by -genome')
    wf.add_argument('-snpeff_config', required=False, help='snpEff.config file')
    wf.add_argument('-gatk', default=GATK, help='command to start GATK3')
    wf.add_argument('-snpeff', default=SNPEFF, help='command to start snpEff')
    wf.add_argument('-multiqc_cmd', default=MULTIQC, help='command to start MultiQC')
    wf.add_argument('--save_intermediates', default=False, action='store_true', help='also publish genotyped, selected and recalibrated files to outdir/Outputs')
    wf.add_argument('--no_save_combined', default=False, action='store_true', help='do not publish the combined vcf to outdir/Outputs')
    wf.add_argument('--multiqc', default=False, action='store_true', help='run MultiQC over outdir after the workflow finished')
    wf.parse_args(argv)
    args = wf.args

    try:
        overrides = {x: getattr(args, x) for x in GENOME_FIELDS + KIT_FIELDS + ('snpeff_db',)}
        bundle = resolve_bundle(args.genome, kit=args.kit, overrides=overrides, ref_dir=args.ref_dir, config=args.config)
        if not bundle.snpeff_db:
            raise ConfigurationError(f'no snpEff database for genome "{args.genome}"', ['snpeff_db'])
        top_vars = bundle_topvars(bundle)
        top_vars['snpeff_config'] = TopVar(value=args.snpeff_config, name='snpeff_config', type='infile')
        wf.add_topvars(top_vars)
        samples = collect_inputs(args.reads, args.key_regex)
        samples = {k: TopVar(value=v, name=f'reads:{k}', type='infile') for k, v in samples.items()}
    except ConfigurationError as e:
        sys.exit(f'ConfigurationError: {e}')

    try:
        build_workflow(
            wf, samples, bundle.snpeff_db, gatk=args.gatk, snpeff=args.snpeff,
            save_intermediates=args.save_intermediates, save_combined=not args.no_save_combined
        )
    except MissingUpstreamArtifact as e:
        sys.exit(f'MissingUpstreamArtifact: {e}')

    wf.run()
    if args.run:
        report.aggregate(wf, multiqc=args.multiqc, multiqc_cmd=args.multiqc_cmd)
    return wf


def main():
    wf = pipeline()
    if wf.args.run and not wf.success:
        sys.exit(1)


if __name__ == '__main__':
    main()
