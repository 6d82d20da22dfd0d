from .exoflow import Argument, Output, Command

"""
Steps of the exome variant workflow, from per-sample g.vcf to annotated and evaluated variants.
How to write a command:
1. cmd = Command()
2. meta: cmd.meta.{name, desc, source, version, function}
3. runtime: cmd.runtime.{tool, tool_dir, memory, cpu, timeout}
4. arguments: cmd.args[arg_name] = Argument(...), in the order of the command line
5. outputs: cmd.outputs[name] = Output(value='{arg_name}'), '{}' refers to an argument
6. return cmd

Every step takes the run key (sample name) and derives its output names from it only.
A 'fix' argument with value '&& tool ...' chains a second call into the same step.
"""

GATK = 'java -Xmx8g -jar GenomeAnalysisTK.jar'
SNPEFF = 'snpEff'
MULTIQC = 'multiqc'


def GenotypeGVCFs(key, gatk=GATK):
    cmd = Command()
    cmd.meta.version = 'GATK v3.8'
    cmd.meta.name = 'GenotypeGVCFs'
    cmd.meta.source = 'https://gatk.broadinstitute.org/hc/en-us/articles/360036899732-GenotypeGVCFs'
    cmd.meta.function = 'Perform joint genotyping on gVCF files produced by HaplotypeCaller'
    cmd.meta.desc = """
    GenotypeGVCFs merges gVCF records that were produced as part of the Best Practices workflow
    for GATK HaplotypeCaller. The input must possess genotype likelihoods produced by HaplotypeCaller
    with `-ERC GVCF` or `-ERC BP_RESOLUTION`.
    """
    cmd.runtime.memory = 8*1024**3
    cmd.runtime.cpu = 2
    cmd.runtime.tool = f'{gatk} -T GenotypeGVCFs'
    cmd.args['ref'] = Argument(prefix='-R ', type='infile', desc='reference fasta file')
    cmd.args['dbsnp'] = Argument(prefix='--dbsnp ', type='infile', desc='dbsnp vcf file')
    cmd.args['variant'] = Argument(prefix='--variant ', type='infile', desc='raw gvcf of the sample')
    cmd.args['threads'] = Argument(prefix='-nt ', default=2, desc='number of data threads')
    cmd.args['out'] = Argument(prefix='-o ', type='outstr', default=f'{key}_gvcf.vcf', desc='output vcf file name')
    cmd.outputs['out'] = Output(value='{out}', format='vcf')
    return cmd


def VariantSelect(key, mode='SNP', gatk=GATK):
    cmd = Command()
    cmd.meta.version = 'GATK v3.8'
    cmd.meta.name = 'VariantSelect'
    cmd.meta.source = 'https://gatk.broadinstitute.org/hc/en-us/articles/360036362532-SelectVariants'
    cmd.meta.function = 'Select a subset of variants by type'
    cmd.meta.desc = 'Split the genotyped variants into SNP and indel subsets, which are recalibrated separately'
    cmd.runtime.memory = 4*1024**3
    cmd.runtime.cpu = 1
    cmd.runtime.tool = f'{gatk} -T SelectVariants'
    cmd.args['ref'] = Argument(prefix='-R ', type='infile', desc='reference fasta file')
    cmd.args['variant'] = Argument(prefix='--variant ', type='infile', desc='genotyped vcf')
    cmd.args['selectType'] = Argument(prefix='-selectType ', type='fix', value=mode, range=['SNP', 'INDEL'], desc='type of variants to keep')
    cmd.args['out'] = Argument(prefix='-o ', type='outstr', default=f'{key}_raw_{mode.lower()}.vcf', desc='output vcf')
    cmd.outputs['out'] = Output(value='{out}', format='vcf')
    return cmd


def RecalibrateSNPs(key, gatk=GATK):
    cmd = Command()
    cmd.meta.version = 'GATK v3.8'
    cmd.meta.name = 'RecalibrateSNPs'
    cmd.meta.source = 'https://gatk.broadinstitute.org/hc/en-us/articles/360036351392-VariantRecalibrator'
    cmd.meta.function = 'Variant quality score recalibration of SNPs'
    cmd.meta.desc = """
    Build a recalibration model with VariantRecalibrator from omni/1000G/dbsnp training resources,
    then filter the SNPs with ApplyRecalibration at the given truth sensitivity level.
    """
    cmd.runtime.memory = 8*1024**3
    cmd.runtime.cpu = 2
    cmd.runtime.tool = f'{gatk} -T VariantRecalibrator'
    cmd.args['ref'] = Argument(prefix='-R ', type='infile', desc='reference fasta file')
    cmd.args['input'] = Argument(prefix='-input ', type='infile', desc='raw SNP vcf')
    cmd.args['mode'] = Argument(prefix='-mode ', type='fix', value='SNP', desc='Recalibration mode to employ')
    cmd.args['omni'] = Argument(prefix='-resource:omni,known=false,training=true,truth=true,prior=12.0 ', type='infile', desc='omni resource vcf')
    cmd.args['thousandg'] = Argument(prefix='-resource:1000G,known=false,training=true,truth=false,prior=10.0 ', type='infile', desc='one thousand genomes resource vcf')
    cmd.args['dbsnp'] = Argument(prefix='-resource:dbsnp,known=true,training=false,truth=false,prior=2.0 ', type='infile', desc='dbsnp resource vcf')
    cmd.args['use-annotation'] = Argument(prefix='-an ', multi_times=True, default=['DP', 'QD', 'FS', 'SOR', 'MQ', 'MQRankSum', 'ReadPosRankSum'], desc='annotations used by the model')
    cmd.args['tranche'] = Argument(prefix='-tranche ', multi_times=True, default=['100.0', '99.9', '99.5', '99.0', '90.0'], desc='recalibration tranche values')
    cmd.args['threads'] = Argument(prefix='-nt ', default=2, desc='number of data threads')
    cmd.args['recal'] = Argument(prefix='-recalFile ', type='outstr', default=f'{key}_snp.recal', desc='output recal file')
    cmd.args['tranches'] = Argument(prefix='-tranchesFile ', type='outstr', default=f'{key}_snp.tranches', desc='output tranches file')
    cmd.args['apply'] = Argument(prefix='&& ', type='fix', value=f'{gatk} -T ApplyRecalibration')
    cmd.args['apply_ref'] = Argument(prefix='-R ', type='infile', desc='reference fasta file')
    cmd.args['apply_input'] = Argument(prefix='-input ', type='infile', desc='raw SNP vcf, the same as input')
    cmd.args['apply_mode'] = Argument(prefix='-mode ', type='fix', value='SNP')
    cmd.args['apply_recal'] = Argument(prefix='-recalFile ', type='fix', value=f'{key}_snp.recal')
    cmd.args['apply_tranches'] = Argument(prefix='-tranchesFile ', type='fix', value=f'{key}_snp.tranches')
    cmd.args['ts_filter_level'] = Argument(prefix='--ts_filter_level ', default=99.5, desc='truth sensitivity level at which to start filtering')
    cmd.args['out'] = Argument(prefix='-o ', type='outstr', default=f'{key}_filtered_snp.vcf', desc='filtered SNP vcf')
    cmd.outputs['out'] = Output(value='{out}', format='vcf')
    cmd.outputs['recal'] = Output(value='{recal}')
    cmd.outputs['tranches'] = Output(value='{tranches}')
    return cmd


def RecalibrateIndels(key, gatk=GATK):
    cmd = Command()
    cmd.meta.version = 'GATK v3.8'
    cmd.meta.name = 'RecalibrateIndels'
    cmd.meta.source = 'https://gatk.broadinstitute.org/hc/en-us/articles/360036351392-VariantRecalibrator'
    cmd.meta.function = 'Variant quality score recalibration of indels'
    cmd.meta.desc = """
    Build a recalibration model with VariantRecalibrator from Mills/dbsnp resources,
    then filter the indels with ApplyRecalibration.
    """
    cmd.runtime.memory = 8*1024**3
    cmd.runtime.cpu = 2
    cmd.runtime.tool = f'{gatk} -T VariantRecalibrator'
    cmd.args['ref'] = Argument(prefix='-R ', type='infile', desc='reference fasta file')
    cmd.args['input'] = Argument(prefix='-input ', type='infile', desc='raw indel vcf')
    cmd.args['mode'] = Argument(prefix='-mode ', type='fix', value='INDEL', desc='Recalibration mode to employ')
    cmd.args['mills'] = Argument(prefix='-resource:mills,known=false,training=true,truth=true,prior=12.0 ', type='infile', desc='mills resource vcf')
    cmd.args['dbsnp'] = Argument(prefix='-resource:dbsnp,known=true,training=false,truth=false,prior=2.0 ', type='infile', desc='dbsnp resource vcf')
    cmd.args['use-annotation'] = Argument(prefix='-an ', multi_times=True, default=['DP', 'FS', 'SOR', 'MQRankSum', 'ReadPosRankSum'], desc='annotations used by the model')
    cmd.args['tranche'] = Argument(prefix='-tranche ', multi_times=True, default=['100.0', '99.9', '99.5', '99.0', '90.0'], desc='recalibration tranche values')
    cmd.args['max-gaussians'] = Argument(prefix='--maxGaussians ', default=4, desc='Max number of Gaussians for the positive model')
    cmd.args['threads'] = Argument(prefix='-nt ', default=2, desc='number of data threads')
    cmd.args['recal'] = Argument(prefix='-recalFile ', type='outstr', default=f'{key}_indel.recal', desc='output recal file')
    cmd.args['tranches'] = Argument(prefix='-tranchesFile ', type='outstr', default=f'{key}_indel.tranches', desc='output tranches file')
    cmd.args['apply'] = Argument(prefix='&& ', type='fix', value=f'{gatk} -T ApplyRecalibration')
    cmd.args['apply_ref'] = Argument(prefix='-R ', type='infile', desc='reference fasta file')
    cmd.args['apply_input'] = Argument(prefix='-input ', type='infile', desc='raw indel vcf, the same as input')
    cmd.args['apply_mode'] = Argument(prefix='-mode ', type='fix', value='INDEL')
    cmd.args['apply_recal'] = Argument(prefix='-recalFile ', type='fix', value=f'{key}_indel.recal')
    cmd.args['apply_tranches'] = Argument(prefix='-tranchesFile ', type='fix', value=f'{key}_indel.tranches')
    cmd.args['ts_filter_level'] = Argument(prefix='--ts_filter_level ', default=99.0, desc='truth sensitivity level at which to start filtering')
    cmd.args['out'] = Argument(prefix='-o ', type='outstr', default=f'{key}_filtered_indels.vcf', desc='filtered indel vcf')
    cmd.outputs['out'] = Output(value='{out}', format='vcf')
    cmd.outputs['recal'] = Output(value='{recal}')
    cmd.outputs['tranches'] = Output(value='{tranches}')
    return cmd


def CombineVariants(key, gatk=GATK):
    cmd = Command()
    cmd.meta.version = 'GATK v3.8'
    cmd.meta.name = 'CombineVariants'
    cmd.meta.function = 'Combine the filtered SNPs and indels of one sample'
    cmd.meta.desc = "Combine variants"
    cmd.runtime.memory = 4*1024**3
    cmd.runtime.cpu = 1
    cmd.runtime.tool = f'{gatk} -T CombineVariants'
    cmd.args['ref'] = Argument(prefix='-R ', type='infile', desc='reference fasta file')
    cmd.args['snp'] = Argument(prefix='--variant ', type='infile', desc='filtered SNP vcf')
    cmd.args['indel'] = Argument(prefix='--variant ', type='infile', desc='filtered indel vcf')
    cmd.args['genotypemergeoption'] = Argument(prefix='--genotypemergeoption ', default='UNSORTED', range=['UNIQUIFY', 'PRIORITIZE', 'UNSORTED', 'REQUIRE_UNIQUE'])
    cmd.args['out'] = Argument(prefix='-o ', type='outstr', default=f'{key}_combined_variants.vcf', desc='combined vcf')
    cmd.outputs['out'] = Output(value='{out}', format='vcf')
    return cmd


def SnpEffAnnotate(key, snpeff=SNPEFF):
    cmd = Command()
    cmd.meta.version = 'SnpEff 4.3'
    cmd.meta.name = 'SnpEffAnnotate'
    cmd.meta.source = 'https://pcingola.github.io/SnpEff/'
    cmd.meta.function = 'Annotate variants and predict their functional effects'
    cmd.meta.desc = 'Genetic variant annotation and functional effect prediction, the output is in the GATK compatible format'
    cmd.runtime.memory = 4*1024**3
    cmd.runtime.cpu = 1
    cmd.runtime.tool = snpeff
    cmd.args['config'] = Argument(prefix='-c ', type='infile', level='optional', desc='snpEff.config file')
    cmd.args['csvStats'] = Argument(prefix='-csvStats ', type='outstr', default=f'{key}_snpEff_stats.csv', desc='statistics in csv format')
    cmd.args['format'] = Argument(prefix='-o ', default='gatk', range=['gatk', 'vcf', 'bed', 'bedAnn'], desc='output format')
    cmd.args['verbose'] = Argument(prefix='-v', type='bool', default=True, desc='verbose mode, the version is written to the log')
    cmd.args['genome_db'] = Argument(prefix='', desc='snpEff database, such as GRCh37.75')
    cmd.args['vcf'] = Argument(prefix='', type='infile', desc='input vcf')
    cmd.args['out'] = Argument(prefix='> ', type='outstr', default=f'{key}_combined_variants_snpEff.vcf', desc='annotated vcf')
    cmd.outputs['out'] = Output(value='{out}', format='vcf')
    cmd.outputs['stats'] = Output(value='{csvStats}', format='csv')
    return cmd


def GATKAnnotate(key, gatk=GATK):
    cmd = Command()
    cmd.meta.version = 'GATK v3.8'
    cmd.meta.name = 'GATKAnnotate'
    cmd.meta.source = 'https://software.broadinstitute.org/gatk/documentation/tooldocs/3.8-0/org_broadinstitute_gatk_tools_walkers_annotator_VariantAnnotator.php'
    cmd.meta.function = 'Add the SnpEff annotation to the combined variants'
    cmd.runtime.memory = 4*1024**3
    cmd.runtime.cpu = 1
    cmd.runtime.tool = f'{gatk} -T VariantAnnotator'
    cmd.args['ref'] = Argument(prefix='-R ', type='infile', desc='reference fasta file')
    cmd.args['annotation'] = Argument(prefix='-A ', multi_times=True, default=['SnpEff'], desc='annotations to add')
    cmd.args['variant'] = Argument(prefix='--variant ', type='infile', desc='combined vcf')
    cmd.args['snpEffFile'] = Argument(prefix='--snpEffFile ', type='infile', desc='vcf annotated by snpEff')
    cmd.args['out'] = Argument(prefix='-o ', type='outstr', default=f'{key}_combined_variants_annotated.vcf', desc='annotated vcf')
    cmd.outputs['out'] = Output(value='{out}', format='vcf')
    return cmd


def VariantEval(key, gatk=GATK):
    cmd = Command()
    cmd.meta.version = 'GATK v3.8'
    cmd.meta.name = 'VariantEval'
    cmd.meta.source = 'https://software.broadinstitute.org/gatk/documentation/tooldocs/3.8-0/org_broadinstitute_gatk_tools_walkers_varianteval_VariantEval.php'
    cmd.meta.function = 'Summarise the combined variants: counts, Ti/Tv, overlap with dbsnp'
    cmd.runtime.memory = 4*1024**3
    cmd.runtime.cpu = 1
    cmd.runtime.tool = f'{gatk} -T VariantEval'
    cmd.args['ref'] = Argument(prefix='-R ', type='infile', desc='reference fasta file')
    cmd.args['eval'] = Argument(prefix='--eval ', type='infile', desc='vcf to evaluate')
    cmd.args['dbsnp'] = Argument(prefix='--dbsnp ', type='infile', desc='dbsnp vcf file')
    cmd.args['intervals'] = Argument(prefix='-L ', type='infile', level='optional', desc='target intervals of the capture kit')
    cmd.args['no_standard_modules'] = Argument(prefix='--doNotUseAllStandardModules', type='bool', default=True)
    cmd.args['evalModule'] = Argument(prefix='--evalModule ', multi_times=True, default=['TiTvVariantEvaluator', 'CountVariants', 'CompOverlap', 'ValidationReport'])
    cmd.args['stratificationModule'] = Argument(prefix='--stratificationModule ', multi_times=True, default=['Filter'])
    cmd.args['out'] = Argument(prefix='-o ', type='outstr', default=f'{key}_combined_variants_evaluation.eval', desc='evaluation report')
    cmd.outputs['out'] = Output(value='{out}', format='gatkreport')
    return cmd


def MultiQC(multiqc=MULTIQC):
    cmd = Command()
    cmd.meta.name = 'MultiQC'
    cmd.meta.source = 'https://multiqc.info/'
    cmd.meta.function = 'Aggregate results of bioinformatics analyses into a single report'
    cmd.runtime.memory = 2*1024**3
    cmd.runtime.cpu = 1
    cmd.runtime.tool = multiqc
    cmd.args['force'] = Argument(prefix='-f', type='bool', default=True, desc='overwrite existing reports')
    cmd.args['outdir'] = Argument(prefix='-o ', default='.', desc='output directory')
    cmd.args['filename'] = Argument(prefix='-n ', default='multiqc_report.html', desc='report file name')
    cmd.args['analysis_dir'] = Argument(prefix='', type='indir', desc='directory to search for analysis logs')
    cmd.outputs['report'] = Output(value='{outdir}/{filename}')
    return cmd
