import os
import json
import logging
from dataclasses import dataclass, fields, asdict
from typing import Dict
from .errors import MissingKitConfig, MissingGenomeConfig, ConfigurationError

__author__ = 'gdq'
logger = logging.getLogger(__name__)

"""
Resolve the reference/resource files of a run from a genome name and a kit name.
Relative paths in the tables below are taken relative to the reference directory (-ref_dir).
"""

GENOME_FIELDS = ('dbsnp', 'thousandg', 'mills', 'omni', 'gfasta', 'bwa_index')
KIT_FIELDS = ('bait', 'target', 'target_bed')
# kits missing from the table must at least provide these
KIT_REQUIRED = ('bait', 'target')

GENOMES = {
    'GRCh37': dict(
        gfasta='human_g1k_v37.fasta',
        bwa_index='human_g1k_v37.fasta',
        dbsnp='dbsnp_138.b37.vcf',
        thousandg='1000G_phase1.snps.high_confidence.b37.vcf',
        mills='Mills_and_1000G_gold_standard.indels.b37.vcf',
        omni='1000G_omni2.5.b37.vcf',
        snpeff_db='GRCh37.75',
    ),
    'GRCh38': dict(
        gfasta='Homo_sapiens_assembly38.fasta',
        bwa_index='Homo_sapiens_assembly38.fasta',
        dbsnp='dbsnp_146.hg38.vcf.gz',
        thousandg='1000G_phase1.snps.high_confidence.hg38.vcf.gz',
        mills='Mills_and_1000G_gold_standard.indels.hg38.vcf.gz',
        omni='1000G_omni2.5.hg38.vcf.gz',
        snpeff_db='GRCh38.86',
    ),
}

KITS = {
    'agilent_v5': dict(
        bait='agilent_v5/S04380110_Covered.interval_list',
        target='agilent_v5/S04380110_Regions.interval_list',
        target_bed='agilent_v5/S04380110_Regions.bed',
    ),
    'agilent_v6': dict(
        bait='agilent_v6/S07604514_Covered.interval_list',
        target='agilent_v6/S07604514_Regions.interval_list',
        target_bed='agilent_v6/S07604514_Regions.bed',
    ),
    'twist_core': dict(
        bait='twist_core/Twist_Exome_Core_Covered_Targets.interval_list',
        target='twist_core/Twist_Exome_Core_Targets.interval_list',
        target_bed='twist_core/Twist_Exome_Core_Targets.bed',
    ),
}


@dataclass()
class ResourceBundle:
    gfasta: str
    bwa_index: str
    dbsnp: str
    thousandg: str
    mills: str
    omni: str
    bait: str
    target: str
    target_bed: str = None
    snpeff_db: str = None

    def as_dict(self) -> Dict[str, str]:
        return asdict(self)

    @classmethod
    def field_names(cls):
        return [x.name for x in fields(cls)]


def load_tables(config_file):
    """
    Read extra genome/kit entries from a json file shaped like:
    {"genomes": {"name": {"gfasta": ..., ...}}, "kits": {"name": {"bait": ..., ...}}}
    Entries in the file replace the built-in entries of the same name.
    """
    try:
        with open(config_file) as f:
            cfg = json.load(f)
    except (OSError, ValueError) as e:
        raise ConfigurationError(f'failed to load resource config {config_file}: {e}', ['config'])
    unknown = set(cfg) - {'genomes', 'kits'}
    if unknown:
        raise ConfigurationError(f'unexpected sections {sorted(unknown)} in {config_file}')
    genomes = dict(GENOMES)
    genomes.update(cfg.get('genomes', {}))
    kits = dict(KITS)
    kits.update(cfg.get('kits', {}))
    return genomes, kits


def _in_ref_dir(path, ref_dir):
    if path is None or ref_dir is None or os.path.isabs(path):
        return path
    return os.path.join(ref_dir, path)


def resolve_bundle(genome, kit=None, overrides=None, ref_dir=None, config=None, genomes=None, kits=None):
    """
    :param genome: genome name, looked up in the genome table
    :param kit: capture kit name, looked up in the kit table
    :param overrides: dict of explicitly supplied paths, they always win over table values
    :param ref_dir: directory that relative table paths are resolved against
    :param config: json file with extra genome/kit entries, see load_tables
    :param genomes: genome table, default GENOMES
    :param kits: kit table, default KITS
    :return: ResourceBundle
    """
    if config:
        genomes, kits = load_tables(config)
    genomes = GENOMES if genomes is None else genomes
    kits = KITS if kits is None else kits
    overrides = {k: v for k, v in (overrides or {}).items() if v is not None}
    unknown = set(overrides) - set(ResourceBundle.field_names())
    if unknown:
        raise ConfigurationError(f'unknown resource parameters {sorted(unknown)}')

    values = dict()
    if kit in kits:
        values.update({k: _in_ref_dir(v, ref_dir) for k, v in kits[kit].items()})
    else:
        missing = [x for x in KIT_REQUIRED if x not in overrides]
        if missing:
            raise MissingKitConfig(f'kit "{kit}" is not configured, please provide kit files explicitly', missing)
    if genome in genomes:
        values.update({k: _in_ref_dir(v, ref_dir) if k != 'snpeff_db' else v for k, v in genomes[genome].items()})
    else:
        missing = [x for x in GENOME_FIELDS if x not in overrides]
        if missing:
            raise MissingGenomeConfig(f'genome "{genome}" is not configured, please provide genome files explicitly', missing)
    values.update(overrides)

    # a table entry from a user config may be incomplete
    missing = [x for x in GENOME_FIELDS + KIT_REQUIRED if not values.get(x)]
    if missing:
        raise ConfigurationError(f'incomplete resource bundle for genome "{genome}" and kit "{kit}"', missing)
    bundle = ResourceBundle(**{k: v for k, v in values.items() if k in ResourceBundle.field_names()})
    logger.info(f'resolved resource bundle for genome={genome}, kit={kit}: {bundle.as_dict()}')
    return bundle
