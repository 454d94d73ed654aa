"""Gene-set (pathway) definitions."""

from collections import OrderedDict
from pathlib import Path
from typing import Dict, List, Union
import logging

logger = logging.getLogger(__name__)


def read_gmt(path: Union[str, Path], sep: str = "\t") -> Dict[str, List[str]]:
    """Read a GMT file into an ordered mapping of gene set name to genes.

    Each line holds a set name, a description and the member genes. Empty
    members are dropped, duplicated members are kept once and a repeated
    set name keeps its first definition.

    Parameters
    ----------
    path : str or Path
        Path to the GMT file
    sep : str
        Field separator

    Returns
    -------
    Dict[str, List[str]]
        Gene set name to member gene ids, in file order
    """
    gene_sets: Dict[str, List[str]] = OrderedDict()
    with open(path) as f:
        for line_no, line in enumerate(f, start=1):
            line = line.rstrip("\r\n")
            if not line.strip():
                continue
            fields = line.split(sep)
            if len(fields) < 2:
                raise ValueError(f"{path}:{line_no}: expected name and description fields")
            name = fields[0].strip()
            if name in gene_sets:
                logger.warning("Duplicate gene set '%s' at line %d ignored", name, line_no)
                continue
            genes = [g.strip() for g in fields[2:] if g.strip()]
            gene_sets[name] = list(OrderedDict.fromkeys(genes))

    logger.info("Loaded %d gene sets from %s", len(gene_sets), path)
    return gene_sets
