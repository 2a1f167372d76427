import anndata as ad
import pandas as pd
import numpy as np
import logging
import re
from pathlib import Path

from deconvflow.utils.exceptions import DataError

logger = logging.getLogger('deconvflow.core.data_loader')

_DELIMITED_SUFFIXES = {'.csv': ',', '.tsv': '\t', '.txt': '\t'}

# pandas names empty header cells "Unnamed: <position>"
_UNNAMED_COLUMN = re.compile(r"^Unnamed: \d+(_level_\d+)?$")

def _infer_format(path):
    suffixes = [s.lower() for s in path.suffixes]
    if suffixes and suffixes[-1] == '.gz':
        suffixes = suffixes[:-1]
    if not suffixes:
        raise ValueError(f"Could not infer format from path: {path}")
    suffix = suffixes[-1]
    if suffix == '.h5ad':
        return 'h5ad', None
    if suffix in _DELIMITED_SUFFIXES:
        return 'delimited', _DELIMITED_SUFFIXES[suffix]
    raise ValueError(f"Unsupported data format: {suffix}")

def _read_delimited(path, sep, index_col):
    df = pd.read_csv(path, sep=sep, index_col=index_col)
    df.index = df.index.astype(str)
    return df

def load_contribution_matrix(path, deconv_key='deconv_spotlight', index_col=0, sep=None):
    """
    Load a raw spot x cell-type contribution matrix

    Parameters
    ----------
    path : str or Path
        Path to a delimited file (csv, tsv, txt, optionally gzipped) with spot
        ids in ``index_col``, or to an h5ad file
    deconv_key : str, optional
        Key in adata.obsm holding the matrix for h5ad input
    index_col : int or str, optional
        Column holding the spot ids in delimited files
    sep : str, optional
        Field separator. If None, inferred from the file suffix

    Returns
    -------
    pandas.DataFrame
        Contribution matrix indexed by spot id. Columns without a header are
        returned with a missing (NaN) label.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Contribution matrix file not found: {path}")

    fmt, default_sep = _infer_format(path)
    logger.info(f"Loading contribution matrix from {path} (format: {fmt})")

    if fmt == 'h5ad':
        adata = ad.read_h5ad(path)
        if deconv_key not in adata.obsm:
            raise DataError(f"Deconvolution key {deconv_key} not found in adata.obsm")
        matrix = adata.obsm[deconv_key]
        if not isinstance(matrix, pd.DataFrame):
            names = adata.uns.get(f'{deconv_key}_names')
            if names is None:
                raise DataError(
                    f"adata.obsm['{deconv_key}'] has no column labels; "
                    f"store them in adata.uns['{deconv_key}_names']"
                )
            matrix = pd.DataFrame(np.asarray(matrix), index=adata.obs_names, columns=list(names))
        matrix = matrix.copy()
    else:
        matrix = _read_delimited(path, sep or default_sep, index_col)

    matrix.columns = [
        np.nan if isinstance(c, str) and _UNNAMED_COLUMN.match(c) else c
        for c in matrix.columns
    ]

    logger.info(f"Loaded contribution matrix with {matrix.shape[0]} spots and {matrix.shape[1]} columns")
    return matrix

def load_spot_metadata(path, index_col=0, sep=None):
    """
    Load a per-spot metadata table

    Parameters
    ----------
    path : str or Path
        Delimited file with spot ids in ``index_col``, or an h5ad file whose
        ``obs`` table is returned
    index_col : int or str, optional
        Column holding the spot ids in delimited files
    sep : str, optional
        Field separator. If None, inferred from the file suffix

    Returns
    -------
    pandas.DataFrame
        Metadata indexed by spot id
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Spot metadata file not found: {path}")

    fmt, default_sep = _infer_format(path)
    logger.info(f"Loading spot metadata from {path} (format: {fmt})")

    if fmt == 'h5ad':
        metadata = ad.read_h5ad(path).obs.copy()
    else:
        metadata = _read_delimited(path, sep or default_sep, index_col)

    logger.info(f"Loaded metadata for {metadata.shape[0]} spots")
    return metadata
