import numpy as np
import pandas as pd
import logging
from dataclasses import dataclass, field

from deconvflow.utils.exceptions import (
    DataError,
    DegenerateInputError,
    KeyAlignmentError,
    ParameterError,
)

logger = logging.getLogger('deconvflow.analysis.curation')

DEFAULT_RESIDUAL_LABEL = "res_ss"
DEFAULT_MINOR_THRESHOLD = 0.02
DEFAULT_UPPER = 0.8
DEFAULT_LOWER_EXCLUSIVE = 0.0

# Labels produced for undefined annotations by R exports and pandas readers
_MISSING_LABEL_STRINGS = {"", "na", "nan", "<na>", "none", "null"}

ABSENT = "absent"
RARE = "rare"
VARIABLE = "variable"
UBIQUITOUS = "ubiquitous"


@dataclass(frozen=True)
class CurationResult:
    """Outputs of a single curation run.

    Attributes
    ----------
    cleaned : pandas.DataFrame
        Spot x cell-type matrix with residual/unlabeled columns dropped and
        minor contributions zeroed.
    prevalence : pandas.Series
        Fraction of spots with a nonzero contribution, per cell type.
    summary : pandas.DataFrame
        Per cell type diagnostic table (see ``summarize_prevalence``).
    variable_cell_types : list
        Cell types with ``lower_exclusive < prevalence < upper``, in column order.
    params : dict
        Thresholds used to produce the result.
    """

    cleaned: pd.DataFrame
    prevalence: pd.Series
    summary: pd.DataFrame
    variable_cell_types: list
    params: dict = field(default_factory=dict)

    @property
    def n_spots(self):
        return self.cleaned.shape[0]

    @property
    def cell_types(self):
        return self.cleaned.columns.tolist()


def is_missing_label(label):
    """
    Check whether a column label is missing/undefined

    ``None``, NaN, ``pd.NA``, empty strings and the usual textual spellings of
    a missing value (``"NA"``, ``"nan"``, ...) all count as missing.
    """
    if label is None:
        return True
    if isinstance(label, str):
        return label.strip().lower() in _MISSING_LABEL_STRINGS
    if pd.api.types.is_scalar(label):
        try:
            return bool(pd.isna(label))
        except (TypeError, ValueError):
            return False
    return False


def _check_fraction(name, value):
    if isinstance(value, bool) or not isinstance(value, (int, float, np.integer, np.floating)):
        raise ParameterError(f"{name} must be a number in [0, 1], got {value!r}")
    if not 0.0 <= float(value) <= 1.0:
        raise ParameterError(f"{name} must be in [0, 1], got {value}")
    return float(value)


def _check_bounds(upper, lower_exclusive):
    upper = _check_fraction("upper", upper)
    lower_exclusive = _check_fraction("lower_exclusive", lower_exclusive)
    if lower_exclusive >= upper:
        raise ParameterError(
            f"lower_exclusive ({lower_exclusive}) must be smaller than upper ({upper})"
        )
    return upper, lower_exclusive


def _check_matrix(matrix, name="contribution matrix"):
    if not isinstance(matrix, pd.DataFrame):
        raise DataError(f"The {name} must be a pandas DataFrame, got {type(matrix).__name__}")
    if not matrix.index.is_unique:
        duplicated = matrix.index[matrix.index.duplicated()].unique().tolist()
        raise DataError(f"The {name} has duplicated spot ids: {duplicated[:10]}")


def clean(matrix, minor_threshold=DEFAULT_MINOR_THRESHOLD, residual_label=DEFAULT_RESIDUAL_LABEL):
    """
    Clean a raw spot x cell-type contribution matrix

    The residual column and every column with a missing label are dropped,
    then every value strictly below ``minor_threshold`` is set to 0. A value
    exactly equal to the threshold is kept.

    Parameters
    ----------
    matrix : pandas.DataFrame
        Raw contribution matrix, rows are spot ids and columns cell-type labels
    minor_threshold : float, optional
        Contributions below this value are treated as noise
    residual_label : str, optional
        Label of the residual (unassigned mass) column

    Returns
    -------
    pandas.DataFrame
        Cleaned copy of the matrix. It may have zero columns.

    Raises
    ------
    ParameterError
        If ``minor_threshold`` is not in [0, 1]
    DataError
        If spot ids or retained labels are duplicated, or a retained column is
        not numeric
    """
    minor_threshold = _check_fraction("minor_threshold", minor_threshold)
    _check_matrix(matrix)

    keep = []
    n_residual = 0
    n_unlabeled = 0
    for label in matrix.columns:
        if is_missing_label(label):
            n_unlabeled += 1
            keep.append(False)
        elif residual_label is not None and label == residual_label:
            n_residual += 1
            keep.append(False)
        else:
            keep.append(True)

    if n_residual == 0 and residual_label is not None:
        logger.debug(f"Residual column '{residual_label}' not present in the matrix")
    if n_unlabeled:
        logger.info(f"Dropping {n_unlabeled} column(s) with missing cell-type labels")

    kept = matrix.iloc[:, np.flatnonzero(keep)]

    if not kept.columns.is_unique:
        duplicated = kept.columns[kept.columns.duplicated()].unique().tolist()
        raise DataError(f"Duplicated cell-type labels in contribution matrix: {duplicated}")

    non_numeric = [c for c in kept.columns if not pd.api.types.is_numeric_dtype(kept[c])]
    if non_numeric:
        raise DataError(f"Non-numeric contribution columns: {non_numeric}")

    kept = kept.astype(float)
    minor = kept < minor_threshold
    n_zeroed = int((minor & (kept != 0)).to_numpy().sum())
    cleaned = kept.mask(minor, 0.0)

    logger.info(
        f"Cleaned contribution matrix: {cleaned.shape[0]} spots x {cleaned.shape[1]} cell types, "
        f"{n_zeroed} minor contributions (< {minor_threshold}) set to 0"
    )
    if cleaned.shape[1] == 0:
        logger.warning("No cell-type columns left after cleaning")

    return cleaned


def compute_prevalence(cleaned_matrix):
    """
    Fraction of spots in which each cell type has a nonzero contribution

    Parameters
    ----------
    cleaned_matrix : pandas.DataFrame
        Output of ``clean``

    Returns
    -------
    pandas.Series
        Prevalence per cell type, in column order, values in [0, 1]

    Raises
    ------
    DegenerateInputError
        If the matrix has no spots
    """
    _check_matrix(cleaned_matrix, name="cleaned matrix")
    n_spots = cleaned_matrix.shape[0]
    if n_spots == 0:
        raise DegenerateInputError(
            "Cleaned matrix has zero spots; cell-type prevalence is undefined"
        )
    present = (cleaned_matrix > 0).sum(axis=0)
    prevalence = (present / n_spots).astype(float)
    prevalence.name = "prevalence"
    return prevalence


def classify_cell_types(prevalence, upper=DEFAULT_UPPER, lower_exclusive=DEFAULT_LOWER_EXCLUSIVE):
    """
    Label each cell type as absent, rare, variable or ubiquitous

    ``rare`` (nonzero prevalence at or below ``lower_exclusive``) only occurs
    when ``lower_exclusive`` is raised above 0.

    Parameters
    ----------
    prevalence : pandas.Series
        Output of ``compute_prevalence``
    upper : float, optional
        Prevalence at or above which a cell type is ubiquitous
    lower_exclusive : float, optional
        Prevalence a variable cell type must strictly exceed

    Returns
    -------
    pandas.Series
        Category per cell type
    """
    upper, lower_exclusive = _check_bounds(upper, lower_exclusive)

    def _category(p):
        if p >= upper:
            return UBIQUITOUS
        if p > lower_exclusive:
            return VARIABLE
        if p > 0:
            return RARE
        return ABSENT

    categories = pd.Series(
        [_category(p) for p in prevalence.to_numpy()],
        index=prevalence.index,
        dtype=object,
        name="category",
    )
    return categories


def select_variable_cell_types(cleaned_matrix, upper=DEFAULT_UPPER, lower_exclusive=DEFAULT_LOWER_EXCLUSIVE):
    """
    Select the cell types present in some, but not most, spots

    Parameters
    ----------
    cleaned_matrix : pandas.DataFrame
        Output of ``clean``
    upper : float, optional
        Exclusive upper bound on prevalence
    lower_exclusive : float, optional
        Exclusive lower bound on prevalence

    Returns
    -------
    list
        Labels with ``lower_exclusive < prevalence < upper``, in the matrix
        column order

    Raises
    ------
    DegenerateInputError
        If the matrix has no spots
    ParameterError
        If the bounds are invalid
    """
    upper, lower_exclusive = _check_bounds(upper, lower_exclusive)
    prevalence = compute_prevalence(cleaned_matrix)
    mask = (prevalence > lower_exclusive) & (prevalence < upper)
    variable = prevalence.index[mask.to_numpy()].tolist()
    logger.info(
        f"{len(variable)} of {len(prevalence)} cell types are variable "
        f"({lower_exclusive} < prevalence < {upper})"
    )
    return variable


def summarize_prevalence(cleaned_matrix, upper=DEFAULT_UPPER, lower_exclusive=DEFAULT_LOWER_EXCLUSIVE):
    """
    Build the per cell type diagnostic table

    Returns
    -------
    pandas.DataFrame
        Indexed by cell type with columns ``n_spots_present``, ``prevalence``,
        ``mean_proportion`` (mean over the spots where the type is present, 0
        when absent) and ``category``
    """
    prevalence = compute_prevalence(cleaned_matrix)
    present = cleaned_matrix > 0
    mean_present = cleaned_matrix.where(present).mean(axis=0).fillna(0.0)
    summary = pd.DataFrame(
        {
            'n_spots_present': present.sum(axis=0).astype(int),
            'prevalence': prevalence,
            'mean_proportion': mean_present.astype(float),
            'category': classify_cell_types(prevalence, upper=upper, lower_exclusive=lower_exclusive),
        },
        index=prevalence.index,
    )
    summary.index.name = 'cell_type'
    return summary


def attach(cleaned_matrix, spot_metadata, prefix="", overwrite=True):
    """
    Add cleaned proportions to a spot metadata table, matched by spot id

    Rows are matched on the index, never by position. Metadata rows with no
    counterpart in the matrix receive NaN.

    Parameters
    ----------
    cleaned_matrix : pandas.DataFrame
        Output of ``clean``
    spot_metadata : pandas.DataFrame
        Per-spot table indexed by spot id
    prefix : str, optional
        Prefix added to each cell-type column name
    overwrite : bool, optional
        Whether existing metadata columns with the same name are replaced

    Returns
    -------
    pandas.DataFrame
        New metadata table, in the original metadata row order

    Raises
    ------
    KeyAlignmentError
        If any spot id of the matrix is absent from the metadata
    """
    _check_matrix(cleaned_matrix, name="cleaned matrix")
    _check_matrix(spot_metadata, name="spot metadata")

    missing = cleaned_matrix.index[~cleaned_matrix.index.isin(spot_metadata.index)].tolist()
    if missing:
        logger.error(f"{len(missing)} spot ids of the cleaned matrix are missing from the spot metadata")
        raise KeyAlignmentError(missing, target="spot metadata")

    aligned = cleaned_matrix.reindex(spot_metadata.index)
    aligned.columns = [f"{prefix}{c}" for c in aligned.columns]

    clashes = [c for c in aligned.columns if c in spot_metadata.columns]
    if clashes and not overwrite:
        raise ParameterError(f"Columns already present in spot metadata: {clashes}")
    if clashes:
        logger.info(f"Replacing {len(clashes)} existing metadata column(s)")

    n_unmatched = len(spot_metadata.index) - len(cleaned_matrix.index)
    if n_unmatched:
        logger.warning(f"{n_unmatched} spots in the metadata have no deconvolution result")

    return spot_metadata.drop(columns=clashes).join(aligned)


def dominant_cell_type(cleaned_matrix):
    """Label of the largest contribution per spot, NaN where every contribution is 0."""
    _check_matrix(cleaned_matrix, name="cleaned matrix")
    if cleaned_matrix.shape[1] == 0:
        return pd.Series(np.nan, index=cleaned_matrix.index, dtype=object, name='dominant_cell_type')
    values = cleaned_matrix.fillna(0.0)
    dominant = values.idxmax(axis=1).astype(object).where(values.max(axis=1) > 0)
    dominant.name = 'dominant_cell_type'
    return dominant


def summarize_by_group(cleaned_matrix, groups):
    """
    Mean cell-type proportion per group of spots

    Parameters
    ----------
    cleaned_matrix : pandas.DataFrame
        Output of ``clean``
    groups : pandas.Series
        Group label (e.g. cluster) per spot, indexed by spot id

    Returns
    -------
    pandas.DataFrame
        Groups x cell types
    """
    _check_matrix(cleaned_matrix, name="cleaned matrix")
    if cleaned_matrix.shape[0] == 0:
        raise DegenerateInputError("Cleaned matrix has zero spots; nothing to summarize")
    if not groups.index.is_unique:
        raise DataError("Group labels have duplicated spot ids")

    missing = cleaned_matrix.index[~cleaned_matrix.index.isin(groups.index)].tolist()
    if missing:
        raise KeyAlignmentError(missing, target="group labels")

    aligned = groups.reindex(cleaned_matrix.index)
    logger.info(f"Summarizing cell-type proportions over {aligned.nunique()} groups")
    return cleaned_matrix.groupby(aligned, observed=True, sort=True).mean()


def curate(matrix, minor_threshold=DEFAULT_MINOR_THRESHOLD, upper=DEFAULT_UPPER,
           lower_exclusive=DEFAULT_LOWER_EXCLUSIVE, residual_label=DEFAULT_RESIDUAL_LABEL):
    """
    Run the full curation of a raw contribution matrix

    All parameters are validated before any transformation is applied.

    Returns
    -------
    CurationResult
    """
    upper, lower_exclusive = _check_bounds(upper, lower_exclusive)
    minor_threshold = _check_fraction("minor_threshold", minor_threshold)

    cleaned = clean(matrix, minor_threshold=minor_threshold, residual_label=residual_label)
    summary = summarize_prevalence(cleaned, upper=upper, lower_exclusive=lower_exclusive)
    variable = select_variable_cell_types(cleaned, upper=upper, lower_exclusive=lower_exclusive)

    params = {
        'minor_threshold': minor_threshold,
        'upper': upper,
        'lower_exclusive': lower_exclusive,
        'residual_label': residual_label,
    }
    return CurationResult(
        cleaned=cleaned,
        prevalence=summary['prevalence'].copy(),
        summary=summary,
        variable_cell_types=variable,
        params=params,
    )


def curate_adata(adata, deconv_key='deconv_spotlight', matrix=None, prefix='prop_', **kwargs):
    """
    Curate deconvolution results stored alongside a spatial AnnData object

    Parameters
    ----------
    adata : AnnData
        The AnnData object for spatial data
    deconv_key : str, optional
        Key in adata.obsm holding the raw contribution matrix. Also used to
        name the outputs.
    matrix : pandas.DataFrame, optional
        Raw contribution matrix produced outside of ``adata``. Takes
        precedence over ``adata.obsm[deconv_key]``.
    prefix : str, optional
        Prefix for the proportion columns added to adata.obs
    **kwargs
        Thresholds passed to ``curate``

    Returns
    -------
    adata : AnnData
        The AnnData object with curated results in ``obsm``, ``obs`` and ``uns``
    """
    if matrix is None:
        if deconv_key not in adata.obsm:
            logger.error(f"Deconvolution key {deconv_key} not found in adata.obsm")
            raise DataError(f"Deconvolution key {deconv_key} not found in adata.obsm")
        matrix = adata.obsm[deconv_key]
        if not isinstance(matrix, pd.DataFrame):
            raise DataError(
                f"adata.obsm['{deconv_key}'] must be a DataFrame with cell-type labels as columns"
            )

    logger.info(f"Curating deconvolution results '{deconv_key}' for {adata.n_obs} spots")
    result = curate(matrix, **kwargs)

    adata.obs = attach(result.cleaned, adata.obs, prefix=prefix)
    adata.obsm[f'{deconv_key}_cleaned'] = result.cleaned.reindex(adata.obs_names)
    adata.obs[f'{deconv_key}_dominant'] = dominant_cell_type(result.cleaned).reindex(adata.obs_names)
    adata.uns[f'{deconv_key}_curation'] = {
        'summary': result.summary,
        'variable_cell_types': list(result.variable_cell_types),
        'params': dict(result.params),
    }
    return adata
