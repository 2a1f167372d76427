import pandas as pd
import json
import logging
from pathlib import Path
import datetime

from deconvflow.analysis.curation import attach

logger = logging.getLogger('deconvflow.utils.io')

VALID_FORMATS = ['csv', 'json']

def save_results(result, output_dir, metadata=None, palette=None, save_formats=None,
                 prefix='prop_', environment=None):
    """
    Save curation results

    Parameters
    ----------
    result : CurationResult
        Output of ``curate``
    output_dir : str or Path
        Directory to save results
    metadata : pandas.DataFrame, optional
        Spot metadata. When given, the cleaned proportions are attached to it
        by spot id and the annotated table is saved as well
    palette : dict, optional
        Cell type -> color mapping stored with the run parameters
    save_formats : list, optional
        List of formats to save. Options: 'csv', 'json'. If None, saves both
    prefix : str, optional
        Prefix of the proportion columns in the annotated metadata
    environment : dict, optional
        Package versions of the run, stored in the JSON run record

    Returns
    -------
    dict
        Dictionary with paths to saved files
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    if save_formats is None:
        save_formats = list(VALID_FORMATS)
    unsupported = [fmt for fmt in save_formats if fmt not in VALID_FORMATS]
    for fmt in unsupported:
        logger.warning(f"Unsupported save format: {fmt}. Skipping.")
    save_formats = [fmt for fmt in save_formats if fmt in VALID_FORMATS]

    # Attach first so a misaligned metadata table fails before anything is written
    annotated = attach(result.cleaned, metadata, prefix=prefix) if metadata is not None else None

    saved_paths = {}
    if 'csv' in save_formats:
        cleaned_path = output_dir / "cleaned_matrix.csv"
        result.cleaned.to_csv(cleaned_path, index_label='spot_id')
        saved_paths['cleaned_matrix'] = cleaned_path

        summary_path = output_dir / "prevalence_summary.csv"
        result.summary.to_csv(summary_path)
        saved_paths['prevalence_summary'] = summary_path

        variable_path = output_dir / "variable_cell_types.txt"
        with open(variable_path, 'w') as f:
            for cell_type in result.variable_cell_types:
                f.write(f"{cell_type}\n")
        saved_paths['variable_cell_types'] = variable_path

        if annotated is not None:
            annotated_path = output_dir / "spot_metadata_annotated.csv"
            annotated.to_csv(annotated_path, index_label='spot_id')
            saved_paths['spot_metadata'] = annotated_path

        logger.info(f"Saved CSV files to {output_dir}")

    if 'json' in save_formats:
        json_path = output_dir / "curation.json"
        record = {
            'timestamp': datetime.datetime.now().strftime('%Y-%m-%d %H:%M:%S'),
            'n_spots': int(result.n_spots),
            'cell_types': [str(c) for c in result.cell_types],
            'variable_cell_types': [str(c) for c in result.variable_cell_types],
            'prevalence': {str(k): float(v) for k, v in result.prevalence.items()},
            'categories': {str(k): str(v) for k, v in result.summary['category'].items()},
            'params': result.params,
            'palette': palette or {},
            'environment': environment or {},
        }
        with open(json_path, 'w') as f:
            json.dump(record, f, indent=2)
        saved_paths['json'] = json_path
        logger.info(f"Saved run record to {json_path}")

    return saved_paths

def read_variable_cell_types(path):
    """Read a variable cell types list written by ``save_results``"""
    with open(path, 'r') as f:
        return [line.rstrip('\n') for line in f if line.strip()]

def read_cleaned_matrix(path):
    """Read a cleaned matrix written by ``save_results``"""
    matrix = pd.read_csv(path, index_col=0)
    matrix.index = matrix.index.astype(str)
    return matrix
