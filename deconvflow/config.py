import yaml
import copy
import logging
from pathlib import Path
import json

from deconvflow.utils.exceptions import ParameterError

logger = logging.getLogger('deconvflow.config')

REQUIRED_SECTIONS = ['data', 'curation']

def read_config(config_path):
    """
    Read a configuration file in YAML or JSON format

    Parameters
    ----------
    config_path : str or Path
        Path to the configuration file

    Returns
    -------
    dict
        Configuration dictionary
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    suffix = config_path.suffix.lower()

    if suffix == '.yaml' or suffix == '.yml':
        with open(config_path, 'r') as f:
            config = yaml.safe_load(f)
    elif suffix == '.json':
        with open(config_path, 'r') as f:
            config = json.load(f)
    else:
        raise ValueError(f"Unsupported configuration file format: {suffix}")

    if config is None:
        config = {}
    logger.debug(f"Read configuration from {config_path}")
    return config

def validate_config(config):
    """
    Validate a configuration dictionary

    Parameters
    ----------
    config : dict
        Configuration dictionary

    Returns
    -------
    bool
        True if configuration is valid

    Raises
    ------
    ParameterError
        If configuration is invalid
    """
    for section in REQUIRED_SECTIONS:
        if section not in config:
            raise ParameterError(f"Missing required configuration section: {section}")

    unknown = [s for s in config if s not in get_parameter_defaults()]
    if unknown:
        raise ParameterError(f"Unknown configuration section(s): {unknown}")

    if not config['data'].get('matrix_path'):
        raise ParameterError("Missing required parameter 'matrix_path' in data section")

    curation = config['curation']
    for key in ('minor_threshold', 'upper', 'lower_exclusive'):
        if key not in curation:
            continue
        value = curation[key]
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ParameterError(f"curation.{key} must be a number, got {value!r}")
        if not 0 <= value <= 1:
            raise ParameterError(f"curation.{key} must be in [0, 1], got {value}")

    upper = curation.get('upper', 0.8)
    lower_exclusive = curation.get('lower_exclusive', 0.0)
    if lower_exclusive >= upper:
        raise ParameterError(
            f"curation.lower_exclusive ({lower_exclusive}) must be smaller than curation.upper ({upper})"
        )

    palette = config.get('visualization', {}).get('palette')
    if palette is not None and not isinstance(palette, dict):
        raise ParameterError("visualization.palette must be a mapping of cell type to color")

    return True

def update_config(config, overrides, skip_none=False):
    """
    Update a configuration dictionary with override values

    Parameters
    ----------
    config : dict
        Original configuration dictionary
    overrides : dict
        Dictionary with override values
    skip_none : bool, optional
        Whether None override values leave the original value in place.
        Used for unset command line options. When False, None is a value,
        e.g. `residual_label: null` disables dropping a residual column

    Returns
    -------
    dict
        Updated configuration dictionary
    """
    updated_config = copy.deepcopy(config)
    def _update_dict(d, u):
        for k, v in u.items():
            if v is None and skip_none:
                continue
            if isinstance(v, dict) and k in d and isinstance(d[k], dict):
                d[k] = _update_dict(d[k], v)
            else:
                d[k] = v
        return d

    return _update_dict(updated_config, overrides)

def write_config(config, output_path):
    """
    Write a configuration dictionary to a file

    Parameters
    ----------
    config : dict
        Configuration dictionary
    output_path : str or Path
        Path to write the configuration file

    Returns
    -------
    Path
        Path to the written configuration file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    suffix = output_path.suffix.lower()

    if suffix == '.yaml' or suffix == '.yml':
        with open(output_path, 'w') as f:
            yaml.dump(config, f, default_flow_style=False, sort_keys=False)
    elif suffix == '.json':
        with open(output_path, 'w') as f:
            json.dump(config, f, indent=2)
    else:
        raise ValueError(f"Unsupported configuration file format: {suffix}")

    return output_path

def get_parameter_defaults():
    """
    Get default parameter values for all curation components

    Returns
    -------
    dict
        Dictionary with default parameter values
    """
    defaults = {
        'data': {
            'matrix_path': '',
            'metadata_path': None,
            'deconv_key': 'deconv_spotlight',
            'index_col': 0
        },
        'curation': {
            'residual_label': 'res_ss',
            'minor_threshold': 0.02,
            'upper': 0.8,
            'lower_exclusive': 0.0,
            'prefix': 'prop_'
        },
        'visualization': {
            'palette': {},
            'seed': None
        },
        'output': {
            'output_dir': 'deconvflow_results',
            'save_formats': ['csv', 'json']
        }
    }

    return defaults

def get_parameter_descriptions():
    """
    Get descriptions of all configurable parameters

    Returns
    -------
    dict
        Dictionary with parameter descriptions
    """
    descriptions = {
        'data': {
            'matrix_path': 'Path to the raw spot x cell-type contribution matrix (csv, tsv or h5ad)',
            'metadata_path': 'Path to the spot metadata table the proportions are attached to',
            'deconv_key': 'Key in adata.obsm holding the contribution matrix for h5ad input',
            'index_col': 'Column holding the spot ids in delimited input files'
        },
        'curation': {
            'residual_label': 'Label of the residual column dropped before cleaning',
            'minor_threshold': 'Contributions strictly below this value are set to 0',
            'upper': 'Cell types present in at least this fraction of spots are ubiquitous',
            'lower_exclusive': 'Cell types must be present in more than this fraction of spots to be variable',
            'prefix': 'Prefix of the proportion columns attached to the spot metadata'
        },
        'visualization': {
            'palette': 'Mapping of cell type to color, missing cell types get generated colors',
            'seed': 'Random seed used to shuffle generated colors'
        },
        'output': {
            'output_dir': 'Directory to write the curated results to',
            'save_formats': 'Formats to save results in (csv, json)'
        }
    }

    return descriptions
