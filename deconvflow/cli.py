import click
import logging
from pathlib import Path
from datetime import datetime

from deconvflow.config import (
    get_parameter_defaults,
    read_config,
    update_config,
    validate_config,
    write_config,
)
from deconvflow.core.data_loader import load_contribution_matrix, load_spot_metadata
from deconvflow.analysis.curation import curate, summarize_prevalence, clean
from deconvflow.utils.exceptions import DeconvFlowError
from deconvflow.utils.io import save_results
from deconvflow.utils.logging import setup_logging, log_execution_time, log_system_info
from deconvflow.visualization.palette import make_palette

def setup_output_dir(output_dir):
    """Create output directory"""
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)
    return output_path

def create_default_config(config_path):
    """Create a default configuration file"""
    default_config = get_parameter_defaults()
    write_config(default_config, config_path)
    return default_config

@click.group()
def cli():
    """deconvflow: curation of spot-level cell-type deconvolution results"""
    pass

@cli.command()
@click.argument('output_path', type=click.Path())
def init_config(output_path):
    """Initialize a default configuration file"""
    config_path = Path(output_path)
    if config_path.exists() and not click.confirm(f"The file {output_path} already exists. Overwrite?"):
        click.echo("Aborted.")
        return

    create_default_config(config_path)
    click.echo(f"Default configuration created at {output_path}")

@cli.command('curate')
@click.argument('matrix_path', type=click.Path(exists=True))
@click.option('--metadata', '-m', 'metadata_path', type=click.Path(exists=True), help='Spot metadata table')
@click.option('--config', '-c', type=click.Path(exists=True), help='Configuration file')
@click.option('--output-dir', '-o', type=click.Path(), default=None, help='Output directory')
@click.option('--minor-threshold', type=float, default=None, help='Contributions below this value are set to 0')
@click.option('--upper', type=float, default=None, help='Prevalence at which a cell type is ubiquitous')
@click.option('--lower-exclusive', type=float, default=None, help='Prevalence a variable cell type must exceed')
@click.option('--residual-label', type=str, default=None, help='Label of the residual column')
@click.option('--seed', type=int, default=None, help='Seed for generated palette colors')
@click.option('--log-level', type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR']), default='INFO', help='Logging level')
def curate_cmd(matrix_path, metadata_path, config, output_dir, minor_threshold, upper,
               lower_exclusive, residual_label, seed, log_level):
    """Curate a raw contribution matrix and save the results"""
    cfg = update_config(get_parameter_defaults(), read_config(config) if config else {})
    # Options left unset on the command line keep the configured value
    cfg = update_config(cfg, {
        'data': {'matrix_path': matrix_path, 'metadata_path': metadata_path},
        'curation': {
            'minor_threshold': minor_threshold,
            'upper': upper,
            'lower_exclusive': lower_exclusive,
            'residual_label': residual_label,
        },
        'visualization': {'seed': seed},
        'output': {'output_dir': output_dir},
    }, skip_none=True)

    output_path = setup_output_dir(cfg['output']['output_dir'])
    log_file = output_path / f"deconvflow_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"
    logger = setup_logging(log_level, log_file)
    log_end = log_execution_time(logger)
    logger.info(f"Using configuration from {config}" if config else "Using default configuration")
    environment = log_system_info(logger)

    try:
        validate_config(cfg)
        data_cfg = cfg['data']
        curation_cfg = cfg['curation']
        matrix = load_contribution_matrix(data_cfg['matrix_path'], deconv_key=data_cfg['deconv_key'],
                                          index_col=data_cfg['index_col'])
        metadata = None
        if data_cfg.get('metadata_path'):
            metadata = load_spot_metadata(data_cfg['metadata_path'], index_col=data_cfg['index_col'])

        result = curate(
            matrix,
            minor_threshold=curation_cfg['minor_threshold'],
            upper=curation_cfg['upper'],
            lower_exclusive=curation_cfg['lower_exclusive'],
            residual_label=curation_cfg['residual_label'],
        )
        palette = make_palette(result.cell_types, base=cfg['visualization'].get('palette'),
                               seed=cfg['visualization'].get('seed'))
        save_results(result, output_path, metadata=metadata, palette=palette,
                     save_formats=cfg['output']['save_formats'], prefix=curation_cfg['prefix'],
                     environment=environment)
    except (DeconvFlowError, ValueError, OSError) as e:
        logger.error(f"Curation failed: {str(e)}", exc_info=True)
        raise click.ClickException(str(e))

    log_end("Curation completed")
    click.echo(
        f"Curated {result.n_spots} spots: {len(result.cell_types)} cell types kept, "
        f"{len(result.variable_cell_types)} variable. Results saved to {output_path}"
    )

@cli.command()
@click.argument('matrix_path', type=click.Path(exists=True))
@click.option('--minor-threshold', type=float, default=0.02, show_default=True)
@click.option('--upper', type=float, default=0.8, show_default=True)
@click.option('--lower-exclusive', type=float, default=0.0, show_default=True)
@click.option('--residual-label', type=str, default='res_ss', show_default=True)
def summarize(matrix_path, minor_threshold, upper, lower_exclusive, residual_label):
    """Print the cell-type prevalence summary of a contribution matrix"""
    logging.getLogger('deconvflow').setLevel(logging.WARNING)
    try:
        matrix = load_contribution_matrix(matrix_path)
        cleaned = clean(matrix, minor_threshold=minor_threshold, residual_label=residual_label)
        summary = summarize_prevalence(cleaned, upper=upper, lower_exclusive=lower_exclusive)
    except (DeconvFlowError, ValueError, OSError) as e:
        raise click.ClickException(str(e))
    click.echo(summary.to_string())

def main():
    cli()

if __name__ == "__main__":
    main()
