"""
Basic Deconvolution Curation Workflow

Curates the output of a spot-level deconvolution model (e.g. SPOTlight)
and attaches the cleaned proportions to the spot metadata.
"""

import numpy as np
import pandas as pd
from pathlib import Path

from deconvflow.utils.logging import setup_logging, log_system_info
from deconvflow.analysis.curation import curate, attach, dominant_cell_type, summarize_by_group
from deconvflow.utils.io import save_results
from deconvflow.visualization.palette import make_palette

def simulate_inputs(n_spots=500, seed=0):
    """Simulated model output and spot metadata"""
    rng = np.random.default_rng(seed)
    spot_ids = [f"spot_{i:04d}" for i in range(n_spots)]
    cell_types = ['Epithelial', 'Fibroblast', 'T_cell', 'B_cell', 'Macrophage']

    raw = rng.dirichlet([5.0, 2.0, 0.3, 0.1, 0.5], size=n_spots)
    matrix = pd.DataFrame(raw, index=spot_ids, columns=cell_types)
    matrix['res_ss'] = rng.uniform(0, 0.1, n_spots)

    metadata = pd.DataFrame({
        'nCount_Spatial': rng.poisson(5000, n_spots),
        'cluster': rng.choice(['0', '1', '2', '3'], n_spots),
    }, index=spot_ids)
    # The metadata does not need to share the matrix row order
    metadata = metadata.sample(frac=1.0, random_state=seed)
    return matrix, metadata

def main():
    # Set up logging
    logger = setup_logging(level="INFO", log_file="deconvflow_basic_workflow.log")
    log_system_info(logger)

    output_dir = Path("deconvflow_output")
    output_dir.mkdir(exist_ok=True)

    # Step 1: Inputs
    matrix, metadata = simulate_inputs()
    logger.info(f"Contribution matrix with {matrix.shape[0]} spots and {matrix.shape[1]} columns")

    # Step 2: Curation
    result = curate(matrix, minor_threshold=0.02, upper=0.8)
    logger.info(f"Variable cell types: {result.variable_cell_types}")
    logger.info(f"\n{result.summary}")

    # Step 3: Attach to spot metadata by spot id
    annotated = attach(result.cleaned, metadata, prefix='prop_')
    annotated['dominant_cell_type'] = dominant_cell_type(result.cleaned)

    # Step 4: Per-cluster composition
    composition = summarize_by_group(result.cleaned, metadata['cluster'])
    logger.info(f"Mean composition per cluster:\n{composition.round(3)}")

    # Step 5: Save
    palette = make_palette(result.cell_types, base={'Epithelial': '#1f77b4'}, seed=123)
    save_results(result, output_dir, metadata=metadata, palette=palette)

    logger.info(f"Curation completed. Results saved to {output_dir}")

if __name__ == "__main__":
    main()
