"""
Shared fixtures for deconvflow tests
"""

import logging

import numpy as np
import pandas as pd
import pytest
from anndata import AnnData


@pytest.fixture
def scenario_matrix():
    """Four spots, two cell types and an all-zero residual column"""
    return pd.DataFrame(
        {
            'T1': [0.01, 0.5, 0.9, 0.0],
            'T2': [0.99, 0.5, 0.1, 1.0],
            'res_ss': [0.0, 0.0, 0.0, 0.0],
        },
        index=['s1', 's2', 's3', 's4'],
    )


@pytest.fixture
def random_matrix():
    """Dirichlet proportions for 200 spots with a residual and an unlabeled column"""
    rng = np.random.default_rng(42)
    n_spots = 200
    values = np.column_stack([
        rng.dirichlet([4.0, 1.0, 0.2, 0.05, 0.5], size=n_spots),
        rng.uniform(0, 0.2, n_spots),
        rng.uniform(0, 0.1, n_spots),
    ])
    return pd.DataFrame(
        values,
        index=[f"spot_{i:03d}" for i in range(n_spots)],
        columns=['Epithelial', 'Fibroblast', 'T_cell', 'B_cell', 'Macrophage', 'res_ss', np.nan],
    )


@pytest.fixture
def spot_metadata():
    """Spot metadata in a different row order than the scenario matrix"""
    return pd.DataFrame(
        {
            'nCount_Spatial': [1200, 3400, 560, 2100, 980],
            'cluster': ['a', 'b', 'a', 'b', 'c'],
        },
        index=['s3', 's1', 's4', 's2', 's5'],
    )


@pytest.fixture
def mock_spatial_adata(scenario_matrix):
    """AnnData with the scenario matrix stored in obsm"""
    adata = AnnData(
        X=np.ones((4, 3), dtype=np.float32),
        obs=pd.DataFrame({'cluster': ['a', 'a', 'b', 'b']}, index=['s1', 's2', 's3', 's4']),
        var=pd.DataFrame(index=['Gene_0', 'Gene_1', 'Gene_2']),
    )
    adata.obsm['spatial'] = np.array([[0, 0], [0, 1], [1, 0], [1, 1]], dtype=float)
    adata.obsm['deconv_spotlight'] = scenario_matrix.copy()
    return adata


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Drop handlers installed by setup_logging so streams do not leak across tests"""
    yield
    logger = logging.getLogger('deconvflow')
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)
