"""
Tests for palettes and batch curation of tissue sections
"""

import matplotlib.colors as mcolors
import pandas as pd
import pytest

from deconvflow.analysis.curation import CurationResult
from deconvflow.utils.exceptions import DegenerateInputError
from deconvflow.utils.parallel import curate_sections, parallelize
from deconvflow.visualization.palette import make_palette


class TestMakePalette:

    def test_one_color_per_cell_type(self):
        palette = make_palette(['B_cell', 'T_cell', 'Macrophage'])

        assert list(palette) == ['B_cell', 'T_cell', 'Macrophage']
        assert len(set(palette.values())) == 3
        assert all(mcolors.is_color_like(c) for c in palette.values())

    def test_base_colors_kept(self):
        palette = make_palette(['A', 'B', 'C'], base={'B': 'red'})

        assert palette['B'] == '#ff0000'
        assert '#ff0000' not in (palette['A'], palette['C'])

    def test_seed_reproducible(self):
        cell_types = [f"type_{i}" for i in range(12)]
        assert make_palette(cell_types, seed=7) == make_palette(cell_types, seed=7)

    def test_large_palette(self):
        cell_types = [f"type_{i}" for i in range(70)]
        palette = make_palette(cell_types)
        assert len(palette) == 70

    def test_invalid_color(self):
        with pytest.raises(ValueError, match="Invalid color"):
            make_palette(['A'], base={'A': 'not-a-color'})


def _square(x, offset=0):
    return x * x + offset


class TestParallelize:

    @pytest.mark.parametrize('backend', ['serial', 'threads'])
    def test_order_kept(self, backend):
        results = parallelize(_square, list(range(10)), n_jobs=3, backend=backend,
                              show_progress=False, offset=1)
        assert results == [x * x + 1 for x in range(10)]

    def test_empty(self):
        assert parallelize(_square, [], show_progress=False) == []

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="Unsupported backend"):
            parallelize(_square, [1], backend='dask')


class TestCurateSections:

    def test_sections_curated_independently(self, scenario_matrix, random_matrix):
        results = curate_sections(
            {'section_b': random_matrix, 'section_a': scenario_matrix},
            n_jobs=2, backend='threads', minor_threshold=0.05,
        )

        assert list(results) == ['section_b', 'section_a']
        assert all(isinstance(r, CurationResult) for r in results.values())
        assert results['section_a'].variable_cell_types == ['T1']
        assert results['section_a'].params['minor_threshold'] == 0.05
        assert results['section_b'].n_spots == 200

    def test_errors_propagate(self, scenario_matrix):
        empty = pd.DataFrame(columns=['T1'], dtype=float)
        with pytest.raises(DegenerateInputError):
            curate_sections({'ok': scenario_matrix, 'empty': empty}, backend='serial')
