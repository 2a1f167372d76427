"""
Tests for attaching curated proportions to spot-level tables
"""

import numpy as np
import pandas as pd
import pytest

from deconvflow.analysis.curation import (
    attach,
    clean,
    curate_adata,
    dominant_cell_type,
    summarize_by_group,
)
from deconvflow.utils.exceptions import DataError, DegenerateInputError, KeyAlignmentError, ParameterError


class TestAttach:
    """Test key-based joining of the cleaned matrix onto spot metadata"""

    def test_matches_by_spot_id(self, scenario_matrix, spot_metadata):
        annotated = attach(clean(scenario_matrix), spot_metadata)

        assert annotated.index.tolist() == ['s3', 's1', 's4', 's2', 's5']
        assert annotated.loc['s1', 'T2'] == 0.99
        assert annotated.loc['s3', 'T1'] == 0.9
        assert annotated.loc['s4', 'T1'] == 0.0
        assert annotated['nCount_Spatial'].tolist() == spot_metadata['nCount_Spatial'].tolist()

    def test_unmatched_metadata_rows_are_nan(self, scenario_matrix, spot_metadata):
        annotated = attach(clean(scenario_matrix), spot_metadata)
        assert np.isnan(annotated.loc['s5', 'T1'])
        assert np.isnan(annotated.loc['s5', 'T2'])

    def test_missing_key(self, scenario_matrix, spot_metadata):
        cleaned = clean(scenario_matrix.rename(index={'s2': 's9'}))

        with pytest.raises(KeyAlignmentError, match="s9") as excinfo:
            attach(cleaned, spot_metadata)
        assert excinfo.value.missing_keys == ['s9']

    def test_missing_key_is_data_error(self, scenario_matrix):
        metadata = pd.DataFrame(index=['s1', 's2'])
        with pytest.raises(DataError):
            attach(clean(scenario_matrix), metadata)

    def test_missing_keys_message_truncated(self):
        cleaned = pd.DataFrame({'A': np.ones(15)}, index=[f"x{i}" for i in range(15)])
        metadata = pd.DataFrame(index=['s1'])

        with pytest.raises(KeyAlignmentError, match=r"15 spot id\(s\).*5 more") as excinfo:
            attach(cleaned, metadata)
        assert len(excinfo.value.missing_keys) == 15

    def test_prefix(self, scenario_matrix, spot_metadata):
        annotated = attach(clean(scenario_matrix), spot_metadata, prefix='prop_')
        assert annotated.columns.tolist() == ['nCount_Spatial', 'cluster', 'prop_T1', 'prop_T2']

    def test_overwrite(self, scenario_matrix, spot_metadata):
        metadata = spot_metadata.assign(T1=-1.0)
        annotated = attach(clean(scenario_matrix), metadata)

        assert annotated.columns.tolist().count('T1') == 1
        assert annotated.loc['s3', 'T1'] == 0.9

    def test_no_overwrite(self, scenario_matrix, spot_metadata):
        metadata = spot_metadata.assign(T1=-1.0)
        with pytest.raises(ParameterError, match="already present"):
            attach(clean(scenario_matrix), metadata, overwrite=False)

    def test_metadata_not_modified(self, scenario_matrix, spot_metadata):
        original = spot_metadata.copy()
        attach(clean(scenario_matrix), spot_metadata)
        pd.testing.assert_frame_equal(spot_metadata, original)


class TestDominantCellType:

    def test_scenario(self, scenario_matrix):
        dominant = dominant_cell_type(clean(scenario_matrix))
        assert dominant[['s1', 's2', 's3', 's4']].tolist() == ['T2', 'T1', 'T1', 'T2']

    def test_all_zero_spot(self):
        cleaned = pd.DataFrame({'A': [0.0, 0.6], 'B': [0.0, 0.4]}, index=['s1', 's2'])
        dominant = dominant_cell_type(cleaned)

        assert pd.isna(dominant['s1'])
        assert dominant['s2'] == 'A'

    def test_no_columns(self):
        cleaned = pd.DataFrame(index=['s1', 's2'])
        assert dominant_cell_type(cleaned).isna().all()


class TestSummarizeByGroup:

    def test_group_means(self, scenario_matrix, spot_metadata):
        composition = summarize_by_group(clean(scenario_matrix), spot_metadata['cluster'])

        assert composition.index.tolist() == ['a', 'b']
        # a: s3, s4 / b: s1, s2
        assert composition.loc['a', 'T1'] == pytest.approx(0.45)
        assert composition.loc['a', 'T2'] == pytest.approx(0.55)
        assert composition.loc['b', 'T2'] == pytest.approx(0.745)

    def test_missing_group_labels(self, scenario_matrix):
        groups = pd.Series(['a', 'b'], index=['s1', 's2'])
        with pytest.raises(KeyAlignmentError, match="group labels"):
            summarize_by_group(clean(scenario_matrix), groups)

    def test_zero_rows(self):
        cleaned = pd.DataFrame(columns=['T1'], dtype=float)
        with pytest.raises(DegenerateInputError):
            summarize_by_group(cleaned, pd.Series(dtype=object))


class TestCurateAdata:
    """Test curation of results stored in an AnnData object"""

    def test_outputs_stored(self, mock_spatial_adata):
        adata = curate_adata(mock_spatial_adata, deconv_key='deconv_spotlight')

        assert adata.obs['prop_T1'].tolist() == [0.0, 0.5, 0.9, 0.0]
        assert 'prop_res_ss' not in adata.obs
        assert adata.obs['cluster'].tolist() == ['a', 'a', 'b', 'b']
        assert adata.obsm['deconv_spotlight_cleaned'].columns.tolist() == ['T1', 'T2']
        assert adata.obs['deconv_spotlight_dominant'].tolist() == ['T2', 'T1', 'T1', 'T2']

        curation = adata.uns['deconv_spotlight_curation']
        assert curation['variable_cell_types'] == ['T1']
        assert curation['params']['minor_threshold'] == 0.02
        assert curation['summary'].loc['T2', 'category'] == 'ubiquitous'

    def test_external_matrix(self, mock_spatial_adata, scenario_matrix):
        del mock_spatial_adata.obsm['deconv_spotlight']
        matrix = scenario_matrix.iloc[::-1]
        adata = curate_adata(mock_spatial_adata, deconv_key='spotlight', matrix=matrix, upper=0.9)

        assert adata.obs['prop_T2'].tolist() == [0.99, 0.5, 0.1, 1.0]
        assert adata.uns['spotlight_curation']['params']['upper'] == 0.9

    def test_external_matrix_misaligned(self, mock_spatial_adata, scenario_matrix):
        matrix = scenario_matrix.rename(index={'s4': 'other'})
        with pytest.raises(KeyAlignmentError, match="other"):
            curate_adata(mock_spatial_adata, matrix=matrix)

    def test_missing_key(self, mock_spatial_adata):
        with pytest.raises(DataError, match="not found in adata.obsm"):
            curate_adata(mock_spatial_adata, deconv_key='deconv_rctd')
