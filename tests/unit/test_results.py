"""
Unit tests for locating and parsing elastix output files.
"""

import numpy as np
import pytest

from elastix_bridge.exceptions import (
    MalformedIterationLog,
    MissingResultFile,
    MissingResultImage,
)
from elastix_bridge.results import (
    IterationRow,
    TransformRecord,
    find_iteration_file,
    find_transform_file,
    locate_result_image,
    parse_iteration_info,
    parse_transform_parameters,
)


class TestParseTransformParameters:
    """Tests for parse_transform_parameters()."""

    def test_documented_example(self, tmp_path):
        path = tmp_path / 'TransformParameters.0.txt'
        path.write_text(
            '(Transform "TranslationTransform")\n'
            '(NumberOfParameters 2)\n'
            '(TransformParameters -2.4571 0.3162)\n'
        )

        t = parse_transform_parameters(path)

        assert t['Transform'] == 'TranslationTransform'
        assert t['NumberOfParameters'] == 2
        assert t['TransformParameters'] == pytest.approx((-2.4571, 0.3162))

    def test_full_file(self, transform_file):
        t = parse_transform_parameters(transform_file)

        assert t.transform == 'TranslationTransform'
        assert t.number_of_parameters == 2
        assert t.dimension == 2
        assert t.size == (2592, 1944)
        assert t['Index'] == (0.0, 0.0)
        assert t.spacing == (1.0, 1.0)
        assert t.origin == (0.0, 0.0)
        np.testing.assert_array_equal(t.direction, np.eye(2))
        assert t['UseDirectionCosines'] == 'true'
        assert t['ResampleInterpolator'] == 'FinalBSplineInterpolator'
        assert t['FinalBSplineInterpolationOrder'] == 3
        assert t['DefaultPixelValue'] == 0
        assert t.result_image_format == 'png'
        assert t.pixel_type == 'unsigned char'
        assert t['CompressResultImage'] == 'false'
        assert len(t) == 22

    def test_quoted_string_with_spaces(self, tmp_path):
        path = tmp_path / 't.txt'
        path.write_text('(ResultImagePixelType "unsigned char")\n')
        assert parse_transform_parameters(path)['ResultImagePixelType'] == 'unsigned char'

    def test_quoted_number_stays_string(self, tmp_path):
        path = tmp_path / 't.txt'
        path.write_text('(CustomLabel "42")\n')
        assert parse_transform_parameters(path)['CustomLabel'] == '42'

    def test_bracketed_sequence(self, tmp_path):
        path = tmp_path / 't.txt'
        path.write_text('(Spacing [0.5 0.5 2.0])\n(Origin (1 -2 3e1))\n')

        t = parse_transform_parameters(path)

        assert t.spacing == (0.5, 0.5, 2.0)
        assert t.origin == (1.0, -2.0, 30.0)

    def test_single_value_sequence_is_tuple(self, tmp_path):
        path = tmp_path / 't.txt'
        path.write_text('(TransformParameters 0.25)\n')
        assert parse_transform_parameters(path).transform_parameters == (0.25,)

    def test_unknown_keys_kept_in_extra(self, tmp_path):
        path = tmp_path / 't.txt'
        path.write_text(
            '(Transform "EulerTransform")\n'
            '(CenterOfRotationPoint 10.5 20.5)\n'
            '(ComputeZYX "false")\n'
            '(GridSize 8 8)\n'
            '(FixedImagePyramid "FixedSmoothingImagePyramid" "FixedSmoothingImagePyramid")\n'
        )

        t = parse_transform_parameters(path)

        assert 'ComputeZYX' in t.extra
        assert 'Transform' not in t.extra
        assert t['GridSize'] == (8.0, 8.0)
        assert t['FixedImagePyramid'] == ('FixedSmoothingImagePyramid',) * 2
        assert t['CenterOfRotationPoint'] == (10.5, 20.5)

    def test_comments_and_junk_skipped(self, tmp_path):
        path = tmp_path / 't.txt'
        path.write_text(
            '// elastix transform\n'
            '\n'
            'this is not a declaration\n'
            '(Transform "AffineTransform") // trailing comment\n'
            '(NumberOfParameters 6)\n'
        )

        t = parse_transform_parameters(path)

        assert dict(t) == {'Transform': 'AffineTransform', 'NumberOfParameters': 6.0}

    def test_known_number_key_with_text_moves_to_extra(self, tmp_path):
        path = tmp_path / 't.txt'
        path.write_text('(NumberOfParameters "many")\n')

        t = parse_transform_parameters(path)

        assert t['NumberOfParameters'] == 'many'
        assert t.number_of_parameters is None

    def test_record_is_read_only(self, transform_file):
        t = parse_transform_parameters(transform_file)
        with pytest.raises(TypeError):
            t['Transform'] = 'BSplineTransform'
        with pytest.raises(TypeError):
            t.extra['New'] = 1

    def test_to_dict_uses_lists(self, transform_file):
        d = parse_transform_parameters(transform_file).to_dict()
        assert d['TransformParameters'] == [-2.4571, 0.3162]

    def test_missing_file(self, tmp_path):
        with pytest.raises(MissingResultFile):
            parse_transform_parameters(tmp_path / 'TransformParameters.0.txt')

    def test_empty_record_accessors(self):
        t = TransformRecord({})
        assert t.transform is None
        assert t.size is None
        assert t.direction is None


class TestParseIterationInfo:
    """Tests for parse_iteration_info()."""

    def test_ten_rows(self, iteration_file):
        record = parse_iteration_info(iteration_file)

        assert len(record) == 10
        for i, row in enumerate(record):
            assert isinstance(row, IterationRow)
            assert len(row) == 5
            assert row.iteration == i

    def test_field_order_follows_header(self, iteration_file):
        first = parse_iteration_info(iteration_file)[0]

        # Row: ItNr Metric 3a:Time StepSize Gradient Time[ms]
        assert first == IterationRow(iteration=0, metric=-0.5, step_size=2.0, gradient=1.5, time=12.5)

    def test_column_arrays(self, iteration_file):
        record = parse_iteration_info(iteration_file)

        np.testing.assert_array_equal(record.column('iteration'), np.arange(10))
        assert record.column('time')[-1] == pytest.approx(21.5)
        with pytest.raises(KeyError):
            record.column('ItNr')

    def test_to_dataframe(self, iteration_file):
        df = parse_iteration_info(iteration_file).to_dataframe()

        assert df.shape == (10, 5)
        assert list(df.columns) == ['iteration', 'metric', 'step_size', 'gradient', 'time']

    def test_header_without_optimizer_time(self, tmp_path):
        path = tmp_path / 'IterationInfo.0.R0.txt'
        path.write_text(
            '1:ItNr\t2:Metric\t3:StepSize\t4:||Gradient||\tTime[ms]\n'
            '0\t-1.0\t1.0\t0.5\t3.0\n'
            '1\t-1.5\t0.5\t0.2\t6.0\n'
        )

        record = parse_iteration_info(path)

        assert len(record) == 2
        assert record[1].metric == -1.5

    def test_plain_column_names(self, tmp_path):
        path = tmp_path / 'IterationInfo.0.R0.txt'
        path.write_text(
            'ItNr\tMetric\tstepSize\tGradient\tTime\n'
            '0\t-1.0\t1.0\t0.5\t3.0\n'
        )

        record = parse_iteration_info(path)

        assert record[0] == IterationRow(iteration=0, metric=-1.0, step_size=1.0, gradient=0.5, time=3.0)

    def test_header_only(self, tmp_path):
        path = tmp_path / 'IterationInfo.0.R0.txt'
        path.write_text('1:ItNr\t2:Metric\t3:StepSize\t4:||Gradient||\tTime[ms]\n')
        assert len(parse_iteration_info(path)) == 0

    def test_missing_column_in_header(self, tmp_path):
        path = tmp_path / 'IterationInfo.0.R0.txt'
        path.write_text('1:ItNr\t2:Metric\tTime[ms]\n0\t-1.0\t3.0\n')

        with pytest.raises(MalformedIterationLog, match='header'):
            parse_iteration_info(path)

    def test_short_row(self, tmp_path):
        path = tmp_path / 'IterationInfo.0.R0.txt'
        path.write_text(
            '1:ItNr\t2:Metric\t3:StepSize\t4:||Gradient||\tTime[ms]\n'
            '0\t-1.0\t1.0\t0.5\t3.0\n'
            '1\t-1.5\t0.5\n'
        )

        with pytest.raises(MalformedIterationLog, match=':3:'):
            parse_iteration_info(path)

    def test_non_numeric_row(self, tmp_path):
        path = tmp_path / 'IterationInfo.0.R0.txt'
        path.write_text(
            '1:ItNr\t2:Metric\t3:StepSize\t4:||Gradient||\tTime[ms]\n'
            '0\t-1.0\tfast\t0.5\t3.0\n'
        )

        with pytest.raises(MalformedIterationLog):
            parse_iteration_info(path)

    def test_empty_file(self, tmp_path):
        path = tmp_path / 'IterationInfo.0.R0.txt'
        path.write_text('')

        with pytest.raises(MalformedIterationLog):
            parse_iteration_info(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(MissingResultFile):
            parse_iteration_info(tmp_path / 'IterationInfo.0.R0.txt')


class TestLocateResults:
    """Tests for locating elastix output artifacts."""

    def test_locate_result_image_any_extension(self, tmp_path):
        (tmp_path / 'result.0.png').write_bytes(b'png')
        assert locate_result_image(tmp_path) == tmp_path / 'result.0.png'

    def test_locate_result_image_compressed_nifti(self, tmp_path):
        (tmp_path / 'result.0.nii.gz').write_bytes(b'nii')
        assert locate_result_image(tmp_path) == tmp_path / 'result.0.nii.gz'

    def test_mhd_header_preferred_over_raw(self, tmp_path):
        (tmp_path / 'result.0.mhd').write_text('ElementDataFile = result.0.raw\n')
        (tmp_path / 'result.0.raw').write_bytes(b'\x00' * 8)
        assert locate_result_image(tmp_path) == tmp_path / 'result.0.mhd'

    def test_other_results_ignored(self, tmp_path):
        (tmp_path / 'result.1.png').write_bytes(b'png')
        (tmp_path / 'elastix.log').write_text('log')

        with pytest.raises(MissingResultImage):
            locate_result_image(tmp_path)

    def test_missing_result_image_is_missing_result_file(self):
        assert issubclass(MissingResultImage, MissingResultFile)

    def test_find_transform_and_iteration_files(self, tmp_path):
        (tmp_path / 'TransformParameters.0.txt').write_text('')
        (tmp_path / 'IterationInfo.0.R0.txt').write_text('')
        (tmp_path / 'IterationInfo.0.R1.txt').write_text('')

        assert find_transform_file(tmp_path).name == 'TransformParameters.0.txt'
        assert find_iteration_file(tmp_path).name == 'IterationInfo.0.R0.txt'

    def test_find_missing_files(self, tmp_path):
        with pytest.raises(MissingResultFile):
            find_transform_file(tmp_path)
        with pytest.raises(MissingResultFile):
            find_iteration_file(tmp_path)
