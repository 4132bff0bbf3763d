import pytest

from imputepipe.contracts.failure import ContractViolation
from imputepipe.pipeline.partition import (
    CHROMOSOMES,
    CHROMOSOME_LENGTH_MB,
    PartitionUnit,
    already_complete,
    plan_chromosome_units,
    plan_segment_units,
    read_first_marker_position,
    segment_offsets,
)
from tests.helpers.artifacts import write, write_haps

pytestmark = [pytest.mark.unit, pytest.mark.pipeline]


def test_chromosome_units_cover_autosomes(run_layout):
    units = plan_chromosome_units(run_layout)

    assert [u.chromosome for u in units] == list(range(1, 23))
    assert not any(u.is_segment for u in units)


def test_chr21_segments_from_first_marker(run_layout):
    """First marker at 20,300,000 bp on a 49 Mb chromosome: segments 20..49."""
    units = plan_segment_units(21, 49, run_layout, first_marker_bp=20_300_000)

    assert len(units) == 30
    assert units[0].segment_index == 20
    assert units[-1].segment_index == 49
    assert units[0].start_bp == 20_000_000
    assert units[0].end_bp == 21_000_000
    assert units[0].outputs == ((run_layout.segment_path(21, 20),),)
    assert units[0].label == "chr21:20Mb"


@pytest.mark.parametrize("chrom", CHROMOSOMES)
def test_segment_count_formula(run_layout, chrom):
    length = CHROMOSOME_LENGTH_MB[chrom]
    first = 16_050_000

    units = plan_segment_units(chrom, length, run_layout, first_marker_bp=first)

    assert len(units) == length - first // 1_000_000 + 1


def test_marker_past_table_end_plans_nothing(run_layout):
    assert plan_segment_units(21, 49, run_layout, first_marker_bp=60_000_000) == []


def test_segments_read_haps_file(run_layout):
    write_haps(run_layout, 21, position=47_500_123)

    units = plan_segment_units(21, 49, run_layout)

    assert [u.segment_index for u in units] == [47, 48, 49]


def test_segment_offsets_inclusive():
    assert list(segment_offsets(999_999, 2)) == [0, 1, 2]


class TestFirstMarker:

    def test_reads_third_column(self, temp_dir):
        path = write(temp_dir / "x.haps", "21 rs1 9411245 C T 0 0\n21 rs2 9411300 A G 1 0\n")
        assert read_first_marker_position(path) == 9411245

    def test_empty_file(self, temp_dir):
        with pytest.raises(ValueError):
            read_first_marker_position(write(temp_dir / "x.haps", ""))

    def test_non_integer(self, temp_dir):
        with pytest.raises(ValueError, match="not an integer"):
            read_first_marker_position(write(temp_dir / "x.haps", "21 rs1 pos\n"))

    def test_missing_file(self, temp_dir):
        with pytest.raises(FileNotFoundError):
            read_first_marker_position(temp_dir / "absent.haps")


class TestAlreadyComplete:

    def test_any_alternative_counts(self, temp_dir):
        root = write(temp_dir / "P_CHR1.bed")
        unit = PartitionUnit(chromosome=1, outputs=((temp_dir / "store" / "P_CHR1.bed", root),))

        assert already_complete(unit)

    def test_every_output_needed(self, temp_dir):
        bed = write(temp_dir / "a.bed")
        unit = PartitionUnit(chromosome=1, outputs=((bed,), (temp_dir / "a.bim",)))

        assert not already_complete(unit)

    def test_min_bytes(self, temp_dir):
        small = write(temp_dir / "a.bgen", "x")
        unit = PartitionUnit(chromosome=1, outputs=((small,),))

        assert already_complete(unit, min_bytes=1)
        assert not already_complete(unit, min_bytes=100)

    def test_unit_without_outputs_is_a_bug(self):
        with pytest.raises(ContractViolation):
            already_complete(PartitionUnit(chromosome=1))
