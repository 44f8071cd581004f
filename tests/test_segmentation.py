"""Tests for multilabel min-cut segmentation."""
import numpy as np
import pytest

from layerseg.color_map import ColorMap
from layerseg.segmentation import (
    SegmentationEngine,
    background_frame,
    edge_weights,
    scribble_ids,
    segment,
)
from layerseg.types import SegmentationConfig, SegmentationError

from conftest import compartment_image


def run_both_modes(intensity, scribbles):
    """Masks from region shrinking and from full-image cuts."""
    masks = []
    for shrink in (True, False):
        color_map = ColorMap.like(intensity)
        engine = SegmentationEngine(SegmentationConfig(shrink_region=shrink))
        masks.append(engine.segment(intensity, scribbles, color_map).copy())
    return masks


class TestHelpers:
    """Test frame construction and weights."""

    def test_background_frame(self):
        """Test the frame band is 2 * radius + 1 wide."""
        frame = background_frame(12, 10, radius=1)
        assert (frame[:3, :] == 0).all()
        assert (frame[-3:, :] == 0).all()
        assert (frame[:, :3] == 0).all()
        assert (frame[:, -3:] == 0).all()
        assert (frame[3:-3, 3:-3] == -1).all()

    def test_edge_weights(self):
        """Test weights use the darker of the two pixels."""
        intensity = np.array([[1.0, 0.5], [0.0, 1.0]])
        right, down = edge_weights(intensity, 4000.0, 2.0)

        assert right[0, 0] == 1001
        assert right[1, 0] == 1
        assert down[0, 0] == 1
        assert down[0, 1] == 1001
        assert right[0, 1] == 0 and down[1, 0] == 0

    def test_scribble_ids(self):
        """Test ids are listed once, ascending, without -1."""
        scribbles = np.array([[-1, 3, 0], [3, 130, -1]])
        assert scribble_ids(scribbles) == [0, 3, 130]

    def test_config_capacities(self):
        """Test soft scribbles pull with a sixteenth of the hard capacity."""
        config = SegmentationConfig()
        assert config.hard_capacity == 4000.0
        assert config.soft_capacity == 250.0

    def test_config_validation(self):
        """Test invalid parameters are rejected."""
        with pytest.raises(ValueError):
            SegmentationConfig(k_param=0)
        with pytest.raises(ValueError):
            SegmentationConfig(soft_parameter=0.5)


class TestSegmentation:
    """Test the segmentation engine."""

    def test_bisector_split(self, bisector_case):
        """Test two scribbles on a flat image split the enclosed block between them."""
        intensity, scribbles, color_map = bisector_case
        mask = segment(intensity, scribbles, color_map)

        outside = np.ones((10, 10), dtype=bool)
        outside[3:7, 3:7] = False
        assert (mask[outside] == 0).all()
        assert (mask[3:7, 3] == 1).all()
        assert (mask[3:7, 6] == 2).all()

        rows = mask[3:7, 3:7]
        for row in rows:
            assert set(row.tolist()) == {1, 2}
            first_two = list(row).index(2)
            assert (row[:first_two] == 1).all()
            assert (row[first_two:] == 2).all()
        assert len({tuple(row) for row in rows.tolist()}) == 1

    def test_every_pixel_assigned(self, compartments):
        """Test no pixel is left unassigned and ids stay in range."""
        intensity, scribbles = compartments
        color_map = ColorMap.like(intensity)
        mask = segment(intensity, scribbles, color_map)

        assert (mask >= 0).all()
        assert (mask <= 255).all()
        assert mask is color_map.mask

    def test_compartments_follow_walls(self, compartments):
        """Test each walled compartment takes the id scribbled inside it."""
        intensity, scribbles = compartments
        color_map = ColorMap.like(intensity)
        mask = segment(intensity, scribbles, color_map)

        assert (mask[2:12, 2:7] == 1).all()
        assert (mask[2:12, 8:12] == 2).all()
        assert (mask[2:12, 13:18] == 3).all()
        assert (mask[0, :] == 0).all()

    def test_idempotent(self, compartments):
        """Test running twice gives the same mask."""
        intensity, scribbles = compartments
        color_map = ColorMap.like(intensity)
        first = segment(intensity, scribbles, color_map).copy()
        second = segment(intensity, scribbles, color_map)

        np.testing.assert_array_equal(first, second)

    @pytest.mark.parametrize("walls,ids", [
        ((7, 12), (1, 2, 3)),
        ((10,), (1, 2)),
        ((5, 9, 14), (2, 4, 5, 7)),
        ((7, 12), (1, 130, 131)),
    ])
    def test_shrinking_matches_full_cuts(self, walls, ids):
        """Test region shrinking agrees with full-image cuts on walled compartments."""
        intensity = compartment_image(walls=walls)
        scribbles = background_frame(20, 14, radius=0)
        edges = [1] + list(walls) + [18]
        for left, right, seg_id in zip(edges[:-1], edges[1:], ids):
            scribbles[5:8, (left + right) // 2] = seg_id

        np.testing.assert_array_equal(*run_both_modes(intensity, scribbles))

    def test_shrinking_matches_full_cuts_random(self):
        """Test both modes agree on random binary drawings with 2 to 4 scribbles."""
        rng = np.random.default_rng(11)
        ids = [1, 2, 3, 4, 5, 128, 129]
        for _ in range(200):
            height, width = rng.integers(6, 12, size=2)
            intensity = (rng.random((height, width)) < 0.7).astype(np.float64)
            scribbles = background_frame(width, height, radius=0)

            count = rng.integers(2, 5)
            interior = [(y, x) for y in range(1, height - 1) for x in range(1, width - 1)]
            picks = rng.choice(len(interior), size=count, replace=False)
            for pick, seg_id in zip(picks, rng.choice(ids, size=count, replace=False)):
                scribbles[interior[pick]] = seg_id

            shrink, full = run_both_modes(intensity, scribbles)
            np.testing.assert_array_equal(shrink, full)

    def test_adjacent_hard_scribbles_keep_their_ids(self):
        """Test a tied cut between touching hard scribbles leaves each its own id."""
        intensity = np.ones((9, 9))
        scribbles = background_frame(9, 9, radius=0)
        scribbles[4, 3] = 1
        scribbles[4, 4] = 2

        for mask in run_both_modes(intensity, scribbles):
            assert mask[4, 3] == 1
            assert mask[4, 4] == 2
            assert (mask >= 0).all()

    def test_soft_scribble_yields_to_hard(self):
        """Test a soft scribble loses its pixel to a neighboring hard one on bright paper."""
        intensity = np.ones((1, 2))
        for raster in (np.array([[1, 128]]), np.array([[128, 1]])):
            color_map = ColorMap(2, 1)
            mask = segment(intensity, raster, color_map)
            assert (mask == 1).all()


class TestValidation:
    """Test malformed input handling."""

    def test_shape_mismatch(self):
        """Test mismatched scribbles raise."""
        with pytest.raises(SegmentationError):
            segment(np.ones((4, 4)), np.full((4, 5), -1), ColorMap(4, 4))

    def test_colormap_mismatch(self):
        """Test a ColorMap of another size raises."""
        with pytest.raises(SegmentationError):
            segment(np.ones((4, 4)), np.full((4, 4), -1), ColorMap(5, 4))

    def test_not_2d(self):
        """Test color input is rejected."""
        with pytest.raises(SegmentationError):
            segment(np.ones((4, 4, 3)), np.full((4, 4), -1), ColorMap(4, 4))

    def test_id_out_of_range(self):
        """Test ids above 255 are rejected."""
        scribbles = np.full((4, 4), -1)
        scribbles[1, 1] = 300
        with pytest.raises(SegmentationError):
            segment(np.ones((4, 4)), scribbles, ColorMap(4, 4))

    def test_integral_float_scribbles(self, compartments):
        """Test float rasters holding whole numbers segment like integer ones."""
        intensity, scribbles = compartments
        expected = segment(intensity, scribbles, ColorMap.like(intensity)).copy()
        mask = segment(intensity, scribbles.astype(np.float64), ColorMap.like(intensity))

        np.testing.assert_array_equal(mask, expected)

    def test_fractional_scribbles(self):
        """Test non-integer ids are rejected."""
        scribbles = np.full((4, 4), -1.0)
        scribbles[1, 1] = 1.5
        with pytest.raises(SegmentationError):
            segment(np.ones((4, 4)), scribbles, ColorMap(4, 4))
