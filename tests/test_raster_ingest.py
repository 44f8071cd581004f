"""Tests for raster loading and silhouette export."""
import numpy as np
import pytest
from PIL import Image

from layerseg.raster_ingest import (
    intensity_from_array,
    load_intensity,
    save_image,
    save_silhouette,
    to_uint8,
)
from layerseg.types import IngestError, Silhouette


class TestIntensity:
    """Test array conversion."""

    def test_uint8_gray(self):
        """Test 8-bit gray maps to [0, 1]."""
        image = np.array([[0, 255]], dtype=np.uint8)
        np.testing.assert_allclose(intensity_from_array(image), [[0.0, 1.0]])

    def test_float_above_one_normalized(self):
        """Test float data in 0..255 is rescaled."""
        image = np.array([[0.0, 255.0]])
        np.testing.assert_allclose(intensity_from_array(image), [[0.0, 1.0]])

    def test_rgba_composited_on_white(self):
        """Test transparent pixels become paper white."""
        image = np.zeros((1, 2, 4), dtype=np.uint8)
        image[0, 1, 3] = 255
        result = intensity_from_array(image)

        assert result[0, 0] == pytest.approx(1.0)
        assert result[0, 1] == pytest.approx(0.0)

    def test_bad_channels(self):
        """Test unsupported channel counts raise."""
        with pytest.raises(IngestError):
            intensity_from_array(np.zeros((2, 2, 2)))
        with pytest.raises(IngestError):
            intensity_from_array(np.zeros((2, 2, 3, 1)))


class TestLoad:
    """Test loading drawings from disk."""

    def test_load_gray_png(self, tmp_path):
        """Test a grayscale PNG loads as intensity."""
        data = np.full((8, 10), 255, dtype=np.uint8)
        data[:, 4] = 0
        path = tmp_path / "drawing.png"
        Image.fromarray(data).save(path)

        intensity = load_intensity(path)

        assert intensity.shape == (8, 10)
        assert intensity[0, 4] == pytest.approx(0.0)
        assert intensity[0, 0] == pytest.approx(1.0)

    def test_transparent_png(self, tmp_path):
        """Test a fully transparent PNG loads as white paper."""
        path = tmp_path / "empty.png"
        Image.new('RGBA', (6, 4), (0, 0, 0, 0)).save(path)

        intensity = load_intensity(path)
        np.testing.assert_allclose(intensity, np.ones((4, 6)), atol=1e-6)

    def test_missing_file(self, tmp_path):
        """Test a missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_intensity(tmp_path / "nothing.png")

    def test_not_an_image(self, tmp_path):
        """Test unreadable files raise IngestError."""
        path = tmp_path / "notes.png"
        path.write_text("not an image")
        with pytest.raises(IngestError):
            load_intensity(path)

    def test_directory(self, tmp_path):
        """Test a directory is rejected."""
        with pytest.raises(IngestError):
            load_intensity(tmp_path)


class TestExport:
    """Test writing silhouettes."""

    def test_to_uint8(self):
        """Test values are clipped and rounded."""
        np.testing.assert_array_equal(to_uint8(np.array([-1.0, 0.25, 2.0])), [0, 64, 255])

    def test_save_silhouette(self, tmp_path):
        """Test both images are written with a zero-padded index."""
        mask = np.zeros((4, 5))
        mask[1:3, 1:4] = 1.0
        boundary = np.ones((4, 5))
        boundary[1, 1] = 0.0
        boundary[1, 2] = 0.25
        silhouette = Silhouette(segment_id=3, index=7, mask=mask, boundary=boundary)

        shape_path, contour_path = save_silhouette(silhouette, tmp_path / "out")

        assert shape_path.name == "_seg_007.png"
        assert contour_path.name == "_org_007.png"
        shape = np.array(Image.open(shape_path))
        contour = np.array(Image.open(contour_path))
        np.testing.assert_array_equal(shape, (mask * 255).astype(np.uint8))
        assert contour[1, 1] == 0
        assert contour[1, 2] == 64
        assert contour[0, 0] == 255

    def test_save_rgb_image(self, tmp_path):
        """Test RGB images round trip through PNG."""
        image = np.zeros((2, 3, 3))
        image[0, 0] = (1.0, 0.0, 0.0)
        path = tmp_path / "rgb.png"
        save_image(image, path)

        loaded = np.array(Image.open(path))
        assert loaded.shape == (2, 3, 3)
        assert tuple(loaded[0, 0]) == (255, 0, 0)
