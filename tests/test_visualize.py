import unittest

import numpy as np

from rtmdet_kit.types import Detection
from rtmdet_kit.visualize import color_for_class_id, draw_detections


class TestDrawDetections(unittest.TestCase):
    def test_draws_on_copy(self) -> None:
        img = np.zeros((60, 80, 3), dtype=np.uint8)
        det = Detection(
            x=10, y=20, w=30, h=20, score=0.8, class_id=3,
            contours=((12, 22, 38, 22, 38, 38, 12, 38),), centroid=(25.0, 30.0),
        )
        out = draw_detections(img, [det], class_names={3: "car"})
        self.assertEqual(out.shape, img.shape)
        self.assertFalse(img.any())
        self.assertTrue(out.any())
        # mask fill tints the interior
        self.assertTrue(out[34, 20].any())

    def test_colors_are_stable_and_distinct(self) -> None:
        self.assertEqual(color_for_class_id(5), color_for_class_id(5))
        self.assertNotEqual(color_for_class_id(0), color_for_class_id(1))

    def test_rejects_bad_input(self) -> None:
        with self.assertRaises(ValueError):
            draw_detections(np.zeros((10, 10), dtype=np.uint8), [])
        with self.assertRaises(ValueError):
            draw_detections(np.zeros((10, 10, 3), dtype=np.uint8), [], mask_alpha=2.0)


if __name__ == "__main__":
    unittest.main()
