import tempfile
import threading
import unittest
from pathlib import Path
from types import SimpleNamespace

import numpy as np

import rtmdet_kit
from rtmdet_kit.config import DetectOptions, DetectorConfig
from rtmdet_kit.errors import ConfigError, InvalidImageError, ModelLoadError, SessionClosedError
from rtmdet_kit.postprocess import End2EndDecoder, Postprocessor
from rtmdet_kit.runtime import RTMDetPipeline, build_postprocessor, initialize, resolve_path
from rtmdet_kit.session import ModelHandle, SessionManager
from rtmdet_kit.tensor_adapter import TensorAdapter

# Detections in 640x640 model input space; a 640x480 image letterboxes with pad_y=80.
_DETS = np.array(
    [
        [
            [100, 180, 200, 280, 0.9],  # class 0
            [102, 182, 202, 282, 0.8],  # class 0, overlaps the first
            [300, 100, 400, 200, 0.6],  # class 2
            [0, 0, 10, 10, 0.1],  # class 1, below default threshold
        ]
    ],
    dtype=np.float32,
)
_LABELS = np.array([[0, 0, 2, 1]], dtype=np.int64)


class FakeEnd2EndEngine:
    def __init__(self, dets=_DETS, labels=_LABELS, masks=None):
        self.outputs = {"dets": dets, "labels": labels}
        if masks is not None:
            self.outputs["masks"] = masks
        self.calls = 0

    def get_inputs(self):
        return [SimpleNamespace(name="input", shape=[1, 3, 640, 640], type="tensor(float)")]

    def get_outputs(self):
        return [SimpleNamespace(name=n, shape=None, type="") for n in self.outputs]

    def run(self, output_names, feeds):
        self.calls += 1
        return [self.outputs[n] for n in output_names]


def _pipeline(engine=None, options=DetectOptions()) -> RTMDetPipeline:
    engine = engine or FakeEnd2EndEngine()
    return RTMDetPipeline(
        adapter=TensorAdapter(),
        manager=SessionManager(),
        handle=ModelHandle.from_engine(engine),
        postprocessor=Postprocessor(End2EndDecoder()),
        default_options=options,
    )


def _image(h=480, w=640) -> np.ndarray:
    return np.zeros((h, w, 3), dtype=np.uint8)


class TestPipelineDetect(unittest.TestCase):
    def test_detect_maps_back_to_image_space(self) -> None:
        dets = _pipeline().detect(_image())
        self.assertEqual(len(dets), 2)

        first, second = dets
        self.assertEqual((first.x, first.y, first.w, first.h), (100.0, 100.0, 100.0, 100.0))
        self.assertAlmostEqual(first.score, 0.9, places=5)
        self.assertEqual(first.class_id, 0)
        self.assertEqual((second.x, second.y, second.w, second.h), (300.0, 20.0, 100.0, 100.0))
        self.assertEqual(second.class_id, 2)

    def test_output_invariants(self) -> None:
        dets = _pipeline().detect(_image(), DetectOptions(score_threshold=0.05, iou_threshold=0.95))
        scores = [d.score for d in dets]
        self.assertEqual(scores, sorted(scores, reverse=True))
        for d in dets:
            self.assertGreater(d.w, 0)
            self.assertGreater(d.h, 0)
            self.assertGreaterEqual(d.x, 0)
            self.assertGreaterEqual(d.y, 0)
            self.assertLessEqual(d.x + d.w, 640)
            self.assertLessEqual(d.y + d.h, 480)
            self.assertTrue(0.0 <= d.score <= 1.0)

    def test_boxes_in_padding_are_dropped(self) -> None:
        # box [0, 0, 10, 10] lies in the top pad band and collapses to zero height
        dets = _pipeline().detect(_image(), DetectOptions(score_threshold=0.05))
        self.assertNotIn(1, [d.class_id for d in dets])

    def test_deterministic(self) -> None:
        pipe = _pipeline()
        self.assertEqual(pipe.detect(_image()), pipe.detect(_image()))

    def test_threshold_one_is_empty(self) -> None:
        self.assertEqual(_pipeline().detect(_image(), DetectOptions(score_threshold=1.0)), [])

    def test_empty_model_output(self) -> None:
        engine = FakeEnd2EndEngine(dets=np.zeros((1, 0, 5), dtype=np.float32), labels=np.zeros((1, 0), dtype=np.int64))
        self.assertEqual(_pipeline(engine).detect(_image()), [])

    def test_max_detections(self) -> None:
        dets = _pipeline().detect(_image(), DetectOptions(max_detections=1))
        self.assertEqual(len(dets), 1)
        self.assertEqual(dets[0].class_id, 0)

    def test_without_nms(self) -> None:
        dets = _pipeline().detect(_image(), DetectOptions(apply_nms=False))
        self.assertEqual([round(d.score, 2) for d in dets], [0.9, 0.8, 0.6])

    def test_invalid_image(self) -> None:
        pipe = _pipeline()
        with self.assertRaises(InvalidImageError):
            pipe.detect(np.zeros((0, 10, 3), dtype=np.uint8))
        # the model stays usable after a per-call failure
        self.assertEqual(len(pipe.detect(_image())), 2)

    def test_invalid_options(self) -> None:
        with self.assertRaises(ConfigError):
            DetectOptions(score_threshold=1.5)
        with self.assertRaises(ConfigError):
            DetectOptions(iou_threshold=-0.1)
        with self.assertRaises(ConfigError):
            DetectOptions(max_detections=0)

    def test_shutdown(self) -> None:
        engine = FakeEnd2EndEngine()
        with _pipeline(engine) as pipe:
            pipe.detect(_image())
        self.assertTrue(pipe.closed)
        with self.assertRaises(SessionClosedError):
            rtmdet_kit.detect(pipe, _image())
        rtmdet_kit.shutdown(pipe)  # idempotent
        self.assertEqual(engine.calls, 1)


class TestPipelineConcurrency(unittest.TestCase):
    def test_parallel_detect_matches_sequential(self) -> None:
        pipe = _pipeline(FakeEnd2EndEngine(masks=np.ones((1, 4, 64, 64), dtype=np.float32)))
        images = [_image(), _image(240, 320), _image(480, 320)]
        expected = [pipe.detect(img) for img in images]

        results = {}
        errors = []

        def worker(worker_id: int) -> None:
            try:
                for round_no in range(5):
                    k = (worker_id + round_no) % len(images)
                    results[(worker_id, round_no)] = (k, pipe.detect(images[k]))
            except Exception as exc:  # pragma: no cover
                errors.append(exc)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(errors, [])
        self.assertEqual(len(results), 30)
        for k, dets in results.values():
            self.assertEqual(dets, expected[k])


class TestPipelineMasks(unittest.TestCase):
    def _masks(self) -> np.ndarray:
        # 64x64 masks, 10 input pixels per mask pixel
        masks = np.zeros((1, 4, 64, 64), dtype=np.float32)
        masks[0, 0, 18:28, 10:20] = 1.0
        return masks

    def test_contours_and_centroid(self) -> None:
        dets = _pipeline(FakeEnd2EndEngine(masks=self._masks())).detect(_image())
        first, second = dets

        self.assertIsNotNone(first.centroid)
        cx, cy = first.centroid
        self.assertAlmostEqual(cx, 145.0, places=3)
        self.assertAlmostEqual(cy, 145.0, places=3)
        self.assertEqual(len(first.contours), 1)
        xs = first.contours[0][0::2]
        ys = first.contours[0][1::2]
        self.assertAlmostEqual(min(xs), 100.0, places=3)
        self.assertAlmostEqual(min(ys), 100.0, places=3)

        # empty mask -> no contours
        self.assertEqual(second.contours, ())
        self.assertIsNone(second.centroid)

    def test_masks_disabled(self) -> None:
        pipe = _pipeline(FakeEnd2EndEngine(masks=self._masks()))
        dets = pipe.detect(_image(), DetectOptions(with_masks=False))
        self.assertEqual(dets[0].contours, ())
        self.assertIsNone(dets[0].centroid)


class TestInitialize(unittest.TestCase):
    def test_requires_model(self) -> None:
        with self.assertRaises(ConfigError):
            initialize()

    def test_missing_model_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(ModelLoadError):
                initialize(Path(tmp) / "missing.onnx")

    def test_bad_decoder_fails_before_load(self) -> None:
        with self.assertRaises(ConfigError):
            initialize("missing.onnx", DetectorConfig(decoder="anchors"))

    def test_build_postprocessor_injects_input_size(self) -> None:
        post = build_postprocessor(DetectorConfig())
        self.assertEqual(post.decoder.input_size, (640, 640))

    def test_resolve_path(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            self.assertEqual(resolve_path("m.onnx", root=tmp), (Path(tmp) / "m.onnx").resolve())
            absolute = Path(tmp).resolve() / "x.onnx"
            self.assertEqual(resolve_path(absolute), absolute)


if __name__ == "__main__":
    unittest.main()
