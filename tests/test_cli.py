import contextlib
import io
import json
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import numpy as np

from rtmdet_kit import cli
from rtmdet_kit.config import DetectorConfig
from rtmdet_kit.errors import ModelLoadError
from rtmdet_kit.types import Detection


class FakePipeline:
    def __init__(self, detections):
        self.detections = detections
        self.closed = False

    def detect(self, image):
        return list(self.detections)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.closed = True


class TestCli(unittest.TestCase):
    def setUp(self) -> None:
        import cv2

        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.image_path = self.root / "frame.png"
        cv2.imwrite(str(self.image_path), np.zeros((48, 64, 3), dtype=np.uint8))
        self.detections = [Detection(x=4, y=6, w=20, h=10, score=0.75, class_id=0, contours=((4, 6, 24, 6, 24, 16),))]

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _run(self, argv, pipeline=None):
        pipeline = pipeline or FakePipeline(self.detections)
        stdout = io.StringIO()
        with mock.patch.object(cli, "initialize", return_value=pipeline) as init, contextlib.redirect_stdout(stdout):
            code = cli.main(argv)
        return code, stdout.getvalue(), init

    def test_json_output(self) -> None:
        code, out, init = self._run(["--image", str(self.image_path), "--model", "m.onnx", "--json", "--conf", "0.5"])
        self.assertEqual(code, 0)
        payload = json.loads(out)
        self.assertEqual(payload[0]["label"], "person")
        self.assertEqual(payload[0]["w"], 20)
        self.assertIn("contours", payload[0])

        model_arg, cfg = init.call_args[0]
        self.assertEqual(model_arg, "m.onnx")
        self.assertEqual(cfg.options.score_threshold, 0.5)

    def test_text_output_and_visualization(self) -> None:
        out_path = self.root / "vis.png"
        code, out, _ = self._run(["--image", str(self.image_path), "--model", "m.onnx", "--out", str(out_path)])
        self.assertEqual(code, 0)
        self.assertTrue(out.startswith("person 0.750"))
        self.assertTrue(out_path.exists())

    def test_typed_errors_exit_2(self) -> None:
        code, _, _ = self._run(["--image", str(self.root / "missing.png"), "--model", "m.onnx"])
        self.assertEqual(code, 2)

        code, _, init = self._run(
            ["--image", str(self.image_path), "--model", "m.onnx", "--metadata", str(self.root / "missing.yaml")]
        )
        self.assertEqual(code, 2)
        init.assert_not_called()

        stdout = io.StringIO()
        with mock.patch.object(cli, "initialize", side_effect=ModelLoadError("boom")), contextlib.redirect_stdout(stdout):
            self.assertEqual(cli.main(["--image", str(self.image_path), "--model", "m.onnx"]), 2)

    def test_overrides(self) -> None:
        args = cli.build_parser().parse_args(
            ["--image", "x.png", "--backend", "cuda", "--imgsz", "320", "--decoder", "end2end", "--no-nms", "--max-det", "5"]
        )
        cfg = cli._apply_overrides(DetectorConfig(decoder_params={"strides": [8, 16, 32]}), args)
        self.assertEqual(cfg.onnx.kind.value, "cuda")
        self.assertEqual(cfg.preprocess.input_size, (320, 320))
        self.assertEqual(cfg.decoder, "end2end")
        self.assertEqual(dict(cfg.decoder_params), {})
        self.assertFalse(cfg.options.apply_nms)
        self.assertEqual(cfg.options.max_detections, 5)


if __name__ == "__main__":
    unittest.main()
