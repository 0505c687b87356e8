import json
import tempfile
import unittest
from pathlib import Path

from rtmdet_kit.backends import BackendKind
from rtmdet_kit.config import DetectorConfig, detector_config_from_dict, load_detector_config
from rtmdet_kit.errors import ConfigError


class TestDetectorConfig(unittest.TestCase):
    def test_defaults(self) -> None:
        cfg = detector_config_from_dict({})
        self.assertEqual(cfg, DetectorConfig())
        self.assertIs(cfg.onnx.kind, BackendKind.CPU)
        self.assertFalse(cfg.onnx.enable_mem_arena)
        self.assertEqual(cfg.onnx.graph_optimization, "basic")
        self.assertEqual(cfg.preprocess.input_size, (640, 640))
        self.assertEqual(cfg.options.score_threshold, 0.3)

    def test_full_payload(self) -> None:
        cfg = detector_config_from_dict(
            {
                "model": "rtmdet-ins.onnx",
                "backend": "CoreML",
                "output_names": "dets, labels,masks",
                "input_size": 320,
                "input_order": "rgb",
                "decoder": "end2end",
                "decoder_params": {"masks_name": "masks"},
                "class_ids": [0, 2],
                "score_threshold": 0.5,
                "max_detections": 10,
                "apply_nms": False,
            },
            base_dir=Path("/models"),
        )
        self.assertEqual(Path(cfg.model_path), Path("/models/rtmdet-ins.onnx").resolve())
        self.assertIs(cfg.onnx.kind, BackendKind.COREML)
        self.assertEqual(cfg.onnx.output_names, ("dets", "labels", "masks"))
        self.assertEqual(cfg.preprocess.input_size, (320, 320))
        self.assertEqual(cfg.preprocess.input_order, "rgb")
        self.assertEqual(cfg.decoder, "end2end")
        self.assertEqual(cfg.class_ids, (0, 2))
        self.assertEqual(cfg.options.max_detections, 10)
        self.assertFalse(cfg.options.apply_nms)

    def test_rejects_bad_values(self) -> None:
        for payload in (
            {"unknown_key": 1},
            {"score_threshold": "high"},
            {"score_threshold": 2.0},
            {"iou_threshold": True},
            {"max_detections": 0},
            {"backend": "tpu"},
            {"input_size": [640]},
            {"input_size": [640.5, 640]},
            {"class_ids": ["person"]},
            {"decoder_params": []},
            {"apply_nms": "yes"},
            {"graph_optimization": "max"},
        ):
            with self.subTest(payload=payload):
                with self.assertRaises(ConfigError):
                    detector_config_from_dict(payload)
        with self.assertRaises(ConfigError):
            detector_config_from_dict(["model.onnx"])

    def test_load_from_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "detector.json"
            path.write_text(json.dumps({"model": "m.onnx", "iou_threshold": 0.6}), encoding="utf-8")
            cfg = load_detector_config(path)
            self.assertEqual(Path(cfg.model_path), (Path(tmp) / "m.onnx").resolve())
            self.assertEqual(cfg.options.iou_threshold, 0.6)

            broken = Path(tmp) / "broken.json"
            broken.write_text("{not json", encoding="utf-8")
            with self.assertRaises(ConfigError):
                load_detector_config(broken)
            with self.assertRaises(ConfigError):
                load_detector_config(Path(tmp) / "missing.json")


if __name__ == "__main__":
    unittest.main()
