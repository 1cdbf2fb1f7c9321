import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from managers.sample_manager import SampleManager, get_sample_manager

SAMPLE_TEMPLATE = """
name: {name}
properties:
  description: {description}
  sources:
    - "@type": "#Microsoft.Media.MediaGraphRtspSource"
      name: rtspSource
      endpoint:
        url: rtsp://camera
  sinks:
    - "@type": "#Microsoft.Media.MediaGraphIoTHubMessageSink"
      name: hubSink
      hubOutputName: events
      inputs:
        - nodeName: rtspSource
"""


class TestSampleManager(unittest.TestCase):
    def setUp(self):
        self.test_dir = tempfile.TemporaryDirectory()
        self.addCleanup(self.test_dir.cleanup)

    def write_sample(self, file_name: str, name: str, description: str = "Sample"):
        (Path(self.test_dir.name) / file_name).write_text(
            SAMPLE_TEMPLATE.format(name=name, description=description)
        )

    def test_load_samples(self):
        self.write_sample("first.yaml", "first", "First sample")
        self.write_sample("second.yaml", "second")

        manager = SampleManager(self.test_dir.name)

        self.assertEqual(sorted(manager.samples), ["first", "second"])
        sample = manager.get_sample("first")
        self.assertEqual(sample.description, "First sample")
        self.assertEqual([node.name for node in sample.nodes], ["rtspSource", "hubSink"])

    def test_duplicate_sample_name(self):
        self.write_sample("first.yaml", "same")
        self.write_sample("second.yaml", "same")

        with self.assertRaises(ValueError):
            SampleManager(self.test_dir.name)

    def test_invalid_sample(self):
        (Path(self.test_dir.name) / "broken.yaml").write_text("name: broken\nproperties: 5\n")

        with self.assertRaises(ValueError):
            SampleManager(self.test_dir.name)

    def test_get_sample_not_found(self):
        manager = SampleManager(self.test_dir.name)

        with self.assertRaises(ValueError) as context:
            manager.get_sample("unknown")
        self.assertEqual(str(context.exception), "Sample with name 'unknown' not found.")

    def test_returned_samples_are_copies(self):
        self.write_sample("first.yaml", "first")
        manager = SampleManager(self.test_dir.name)

        sample = manager.get_sample("first")
        sample.nodes[0].name = "changed"
        manager.get_samples()[0].description = "changed"

        original = manager.get_sample("first")
        self.assertEqual(original.nodes[0].name, "rtspSource")
        self.assertEqual(original.description, "Sample")

    def test_bundled_samples_load(self):
        manager = SampleManager()

        self.assertIn("motion-detection", manager.samples)
        self.assertIn("continuous-recording", manager.samples)
        self.assertIn("http-extension", manager.samples)


class TestGetSampleManager(unittest.TestCase):
    @patch("managers.sample_manager._sample_manager_instance", None)
    @patch("managers.sample_manager.SampleManager")
    def test_singleton(self, mock_manager_cls):
        first = get_sample_manager()
        second = get_sample_manager()

        self.assertIs(first, second)
        mock_manager_cls.assert_called_once_with()

    @patch("managers.sample_manager._sample_manager_instance", None)
    @patch("managers.sample_manager.SampleManager", side_effect=FileNotFoundError("gone"))
    def test_initialization_failure_exits(self, _mock_manager_cls):
        with self.assertRaises(SystemExit):
            get_sample_manager()


if __name__ == "__main__":
    unittest.main()
