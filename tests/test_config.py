import os
import tempfile
import unittest

from config import load_toolchains, COVER_IMAGE_REPO


class TestLoadToolchains(unittest.TestCase):
    """Tests for loading the toolchain table from YAML."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.temp_dir.name, 'toolchains.yaml')

    def tearDown(self):
        """Tear down test fixtures."""
        self.temp_dir.cleanup()

    def write(self, content):
        with open(self.path, 'w') as f:
            f.write(content)

    def test_load(self):
        """Test explicit images and the default image name."""
        self.write(
            "golang-1.11:\n"
            "  image: example/cover:go1.11\n"
            "golang-1.12:\n"
        )

        toolchains = load_toolchains(self.path)

        self.assertEqual(toolchains['golang-1.11']['image'], 'example/cover:go1.11')
        self.assertEqual(toolchains['golang-1.12']['image'], f'{COVER_IMAGE_REPO}:golang-1.12')

    def test_not_a_mapping(self):
        """Test a YAML list is rejected."""
        self.write("- golang-1.11\n")

        with self.assertRaises(ValueError):
            load_toolchains(self.path)


if __name__ == '__main__':
    unittest.main()
