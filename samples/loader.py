import os
from pathlib import Path
from typing import List

import yaml

# Directory holding the bundled sample topologies.
SAMPLES_DIR = os.environ.get("SAMPLES_DIR", str(Path(__file__).resolve().parent))


class SampleLoader:
    @staticmethod
    def list(samples_path: str = SAMPLES_DIR) -> List[Path]:
        """Return available sample topology file paths, sorted by name."""
        samples_dir = Path(samples_path)
        if not samples_dir.is_dir():
            raise FileNotFoundError(f"Samples directory not found: {samples_path}")
        sample_paths = [
            path
            for path in samples_dir.iterdir()
            if path.is_file() and path.name.endswith((".yaml", ".yml"))
        ]
        return sorted(sample_paths)

    @staticmethod
    def config(sample_path: Path) -> dict:
        """Return the topology document stored in a sample file."""
        sample_path_real = os.path.realpath(str(sample_path))

        if not os.path.isfile(sample_path_real):
            raise FileNotFoundError(f"Sample file could not be resolved at {sample_path}")
        with open(sample_path_real, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f.read())
        if not isinstance(data, dict):
            raise ValueError(f"Sample file {sample_path} does not contain a mapping.")
        return data
