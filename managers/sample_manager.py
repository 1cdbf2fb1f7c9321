import logging
import sys
import threading
from typing import Optional

from samples.loader import SAMPLES_DIR, SampleLoader
from topology import TopologyDocument

logger = logging.getLogger("sample_manager")

# Singleton instance for SampleManager
_sample_manager_instance: Optional["SampleManager"] = None


def get_sample_manager() -> "SampleManager":
    """
    Returns the singleton instance of SampleManager.
    If it cannot be created, logs an error and exits the application.
    """
    global _sample_manager_instance
    if _sample_manager_instance is None:
        try:
            _sample_manager_instance = SampleManager()
        except Exception as e:
            logger.error(f"Failed to initialize SampleManager: {e}")
            sys.exit(1)
    return _sample_manager_instance


class SampleManager:
    """
    Serve the sample topologies offered by the sample selector.

    Samples are read once from the samples directory and kept as parsed
    TopologyDocument objects; callers always receive copies so that edits
    never leak back into the catalogue.
    """

    def __init__(self, samples_dir: str = SAMPLES_DIR):
        self.logger = logging.getLogger("SampleManager")
        self.lock = threading.Lock()
        self.samples = self.load_samples(samples_dir)

    def load_samples(self, samples_dir: str) -> dict[str, TopologyDocument]:
        """
        Parse every sample file in ``samples_dir``.

        Raises:
            ValueError: If a sample is not a valid topology or two samples
                share a name.
        """
        samples: dict[str, TopologyDocument] = {}
        for sample_path in SampleLoader.list(samples_dir):
            topology = TopologyDocument.from_dict(SampleLoader.config(sample_path))
            if topology.name in samples:
                raise ValueError(
                    f"Duplicate sample name '{topology.name}' in {sample_path}."
                )
            samples[topology.name] = topology
        self.logger.debug(f"Loaded samples: {list(samples)}")
        return samples

    def get_samples(self) -> list[TopologyDocument]:
        with self.lock:
            return [sample.copy() for sample in self.samples.values()]

    def get_sample(self, name: str) -> TopologyDocument:
        """
        Return a copy of the sample named ``name``.

        Raises:
            ValueError: If no such sample exists.
        """
        with self.lock:
            sample = self.samples.get(name)
            if sample is None:
                raise ValueError(f"Sample with name '{name}' not found.")
            return sample.copy()
