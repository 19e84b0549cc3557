"""Shared fixtures for the test suite."""
import numpy as np
import pytest

from tests.helpers import build_dataset
from tests.helpers import container
from tests.helpers import single_container_dataset


@pytest.fixture
def app_id():
    return container("app")


@pytest.fixture
def spiky_dataset():
    """One container, nine samples of 1 MB and a single 100 MB spike."""
    return single_container_dataset([1, 1, 1, 1, 1, 1, 1, 1, 1, 100])


@pytest.fixture
def random_dataset():
    """Five containers randomly present over 200 timestamps."""
    rng = np.random.default_rng(42)
    containers = [container(f"svc-{i}") for i in range(5)]
    samples = {}
    for timestamp in range(0, 200 * 15, 15):
        present = [c for c in containers if rng.random() < 0.7] or containers[:1]
        samples[timestamp] = {c: int(rng.integers(1, 5000)) for c in present}
    return build_dataset(samples)
