import matplotlib
matplotlib.use('Agg')

import pytest

from simulation.background import checker_environment
from simulation.scene import SceneSetup


@pytest.fixture(scope='session')
def environment():
    return checker_environment(64, 32, 8, 4)


@pytest.fixture
def small_scene():
    # tiny grid and budgets keep kernel tests fast
    return SceneSetup(compute_width=16, compute_height=12,
                      integration_steps_still=400, integration_steps_moving=200)
