import pytest

from helpers import FakeRunner, example_runs
from ptroute.config import LayoutSettings, RenderSettings
from ptroute.graph import build_graph
from ptroute.layout import layout_graph


@pytest.fixture
def runs():
    return example_runs()


@pytest.fixture
def graph(runs):
    return build_graph(runs)


@pytest.fixture
def scene(graph):
    return layout_graph(graph, LayoutSettings(seed=1))


@pytest.fixture
def small_render():
    return RenderSettings(width=24, height=16, spp=2, bounces=2, seed=1, threads=1, progress_every=0)


@pytest.fixture
def runner():
    return FakeRunner()
