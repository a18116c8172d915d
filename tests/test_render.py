import math
from dataclasses import replace

import numpy as np
import pytest

from ptroute.camera import Camera, frame_camera
from ptroute.config import RenderSettings
from ptroute.enums import NodeKind
from ptroute.errors import SceneEmpty
from ptroute.model import SceneEdge, SceneFile, SceneNode
from ptroute.renderer import (
    build_spheres,
    link_intensity,
    link_radius,
    node_radius,
    render_scene,
    render_scene_progressive,
    row_bands,
    to_image,
)


class TestSceneConstruction:
    def test_nodes_are_matte_and_links_emissive(self, scene):
        spheres = build_spheres(scene)
        node_count = len(scene.nodes)

        assert len(spheres) > node_count
        assert not spheres.emissive[:node_count].any()
        assert spheres.emissive[node_count:].all()

    def test_link_chain_length_follows_spacing(self):
        nodes = [
            SceneNode(key="a", kind=NodeKind.RESPONDING, position=(0.0, 0.0, 0.0), min_ttl=1, degree=1),
            SceneNode(key="b", kind=NodeKind.RESPONDING, position=(3.0, 0.0, 0.0), min_ttl=2, degree=1),
        ]
        edge = SceneEdge(source="a", destination="b", samples=1)
        spheres = build_spheres(SceneFile(seed=1, camera=None, nodes=nodes, edges=[edge]))

        spacing = max(link_radius(1) * 3.0, 0.05)
        steps = max(math.ceil(3.0 / spacing), 2)
        assert len(spheres) == 2 + steps - 1
        assert spheres.centers[2:, 0].min() > 0.0
        assert spheres.centers[2:, 0].max() < 3.0

    def test_busier_links_glow_brighter(self):
        quiet = SceneEdge(source="a", destination="b", samples=1, rtt_count=3)
        busy = SceneEdge(source="a", destination="b", samples=20, rtt_count=60)
        lossy = SceneEdge(source="a", destination="b", samples=20, rtt_count=0, loss=60)
        assert link_intensity(busy) > link_intensity(quiet)
        assert link_intensity(lossy) == pytest.approx(link_intensity(busy) * 0.25)

    def test_radius_grows_with_observations(self):
        assert node_radius(1) == pytest.approx(0.15)
        assert node_radius(10) > node_radius(1)
        assert link_radius(0) == link_radius(1)


class TestRender:
    def test_image_shape_and_type(self, scene, small_render):
        image = render_scene(scene, small_render)
        assert image.shape == (16, 24, 3)
        assert image.dtype == np.uint8

    def test_repeat_render_is_byte_identical(self, scene):
        settings = RenderSettings(width=64, height=64, spp=4, bounces=2, seed=1, threads=1, progress_every=0)
        first = render_scene(scene, settings)
        second = render_scene(scene, settings)
        assert first.tobytes() == second.tobytes()

    def test_thread_count_does_not_change_image(self, scene, small_render):
        single = render_scene(scene, small_render)
        pooled = render_scene(scene, replace(small_render, threads=4))
        assert np.array_equal(single, pooled)

    def test_seed_changes_noise(self, scene, small_render):
        first = render_scene(scene, small_render)
        second = render_scene(scene, replace(small_render, seed=2))
        assert not np.array_equal(first, second)

    def test_scene_is_visible(self, scene, small_render):
        image = render_scene(scene, replace(small_render, spp=4))
        assert image.max() > 0

    def test_progressive_final_matches_single_pass(self, scene, small_render):
        settings = replace(small_render, spp=3)
        passes = []

        final = render_scene_progressive(scene, settings, lambda image, done: passes.append((done, image.copy())), every=1)

        assert [done for done, _ in passes] == [1, 2, 3]
        assert all(image.shape == (16, 24, 3) for _, image in passes)
        assert np.array_equal(final, passes[-1][1])
        assert np.array_equal(final, render_scene(scene, settings))

    def test_progressive_uses_settings_interval(self, scene, small_render):
        settings = replace(small_render, spp=5, progressive_every=2)
        seen = []
        render_scene_progressive(scene, settings, lambda image, done: seen.append(done))
        assert seen == [2, 4, 5]

    def test_empty_scene_rejected(self, small_render):
        with pytest.raises(SceneEmpty):
            render_scene(SceneFile(seed=1, camera=None), small_render)


class TestImageHelpers:
    def test_row_bands_cover_every_row_once(self):
        bands = row_bands(37, 3)
        rows = [row for start, end in bands for row in range(start, end)]
        assert rows == list(range(37))

    def test_tone_mapping_clamps_and_applies_gamma(self):
        accum = np.array([[[0.0, 0.25, 8.0]]]) * 2
        image = to_image(accum, 2)
        assert image.tolist() == [[[0, 127, 255]]]


class TestCamera:
    def test_framing_looks_at_box_center(self):
        spec = frame_camera((0.0, 0.0, -1.0), (4.0, 2.0, 1.0))
        assert spec.look_at == (2.0, 1.0, 0.0)
        assert spec.look_from[0] > 4.0 and spec.look_from[2] > 1.0

    def test_directions_are_unit_and_centered(self):
        spec = frame_camera((0.0, 0.0, 0.0), (1.0, 1.0, 1.0))
        camera = Camera(spec, 16 / 9)
        directions = camera.directions(np.array([0.0, 0.5, 1.0]), np.array([0.0, 0.5, 1.0]))
        assert np.allclose(np.linalg.norm(directions, axis=1), 1.0)

        forward = np.asarray(spec.look_at) - np.asarray(spec.look_from)
        forward /= np.linalg.norm(forward)
        assert np.allclose(directions[1], forward)
