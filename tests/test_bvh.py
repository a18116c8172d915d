import numpy as np
import pytest

from ptroute.bvh import LEAF_SIZE, Bvh
from ptroute.geometry import Spheres
from ptroute.sampling import SampleRng, cosine_hemisphere, hash_seed


def random_spheres(count, seed=7):
    rng = np.random.default_rng(seed)
    return Spheres.from_lists(
        centers=rng.uniform(-10.0, 10.0, size=(count, 3)),
        radii=rng.uniform(0.05, 0.6, size=count),
        albedo=np.full((count, 3), 0.5),
        emission=np.zeros((count, 3)),
    )


def random_rays(count, seed=11):
    rng = np.random.default_rng(seed)
    origins = rng.uniform(-12.0, 12.0, size=(count, 3))
    directions = rng.normal(size=(count, 3))
    directions /= np.linalg.norm(directions, axis=1)[:, None]
    return origins, directions


class TestBvh:
    def test_matches_brute_force(self):
        bvh = Bvh(random_spheres(300))
        origins, directions = random_rays(2000)

        t, prim = bvh.intersect(origins, directions)
        t_ref, prim_ref = bvh.intersect_brute_force(origins, directions)

        assert np.array_equal(prim, prim_ref)
        assert np.allclose(t[prim >= 0], t_ref[prim_ref >= 0])
        assert (prim >= 0).any()

    def test_rays_aimed_at_spheres_hit_them(self):
        spheres = random_spheres(50)
        bvh = Bvh(spheres)
        origins = spheres.centers + np.array([0.0, 0.0, 40.0])
        directions = np.tile(np.array([0.0, 0.0, -1.0]), (len(spheres), 1))

        t, prim = bvh.intersect(origins, directions)
        assert (prim >= 0).all()
        assert np.isfinite(t).all()

    def test_misses_report_inf(self):
        bvh = Bvh(random_spheres(20))
        origins = np.array([[0.0, 100.0, 0.0]])
        directions = np.array([[0.0, 1.0, 0.0]])
        t, prim = bvh.intersect(origins, directions)
        assert prim[0] == -1
        assert t[0] == np.inf

    def test_empty_scene_misses_everything(self):
        bvh = Bvh(Spheres.from_lists([], [], [], []))
        origins, directions = random_rays(10)
        t, prim = bvh.intersect(origins, directions)
        assert bvh.node_count == 0
        assert (prim == -1).all()
        assert np.isinf(t).all()

    def test_leaves_are_small_and_cover_every_primitive(self):
        count = 137
        bvh = Bvh(random_spheres(count))
        leaves = bvh.left < 0
        sizes = bvh.end[leaves] - bvh.start[leaves]
        assert sizes.max() <= LEAF_SIZE
        assert sizes.sum() == count
        assert sorted(bvh.order.tolist()) == list(range(count))

    def test_boxes_contain_children(self):
        bvh = Bvh(random_spheres(64))
        for node in range(bvh.node_count):
            if bvh.left[node] < 0:
                continue
            for child in (bvh.left[node], bvh.right[node]):
                assert (bvh.box_min[child] >= bvh.box_min[node] - 1e-12).all()
                assert (bvh.box_max[child] <= bvh.box_max[node] + 1e-12).all()

    def test_axis_aligned_rays(self):
        spheres = Spheres.from_lists([(0.0, 0.0, 0.0), (5.0, 0.0, 0.0)], [1.0, 1.0], [(0.5,) * 3] * 2, [(0.0,) * 3] * 2)
        bvh = Bvh(spheres)
        t, prim = bvh.intersect(np.array([[-5.0, 0.0, 0.0]]), np.array([[1.0, 0.0, 0.0]]))
        assert prim[0] == 0
        assert t[0] == pytest.approx(4.0)


class TestSampling:
    def test_hash_seed_is_deterministic_and_nonzero(self):
        xs = np.arange(64)
        ys = np.zeros(64, dtype=np.int64)
        first = hash_seed(1, xs, ys, 0)
        assert np.array_equal(first, hash_seed(1, xs, ys, 0))
        assert (first != 0).all()
        assert len(set(first.tolist())) == 64

    def test_hash_seed_depends_on_every_input(self):
        base = hash_seed(1, np.array([3]), np.array([4]), 5)
        assert base[0] != hash_seed(2, np.array([3]), np.array([4]), 5)[0]
        assert base[0] != hash_seed(1, np.array([4]), np.array([4]), 5)[0]
        assert base[0] != hash_seed(1, np.array([3]), np.array([5]), 5)[0]
        assert base[0] != hash_seed(1, np.array([3]), np.array([4]), 6)[0]

    def test_hash_seed_large_coordinates_do_not_collide(self):
        # Pairs that coincide when the inputs are packed into one word by shifting.
        assert hash_seed(1, np.array([0]), np.array([1]), 0)[0] != hash_seed(1, np.array([0]), np.array([0]), 1 << 16)[0]
        assert hash_seed(1, np.array([1]), np.array([0]), 0)[0] != hash_seed(1, np.array([0]), np.array([1 << 16]), 0)[0]
        assert hash_seed(1, np.array([0]), np.array([0]), 1 << 32)[0] != hash_seed(1, np.array([0]), np.array([0]), 0)[0]

    def test_uniform_range(self):
        rng = SampleRng(hash_seed(9, np.arange(1000), np.arange(1000), 0))
        values = np.concatenate([rng.uniform() for _ in range(5)])
        assert values.min() >= 0.0
        assert values.max() < 1.0

    def test_subset_draw_only_advances_selected_streams(self):
        states = hash_seed(1, np.arange(4), np.zeros(4, dtype=np.int64), 0)
        full = SampleRng(states)
        partial = SampleRng(states)

        partial.uniform(np.array([1, 3]))
        assert partial.states[0] == full.states[0]
        assert partial.states[2] == full.states[2]

        drawn = full.uniform()
        assert np.array_equal(partial.states[[1, 3]], full.states[[1, 3]])
        assert drawn.shape == (4,)

    def test_cosine_hemisphere_stays_above_surface(self):
        rng = np.random.default_rng(3)
        normals = rng.normal(size=(500, 3))
        normals /= np.linalg.norm(normals, axis=1)[:, None]
        directions = cosine_hemisphere(normals, rng.uniform(size=500), rng.uniform(size=500))

        assert np.allclose(np.linalg.norm(directions, axis=1), 1.0)
        assert ((directions * normals).sum(axis=1) >= -1e-9).all()
