import math

import numpy as np
import pytest

import psp_mcmc as M


@pytest.mark.parametrize("n", list(range(1, 11)))
def test_unit_ball_log_volume(n):
    expected = math.log(math.pi ** (n / 2.0) / math.gamma(n / 2.0 + 1.0))
    assert abs(M.unit_ball_log_volume(n) - expected) < 1e-10


def test_known_unit_ball_volumes():
    assert M.unit_ball_log_volume(1) == pytest.approx(math.log(2.0))
    assert M.unit_ball_log_volume(2) == pytest.approx(math.log(math.pi))
    assert M.unit_ball_log_volume(3) == pytest.approx(math.log(4.0 * math.pi / 3.0))


@pytest.mark.parametrize("sigma", [0.01, 0.5, 1.0, 3.0])
def test_one_dim_interval_volume(sigma):
    # uniform on [m - σ√3, m + σ√3] has variance σ²
    lv = M.ellipsoid_log_volume(np.array([[sigma ** 2]]))
    assert lv == pytest.approx(math.log(2.0 * sigma * math.sqrt(3.0)))


def test_uniform_ellipse_area():
    # uniform in an ellipse with semi-axes a, b: cov = diag(a²/4, b²/4), area πab
    a, b = 0.3, 1.7
    lv = M.ellipsoid_log_volume(np.diag([a * a / 4.0, b * b / 4.0]))
    assert lv == pytest.approx(math.log(math.pi * a * b))


def test_volume_is_rotation_invariant():
    rng = np.random.default_rng(5)
    q, _ = np.linalg.qr(rng.standard_normal((3, 3)))
    cov = np.diag([0.1, 0.5, 2.0])
    assert M.ellipsoid_log_volume(q @ cov @ q.T) == pytest.approx(M.ellipsoid_log_volume(cov))


def test_degenerate_covariance_is_minus_inf():
    assert M.ellipsoid_log_volume(np.zeros((2, 2))) == float("-inf")
    assert M.ellipsoid_log_volume(np.diag([1.0, 0.0])) == float("-inf")


def test_psd_sqrt():
    rng = np.random.default_rng(9)
    a = rng.standard_normal((4, 4))
    spd = a @ a.T + 0.1 * np.eye(4)
    root = M.psd_sqrt(spd)
    assert np.allclose(root, root.T)
    assert np.allclose(root @ root, spd)


def test_psd_sqrt_clips_round_off_negatives():
    mat = np.array([[1.0, 1.0], [1.0, 1.0]]) - 1e-15 * np.eye(2)
    root = M.psd_sqrt(mat)
    assert np.all(np.isfinite(root))
    assert np.allclose(root @ root, mat, atol=1e-7)


def test_region_moments_match_numpy():
    rng = np.random.default_rng(3)
    pts = rng.random((500, 3))
    r = M.new_region(pts[0], "A")
    for p in pts:
        r.trace.append(p)
        r.accumulate()
    r.chain.sample_count = len(pts)
    mean, cov = M.region_moments(r)
    assert np.allclose(mean, pts.mean(axis=0))
    assert np.allclose(cov, np.cov(pts.T, bias=True))


def _ctx_for(model, bounds, **kw):
    _, lo, hi = M.validate_inputs([[0.5] * len(bounds)], bounds)
    opts = M.PSPOptions(**kw).resolved(lo.shape[0])
    return M.PSPContext(classifier=model, lower=lo, upper=hi, opts=opts, rng=np.random.default_rng(21))


def test_hit_or_miss_counts_hits_inside_region():
    # disk of radius 0.25 in the unit square, ellipsoid estimate exact: every draw hits
    model = lambda x: "in" if np.hypot(x[0] - 0.5, x[1] - 0.5) <= 0.25 else "out"
    ctx = _ctx_for(model, [[0.0, 1.0], [0.0, 1.0]], volume_samples=400)
    region = M.new_region([0.5, 0.5], "in")
    cov = np.eye(2) * 0.25 ** 2 / 4.0
    assert M.hit_or_miss(ctx, region, np.array([0.5, 0.5]), cov) == 400

    # half of the disk belongs to another pattern
    ctx.classifier = lambda x: "in" if x[0] < 0.5 else "other"
    n_hit = M.hit_or_miss(ctx, region, np.array([0.5, 0.5]), cov)
    assert abs(n_hit / 400 - 0.5) < 0.1


def test_estimate_falls_back_when_no_hits():
    ctx = _ctx_for(lambda x: "B", [[0.0, 1.0], [0.0, 1.0]], accurate_volume=True, volume_samples=200)
    region = M.new_region([0.5, 0.5], "A")
    pts = np.random.default_rng(1).random((300, 2)) * 0.4 + 0.3
    for p in pts:
        region.trace.append(p)
        region.accumulate()
    region.chain.sample_count = len(pts)
    ctx.regions.append(region)
    ctx.discoveries.append(M.Discovery("A", 0, 0, 0.0, "start"))

    res = M.estimate(ctx)
    _, cov = M.region_moments(region)
    assert res.hit_counts == [0]
    assert not res.volume_reliable[0]
    assert np.isfinite(res.log_volumes[0])
    assert res.log_volumes[0] == pytest.approx(M.ellipsoid_log_volume(cov))
