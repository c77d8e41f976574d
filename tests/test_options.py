import math

import numpy as np
import pytest

import psp_mcmc as M


def test_dimension_scaled_defaults_one_dim():
    opts = M.PSPOptions().resolved(1)
    assert opts.stage1_block == 120
    assert opts.stage2_block == 240
    assert opts.volume_samples == 600
    assert opts.max_psp == 6
    assert opts.initial_jump == 0.1
    assert opts.accurate_volume is False


@pytest.mark.parametrize("n_dim", [1, 2, 3, 5, 8])
def test_default_blocks_grow_with_dimension(n_dim):
    a = M.PSPOptions().resolved(n_dim)
    b = M.PSPOptions().resolved(n_dim + 1)
    assert b.stage1_block > a.stage1_block
    assert b.stage2_block > a.stage2_block
    assert b.volume_samples > a.volume_samples
    assert a.stage1_block == math.ceil(100 * 1.2 ** n_dim)


def test_explicit_blocks_are_kept():
    opts = M.PSPOptions(stage1_block=7, stage2_block=11, volume_samples=13).resolved(4)
    assert (opts.stage1_block, opts.stage2_block, opts.volume_samples) == (7, 11, 13)


def test_resolved_returns_copy():
    base = M.PSPOptions()
    base.resolved(3)
    assert base.stage1_block is None


@pytest.mark.parametrize(
    "kwargs",
    [
        {"stage1_block": 0},
        {"stage2_block": -5},
        {"volume_samples": 2.5},
        {"max_psp": 0},
        {"max_patterns": True},
        {"initial_jump": 0.0},
        {"initial_jump": float("inf")},
        {"initial_jump": float("nan")},
        {"initial_jump": "0.1"},
        {"max_psp": float("nan")},
        {"stage1_block": "10"},
        {"volume_samples": float("inf")},
    ],
)
def test_bad_options_rejected(kwargs):
    with pytest.raises(M.InvalidArgument):
        M.PSPOptions(**kwargs).resolved(2)


def test_run_psp_rejects_unknown_override():
    with pytest.raises(M.InvalidArgument, match="Unknown option"):
        M.run_psp(lambda x: 0, [[0.5]], [[0.0, 1.0]], seed=0, stage3_block=10)


def test_run_psp_overrides_apply():
    res = M.run_psp(
        lambda x: "only",
        [[0.5]],
        [[0.0, 1.0]],
        seed=0,
        stage1_block=20,
        stage2_block=30,
        max_psp=2,
    )
    assert res.traces[0].shape[0] == res.n_accepted[0] + 1
    assert res.n_trials > 2 * 30


def test_integral_counts_of_other_numeric_types_accepted():
    opts = M.PSPOptions(stage1_block=np.int64(12), stage2_block=24.0, max_psp=np.int32(3)).resolved(2)
    assert (opts.stage1_block, opts.stage2_block, opts.max_psp) == (12, 24, 3)
    assert all(type(v) is int for v in (opts.stage1_block, opts.stage2_block, opts.max_psp))
