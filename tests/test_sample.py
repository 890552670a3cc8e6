import numpy as np
import pytest
import ebmf

from .fixtures import *

@pytest.fixture
def fit_rank1(simulate_rank1):
  y, _, _ = simulate_rank1
  return ebmf.backfit(ebmf.fit_greedy(ebmf.FitState(y), max_k=1))

def test_sampler(fit_rank1):
  n, p = fit_rank1.shape
  l, f = ebmf.sampler(fit_rank1)(2000, seed=0)
  assert l.shape == (2000, n, 1)
  assert f.shape == (2000, p, 1)
  assert np.isclose(l.mean(axis=0), fit_rank1.l, atol=0.05).all()
  assert np.isclose(f.mean(axis=0), fit_rank1.f, atol=0.05).all()

def test_sampler_seed(fit_rank1):
  draw = ebmf.sampler(fit_rank1)
  l0, f0 = draw(10, seed=1)
  l1, f1 = draw(10, seed=1)
  assert np.array_equal(l0, l1)
  assert np.array_equal(f0, f1)

def test_sampler_empty(simulate_rank1):
  y, _, _ = simulate_rank1
  n, p = y.shape
  l, f = ebmf.sampler(ebmf.FitState(y))(5)
  assert l.shape == (5, n, 0)
  assert f.shape == (5, p, 0)

def test_sampler_fixed(simulate_rank1):
  y, _, _ = simulate_rank1
  n, p = y.shape
  state = ebmf.add_fixed(ebmf.FitState(y + 2), l=np.ones(n))
  l, f = ebmf.sampler(state)(5, seed=0)
  assert (l[...,0] == 1).all()
  assert not np.isclose(f[0], f[1]).all()

def test_sample_fitted(fit_rank1):
  n, p = fit_rank1.shape
  lf = ebmf.sample_fitted(fit_rank1, 2000, seed=0)
  assert lf.shape == (2000, n, p)
  assert np.isclose(lf.mean(axis=0), fit_rank1.fitted(), atol=0.05).all()
