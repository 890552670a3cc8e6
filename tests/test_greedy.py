import numpy as np
import pytest
import warnings
import ebmf
import ebmf.convergence
import ebmf.ebnm

from .fixtures import *

def test_init_rank_one(simulate_rank1):
  y, l, f = simulate_rank1
  lhat, fhat = ebmf.init_rank_one(y, np.ones(y.shape, dtype=bool))
  assert cosine(lhat, l[:,0]) > 0.99
  assert cosine(fhat, f[:,0]) > 0.99

def test_init_rank_one_missing(simulate_rank1_missing):
  y, l, f = simulate_rank1_missing
  z = ~np.isnan(y)
  lhat, fhat = ebmf.init_rank_one(y, z)
  assert np.isfinite(lhat).all()
  assert np.isfinite(fhat).all()
  assert cosine(lhat, l[:,0]) > 0.95

def test_init_rank_one_zero():
  lhat, fhat = ebmf.init_rank_one(np.zeros((5, 3)), np.ones((5, 3), dtype=bool))
  assert not lhat.any()
  assert not fhat.any()

def test_fit_greedy_rank1(simulate_rank1):
  y, l, f = simulate_rank1
  init = ebmf.FitState(y)
  state = ebmf.fit_greedy(init, max_k=1)
  assert state.k == 1
  assert state.status == 'converged'
  assert state.elbo > init.elbo
  assert cosine(state.l[:,0], l[:,0]) > 0.99
  assert cosine(state.f[:,0], f[:,0]) > 0.99
  # The input is not modified
  assert init.k == 0

def test_fit_greedy_rank1_rejects_noise(simulate_rank1):
  y, _, _ = simulate_rank1
  state = ebmf.fit_greedy(ebmf.FitState(y, ebnm_fn=ebmf.ebnm.ebnm_normal), max_k=1)
  state = ebmf.fit_greedy(state, max_k=2)
  assert state.k == 1
  assert state.status == 'converged'

def test_fit_greedy_rank2(simulate_rank2):
  y, _, _ = simulate_rank2
  state = ebmf.fit_greedy(ebmf.FitState(y, ebnm_fn=ebmf.ebnm.ebnm_normal), max_k=5)
  assert state.k == 2
  trace = state.trace_frame()
  assert set(trace['n_components']) == {1, 2}

def test_fit_greedy_missing(simulate_rank1_missing):
  y, l, f = simulate_rank1_missing
  state = ebmf.fit_greedy(ebmf.FitState(y), max_k=1)
  assert state.k == 1
  assert cosine(state.l[:,0], l[:,0]) > 0.99
  assert cosine(state.f[:,0], f[:,0]) > 0.99

def test_fit_greedy_zero():
  state = ebmf.fit_greedy(ebmf.FitState(np.zeros((10, 5))))
  assert state.k == 0
  assert state.status == 'converged'

@pytest.mark.parametrize('var_type', ['constant', 'by_row', 'by_column', 'kronecker'])
def test_fit_greedy_var_type(simulate_rank1, var_type):
  y, l, _ = simulate_rank1
  state = ebmf.fit_greedy(ebmf.FitState(y, var_type=var_type), max_k=1)
  assert state.k == 1
  assert np.isfinite(state.elbo)
  assert cosine(state.l[:,0], l[:,0]) > 0.99

def test_fit_greedy_fixed_var(simulate_rank1):
  y, l, _ = simulate_rank1
  state = ebmf.fit_greedy(ebmf.FitState(y, s=0.1, var_type='fixed'), max_k=1)
  assert state.k == 1
  assert np.isclose(state.tau, 100).all()

@pytest.mark.parametrize('ebnm_fn', ['ebnm_normal', 'ebnm_point_normal', 'ebnm_ash'])
def test_fit_greedy_ebnm_fn(simulate_rank1, ebnm_fn):
  y, l, _ = simulate_rank1
  state = ebmf.fit_greedy(ebmf.FitState(y), max_k=1, ebnm_fn=getattr(ebmf.ebnm, ebnm_fn))
  assert state.k == 1
  assert state.ebnm_l[0] is getattr(ebmf.ebnm, ebnm_fn)
  assert cosine(state.l[:,0], l[:,0]) > 0.99

def test_fit_greedy_ebnm_fn_pair(simulate_rank1):
  y, _, _ = simulate_rank1
  pair = (ebmf.ebnm.ebnm_normal, ebmf.ebnm.ebnm_point_normal)
  state = ebmf.fit_greedy(ebmf.FitState(y), max_k=1, ebnm_fn=pair)
  assert state.ebnm_l[0] is pair[0]
  assert state.ebnm_f[0] is pair[1]

def test_fit_greedy_conv_crit(simulate_rank1):
  y, l, _ = simulate_rank1
  state = ebmf.fit_greedy(ebmf.FitState(y), max_k=1, conv_crit=ebmf.convergence.lf_diff, tol=1e-4)
  assert state.k == 1
  assert state.trace[-1]['crit'] < 1e-4

def test_fit_greedy_max_iters(simulate_rank2):
  y, _, _ = simulate_rank2
  state = ebmf.fit_greedy(ebmf.FitState(y), max_k=2, max_iters=1, tol=0)
  assert state.status == 'max_iters'
  assert state.k <= 1

def test_fit_greedy_verbose(simulate_rank1, capsys):
  y, _, _ = simulate_rank1
  ebmf.fit_greedy(ebmf.FitState(y), max_k=1, verbose=True)
  out, _ = capsys.readouterr()
  assert 'greedy' in out

def test_fit_greedy_degenerate(simulate_rank1):
  y, _, _ = simulate_rank1
  def bad_ebnm(x, s, g=None, fix_g=False, sampler=False):
    res = ebmf.ebnm.ebnm_normal(x, s, g=g, fix_g=fix_g, sampler=sampler)
    return res._replace(llik=np.nan)
  with pytest.warns(ebmf.NumericDegeneracyWarning):
    state = ebmf.fit_greedy(ebmf.FitState(y), max_k=1, ebnm_fn=bad_ebnm)
  assert state.k == 0
  assert state.status == 'degenerate'

def test_fit_greedy_ebnm_ash_sparse(simulate_sparse_rank1):
  y, l, f = simulate_sparse_rank1
  state = ebmf.fit_greedy(ebmf.FitState(y, ebnm_fn=ebmf.ebnm.ebnm_ash), max_k=3)
  assert state.status in ('converged', 'max_iters')
  assert state.k >= 1
  assert np.isfinite(state.elbo)
  assert cosine(state.l[:,0], l[:,0]) > 0.99
  assert cosine(state.f[:,0], f[:,0]) > 0.99
